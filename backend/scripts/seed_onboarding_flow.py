#!/usr/bin/env python3
"""
Database setup script for onboarding.

Creates the onboarding indexes and publishes the bundled default flow for one
or more organizations. Organizations that already have a flow are left alone
unless --force is given, in which case the default flow replaces theirs.

Usage:
    python scripts/seed_onboarding_flow.py
    python scripts/seed_onboarding_flow.py --org acme --org globex --force
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path to import gottadoit modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from gottadoit.config.default_flow import DEFAULT_FLOW
from gottadoit.config.settings import settings
from gottadoit.services.db_service import db_service
from gottadoit.services.flow_service import flow_service
from gottadoit.workflows.tree import FlowTree

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def seed_onboarding_flows(org_ids, force: bool):
    try:
        logger.info("Creating onboarding indexes...")
        await db_service.create_indexes()

        for org_id in org_ids:
            if force:
                version = await flow_service.publish(org_id, FlowTree.from_document(DEFAULT_FLOW, strict=True))
                logger.info(f"✓ Default flow published for {org_id} (version {version})")
            elif await flow_service.seed_default(org_id):
                logger.info(f"✓ Default flow seeded for {org_id}")
            else:
                logger.info(f"{org_id} already has an onboarding flow; skipped")

    except Exception as e:
        logger.error(f"Error seeding onboarding flows: {e}", exc_info=True)
        sys.exit(1)
    finally:
        db_service.client.close()
        logger.info("MongoDB connection closed")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the default onboarding flow")
    parser.add_argument("--org", action="append", dest="orgs", help="Organization id (repeatable)")
    parser.add_argument("--force", action="store_true", help="Replace existing flows with the default")
    args = parser.parse_args()
    asyncio.run(seed_onboarding_flows(args.orgs or [settings.default_org_id], args.force))
