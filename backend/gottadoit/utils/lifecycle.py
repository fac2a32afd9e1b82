# /gottadoit/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from gottadoit.utils.logging import setup_logging
from gottadoit.services.db_service import db_service
from gottadoit.services.effect_service import effect_service
from gottadoit.services.flow_service import flow_service
from gottadoit.config.settings import settings
from gottadoit.errors import StoreUnavailable

# Startup: logging, indexes and the default flow for the default organization.
# Shutdown: close the outbound HTTP client and the MongoDB connection.

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()

    logger.info("Application starting up...")

    await db_service.create_indexes()
    if settings.seed_default_flow:
        try:
            await flow_service.seed_default(settings.default_org_id)
        except StoreUnavailable as e:
            logger.error(f"Could not seed the default onboarding flow: {e}")

    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")

    await effect_service.cleanup()
    if db_service.client:
        db_service.client.close()
