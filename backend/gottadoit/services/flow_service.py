# /gottadoit/services/flow_service.py

from typing import Optional, Tuple

import structlog

from gottadoit.config.default_flow import DEFAULT_FLOW
from gottadoit.errors import FlowNotFound, FlowVersionConflict, ValidationRejected
from gottadoit.services.db_service import db_service
from gottadoit.utils.metrics import flow_publish_counter
from gottadoit.workflows import validator
from gottadoit.workflows.tree import FlowTree

log = structlog.get_logger(__name__)


class FlowService:
    """Loads and publishes the single flow document each organization owns."""

    def __init__(self, repository):
        self.repository = repository

    async def get_flow(self, org_id: str) -> Optional[Tuple[FlowTree, int]]:
        """Published flow and its version, or None if the organization has none yet."""
        document = await self.repository.load_flow(org_id)
        if document is None:
            return None
        tree = FlowTree.from_document(document["flow"])
        problems = tree.check_integrity()
        if problems:
            log.warning("Stored onboarding flow has structural problems", org_id=org_id, problems=problems)
        return tree, document["version"]

    async def require_flow(self, org_id: str) -> Tuple[FlowTree, int]:
        loaded = await self.get_flow(org_id)
        if loaded is None:
            raise FlowNotFound(org_id)
        return loaded

    async def publish(self, org_id: str, tree: FlowTree, expected_version: Optional[int] = None) -> int:
        """
        Validate and store `tree` as the organization's flow, replacing any
        previous version. Returns the new version number.
        """
        result = validator.validate_flow(tree)
        if not result["is_valid"]:
            flow_publish_counter.labels(status="rejected").inc()
            raise ValidationRejected(result["error_code"], result["message"])

        warnings = validator.find_dangling_references(tree)
        if warnings:
            log.warning("Publishing flow with dangling references", org_id=org_id, warnings=warnings)

        try:
            version = await self.repository.save_flow(org_id, tree.to_json_dict(), expected_version=expected_version)
        except FlowVersionConflict:
            flow_publish_counter.labels(status="conflict").inc()
            raise
        flow_publish_counter.labels(status="published").inc()
        log.info("Onboarding flow published", org_id=org_id, version=version, nodes=len(tree))
        return version

    async def seed_default(self, org_id: str) -> bool:
        """Publish the bundled default flow if the organization has none. Returns True if it was written."""
        if await self.repository.load_flow(org_id) is not None:
            return False
        try:
            await self.publish(org_id, FlowTree.from_document(DEFAULT_FLOW, strict=True), expected_version=0)
        except FlowVersionConflict:
            return False
        log.info("Seeded default onboarding flow", org_id=org_id)
        return True


# Globally accessible instance
flow_service = FlowService(db_service)
