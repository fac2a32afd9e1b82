# /gottadoit/services/db_service.py

import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from gottadoit.config.settings import settings
from gottadoit.errors import CircuitOpenError, FlowVersionConflict, StoreUnavailable
from gottadoit.utils.circuit_breaker import CircuitBreaker
from gottadoit.utils.metrics import database_operations_counter

logger = logging.getLogger(__name__)

FLOWS_COLLECTION = "onboarding_flows"
USER_STATES_COLLECTION = "onboarding_user_states"


class DatabaseService:
    """
    MongoDB persistence for onboarding flows and per-user progress.

    Layout:
        onboarding_flows:       {orgId, flow, version, updated_at}            unique on orgId
        onboarding_user_states: {orgId, userId, state, version, updated_at}   unique on (orgId, userId)

    Every failure is raised as StoreUnavailable; nothing here substitutes a
    default value for a failed read.
    """

    def __init__(self, mongo_uri: str):
        try:
            self.client = AsyncIOMotorClient(
                mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                tls=settings.mongo_ssl,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000
            )
            self.db = self.client.get_default_database()
            self.circuit_breaker = CircuitBreaker("database")
            logger.info("MongoDB client initialized successfully.")
        except Exception as e:
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    # ==================== Helper Methods ====================

    def _now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    async def _db_operation(self, name: str, operation) -> Any:
        """
        Execute a database operation behind the circuit breaker.

        Raises:
            StoreUnavailable: the operation failed or the circuit is open
        """
        try:
            result = await self.circuit_breaker.call(operation)
        except CircuitOpenError:
            database_operations_counter.labels(operation=name, status="circuit_open").inc()
            raise
        except PyMongoError as e:
            logger.exception(f"Database operation '{name}' failed: {type(e).__name__}")
            database_operations_counter.labels(operation=name, status="failed").inc()
            raise StoreUnavailable(f"Database operation '{name}' failed") from e
        database_operations_counter.labels(operation=name, status="success").inc()
        return result

    # ==================== Index Management ====================

    async def create_indexes(self) -> None:
        """Create all necessary database indexes on startup."""
        indexes = [
            (FLOWS_COLLECTION, [("orgId", 1)], {"unique": True}),
            (USER_STATES_COLLECTION, [("orgId", 1), ("userId", 1)], {"unique": True}),
            (USER_STATES_COLLECTION, [("updated_at", -1)], {}),
        ]

        for collection, keys, options in indexes:
            try:
                await self.db[collection].create_index(keys, **options)
                logger.debug(f"Created index on {collection}: {keys}")
            except Exception as e:
                logger.error(f"Failed to create index on {collection} {keys}: {e}")

        logger.info("Database indexes created successfully.")

    async def health_check(self) -> bool:
        try:
            await self.db.command("ping")
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    # ==================== Onboarding Flow ====================

    async def load_flow(self, org_id: str) -> Optional[Dict[str, Any]]:
        """Return `{"flow": ..., "version": n}` for the organization, or None if nothing was published."""
        async def operation():
            return await self.db[FLOWS_COLLECTION].find_one(
                {"orgId": org_id}, {"_id": 0, "flow": 1, "version": 1}
            )
        document = await self._db_operation("load_flow", operation)
        if not document:
            return None
        return {"flow": document["flow"], "version": document.get("version", 0)}

    async def save_flow(self, org_id: str, flow: Dict[str, Any], expected_version: Optional[int] = None) -> int:
        """
        Replace the organization's flow document wholesale and return its new version.

        Without `expected_version` the last writer wins. With it, the write only
        succeeds if the stored version still matches (0 meaning "nothing stored yet").
        """
        update = {
            "$set": {"flow": flow, "updated_at": self._now_utc()},
            "$inc": {"version": 1},
        }
        query: Dict[str, Any] = {"orgId": org_id}
        upsert = True
        if expected_version is not None:
            query["version"] = expected_version
            upsert = expected_version == 0

        async def operation():
            try:
                return await self.db[FLOWS_COLLECTION].find_one_and_update(
                    query, update, upsert=upsert,
                    projection={"_id": 0, "version": 1},
                    return_document=ReturnDocument.AFTER
                )
            except DuplicateKeyError:
                # an upsert for version 0 collided with an existing document
                return None

        document = await self._db_operation("save_flow", operation)
        if document is None:
            raise FlowVersionConflict(org_id, expected_version)
        logger.info(f"Saved onboarding flow for {org_id} (version {document['version']})")
        return document["version"]

    # ==================== User Progress ====================

    def _state_from_document(self, document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not document:
            return None
        return {**document.get("state", {}), "version": document.get("version", 0)}

    async def load_progress(self, org_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        async def operation():
            return await self.db[USER_STATES_COLLECTION].find_one(
                {"orgId": org_id, "userId": user_id}, {"_id": 0}
            )
        return self._state_from_document(await self._db_operation("load_progress", operation))

    async def insert_progress(self, org_id: str, user_id: str, state: Dict[str, Any]) -> Dict[str, Any]:
        """Insert `state` unless a record already exists; return whichever record is stored."""
        async def operation():
            collection = self.db[USER_STATES_COLLECTION]
            try:
                return await collection.find_one_and_update(
                    {"orgId": org_id, "userId": user_id},
                    {"$setOnInsert": {"state": state, "version": 0, "updated_at": self._now_utc()}},
                    upsert=True,
                    projection={"_id": 0},
                    return_document=ReturnDocument.AFTER
                )
            except DuplicateKeyError:
                # a concurrent first access inserted the record first
                return await collection.find_one({"orgId": org_id, "userId": user_id}, {"_id": 0})

        return self._state_from_document(await self._db_operation("insert_progress", operation))

    async def save_progress(
        self,
        org_id: str,
        user_id: str,
        state: Dict[str, Any],
        expected_version: int
    ) -> Optional[Dict[str, Any]]:
        """
        Conditionally replace the stored state in one document write.
        Returns the stored record, or None if the record is no longer at `expected_version`.
        """
        async def operation():
            return await self.db[USER_STATES_COLLECTION].find_one_and_update(
                {"orgId": org_id, "userId": user_id, "version": expected_version},
                {"$set": {"state": state, "updated_at": self._now_utc()}, "$inc": {"version": 1}},
                projection={"_id": 0},
                return_document=ReturnDocument.AFTER
            )
        return self._state_from_document(await self._db_operation("save_progress", operation))


# Globally accessible instance
db_service = DatabaseService(settings.mongo_uri)
