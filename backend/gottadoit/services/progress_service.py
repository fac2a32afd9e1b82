# /gottadoit/services/progress_service.py

import logging
from typing import Any, Callable, Dict, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from gottadoit.config.settings import settings
from gottadoit.errors import VersionConflict
from gottadoit.models.onboarding import ProgressPatch, UserProgressRecord
from gottadoit.services.db_service import db_service
from gottadoit.utils.metrics import progress_conflict_counter

logger = logging.getLogger(__name__)

PatchFactory = Callable[[UserProgressRecord], Optional[ProgressPatch]]


class ProgressStore:
    """
    Loads, initializes and updates one progress record per (organization, user).

    Writes are conditional on the record's version, so a patch computed from a
    record is only stored if nobody wrote in between. `update` re-reads and
    recomputes on conflict, which keeps the navigation target and the
    completion set of a dispatch in one untorn write.
    """

    def __init__(self, repository, entry_node_id: str, write_attempts: int = 5):
        self.repository = repository
        self.entry_node_id = entry_node_id
        self.write_attempts = write_attempts

    def default_record(self, user_id: str) -> UserProgressRecord:
        return UserProgressRecord(
            user_id=user_id,
            current_node_id=self.entry_node_id,
            completed_nodes=[],
            progress={}
        )

    def _to_state(self, record: UserProgressRecord) -> Dict[str, Any]:
        state = record.to_json_dict()
        state.pop("version", None)
        return state

    async def get(self, org_id: str, user_id: str) -> Optional[UserProgressRecord]:
        """Stored record, or None if this user never started onboarding."""
        state = await self.repository.load_progress(org_id, user_id)
        if state is None:
            return None
        return UserProgressRecord.model_validate(state)

    async def get_or_create(self, org_id: str, user_id: str) -> UserProgressRecord:
        record = await self.get(org_id, user_id)
        if record is not None:
            return record
        logger.info(f"Initializing onboarding progress for {org_id}/{user_id} at {self.entry_node_id}")
        stored = await self.repository.insert_progress(org_id, user_id, self._to_state(self.default_record(user_id)))
        return UserProgressRecord.model_validate(stored)

    async def apply_partial(
        self,
        org_id: str,
        user_id: str,
        patch: ProgressPatch,
        expected_version: Optional[int] = None
    ) -> UserProgressRecord:
        """
        Merge `patch` into the stored record (shallow field replacement).

        With `expected_version` the write happens only if the record is still at
        that version, otherwise VersionConflict is raised. Without it the patch is
        re-applied to the latest record until it lands.
        """
        if expected_version is None:
            return await self.update(org_id, user_id, lambda record: patch)

        record = await self.get_or_create(org_id, user_id)
        if record.version != expected_version:
            raise VersionConflict(org_id, user_id, expected_version)
        return await self._write(org_id, user_id, record, patch)

    async def update(self, org_id: str, user_id: str, compute: PatchFactory) -> UserProgressRecord:
        """
        Read-modify-write loop. `compute` receives the current record and returns
        the patch to store, or None to leave the record untouched.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(VersionConflict),
            stop=stop_after_attempt(self.write_attempts),
            wait=wait_random(0, 0.05),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True
        )
        async for attempt in retrying:
            with attempt:
                record = await self.get_or_create(org_id, user_id)
                patch = compute(record)
                if patch is None or patch.is_empty():
                    return record
                return await self._write(org_id, user_id, record, patch)

    async def _write(
        self,
        org_id: str,
        user_id: str,
        record: UserProgressRecord,
        patch: ProgressPatch
    ) -> UserProgressRecord:
        merged = record.model_copy(update=patch.changes())
        stored = await self.repository.save_progress(org_id, user_id, self._to_state(merged), record.version)
        if stored is None:
            progress_conflict_counter.inc()
            raise VersionConflict(org_id, user_id, record.version)
        return UserProgressRecord.model_validate(stored)


# Globally accessible instance
progress_store = ProgressStore(db_service, settings.entry_node_id, settings.progress_write_attempts)
