# backend/tests/conftest.py

import asyncio
import copy
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from dotenv import load_dotenv
from unittest.mock import AsyncMock

# Load the test environment FIRST, before any gottadoit imports, so Settings
# is built with ENVIRONMENT=test and the production checks are skipped.
load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent / ".env.test")

from gottadoit.errors import FlowVersionConflict  # noqa: E402
from gottadoit.workflows.tree import FlowTree  # noqa: E402


class FakeRepository:
    """
    In-memory persistence with the same contract as DatabaseService:
    versioned flow documents and conditional progress writes.
    Reads yield to the event loop so concurrent callers interleave.
    """

    def __init__(self):
        self.flows = {}
        self.states = {}
        self.progress_writes = 0
        self.progress_conflicts = 0

    async def load_flow(self, org_id):
        await asyncio.sleep(0)
        document = self.flows.get(org_id)
        return copy.deepcopy(document) if document else None

    async def save_flow(self, org_id, flow, expected_version=None):
        current = self.flows.get(org_id)
        current_version = current["version"] if current else 0
        if expected_version is not None and expected_version != current_version:
            raise FlowVersionConflict(org_id, expected_version)
        self.flows[org_id] = {"flow": copy.deepcopy(flow), "version": current_version + 1}
        return current_version + 1

    async def load_progress(self, org_id, user_id):
        document = self.states.get((org_id, user_id))
        snapshot = None
        if document is not None:
            snapshot = {**copy.deepcopy(document["state"]), "version": document["version"]}
        # the read completes before yielding, like a query whose result is already in flight
        await asyncio.sleep(0)
        return snapshot

    async def insert_progress(self, org_id, user_id, state):
        self.states.setdefault((org_id, user_id), {"state": copy.deepcopy(state), "version": 0})
        return await self.load_progress(org_id, user_id)

    async def save_progress(self, org_id, user_id, state, expected_version):
        document = self.states.get((org_id, user_id))
        if document is None or document["version"] != expected_version:
            self.progress_conflicts += 1
            return None
        self.states[(org_id, user_id)] = {"state": copy.deepcopy(state), "version": expected_version + 1}
        self.progress_writes += 1
        return await self.load_progress(org_id, user_id)


SAMPLE_FLOW = {
    "id": "root",
    "title": "Onboarding",
    "type": "flow",
    "children": [
        {
            "id": "welcome-1",
            "title": "Welcome",
            "type": "card",
            "content": "Hi",
            "actions": [{"id": "a1", "type": "goto", "target": "step-2"}],
            "buttons": [{"label": "Next", "actionId": "a1"}],
        },
        {"id": "step-2", "title": "Step 2", "type": "card", "content": "Step 2"},
        {
            "id": "policies",
            "title": "Policies",
            "type": "flow",
            "children": [
                {
                    "id": "policies-1",
                    "title": "Handbook",
                    "type": "card",
                    "content": "Read it",
                    "actions": [
                        {"id": "handbook", "type": "download", "target": "https://cdn.test/handbook.pdf"},
                        {"id": "ack", "type": "acknowledge"},
                        {"id": "ping", "type": "api", "target": "https://hooks.test/read", "method": "post"},
                        {"id": "log", "type": "db", "dbType": "postgres", "operation": "log_read", "params": {"doc": "handbook"}},
                        {"id": "lost", "type": "goto", "target": "missing-node"},
                        {"id": "blank", "type": "goto", "target": ""},
                    ],
                    "buttons": [
                        {"label": "Download", "actionId": "handbook"},
                        {"label": "Acknowledge", "actionId": "ack"},
                        {"label": "Ping", "actionId": "ping"},
                        {"label": "Log", "actionId": "log"},
                        {"label": "Broken", "actionId": "nope"},
                        {"label": "Lost", "actionId": "lost"},
                        {"label": "Blank", "actionId": "blank"},
                    ],
                    "static": {"estimatedTime": "5 min"},
                },
            ],
        },
    ],
}


@pytest.fixture
def sample_flow():
    return copy.deepcopy(SAMPLE_FLOW)


@pytest.fixture
def sample_tree(sample_flow):
    return FlowTree.from_document(sample_flow, strict=True)


@pytest.fixture
def fake_repository():
    return FakeRepository()


@pytest.fixture(scope="function")
def test_client(mocker, fake_repository):
    """
    Provides a TestClient for API integration tests.
    Persistence is swapped for the in-memory repository; the lifespan still
    runs, so the default flow is seeded for the default organization.
    """
    from gottadoit.main import app
    from gottadoit.services.db_service import db_service
    from gottadoit.services.effect_service import effect_service
    from gottadoit.services.flow_service import flow_service
    from gottadoit.services.progress_service import progress_store

    mocker.patch.object(db_service, "create_indexes", new_callable=AsyncMock)
    mocker.patch.object(db_service, "health_check", new_callable=AsyncMock, return_value=True)
    mocker.patch.object(db_service, "client", None)
    mocker.patch.object(effect_service, "cleanup", new_callable=AsyncMock)
    mocker.patch.object(flow_service, "repository", fake_repository)
    mocker.patch.object(progress_store, "repository", fake_repository)

    # The app's lifespan (startup/shutdown events) is managed by the TestClient
    with TestClient(app) as client:
        yield client
