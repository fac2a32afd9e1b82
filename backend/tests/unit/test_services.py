# backend/tests/unit/test_services.py
import asyncio
import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from gottadoit.config.default_flow import DEFAULT_FLOW
from gottadoit.errors import FlowNotFound, FlowVersionConflict, ValidationRejected
from gottadoit.models.onboarding import DownloadAction, NodeType, ProgressPatch
from gottadoit.services.flow_service import FlowService
from gottadoit.services.onboarding_service import BUTTON_NOT_FOUND, STALE_NODE, OnboardingService
from gottadoit.services.progress_service import ProgressStore
from gottadoit.workflows import engine
from gottadoit.workflows.tree import FlowTree


@pytest.fixture
def flows(fake_repository):
    return FlowService(fake_repository)


@pytest.fixture
def service(fake_repository, flows):
    effects = AsyncMock()
    return OnboardingService(flows, ProgressStore(fake_repository, "welcome-1"), effects)


@pytest_asyncio.fixture
async def published(flows, sample_tree):
    await flows.publish("org1", sample_tree)
    return sample_tree


# --- FlowService ---

@pytest.mark.asyncio
async def test_publish_and_load(flows, sample_tree):
    assert await flows.get_flow("org1") is None
    version = await flows.publish("org1", sample_tree)
    tree, stored_version = await flows.get_flow("org1")
    assert version == stored_version == 1
    assert tree.to_json_dict() == sample_tree.to_json_dict()


@pytest.mark.asyncio
async def test_publish_is_last_writer_wins(flows, sample_tree):
    await flows.publish("org1", sample_tree)
    smaller = FlowTree.from_document({"id": "root", "type": "flow"})
    assert await flows.publish("org1", smaller) == 2
    tree, _ = await flows.get_flow("org1")
    assert tree.node_ids() == ["root"]


@pytest.mark.asyncio
async def test_publish_with_stale_version(flows, sample_tree):
    await flows.publish("org1", sample_tree)
    await flows.publish("org1", sample_tree)
    with pytest.raises(FlowVersionConflict):
        await flows.publish("org1", sample_tree, expected_version=1)


@pytest.mark.asyncio
async def test_publish_rejects_duplicate_action_ids(flows):
    tree = FlowTree.from_document({
        "id": "root", "type": "flow",
        "children": [{"id": "c", "actions": [{"id": "x", "type": "acknowledge"}, {"id": "x", "type": "acknowledge"}]}],
    })
    with pytest.raises(ValidationRejected) as exc:
        await flows.publish("org1", tree)
    assert exc.value.error_code == "DUPLICATE_ACTION_ID"


@pytest.mark.asyncio
async def test_require_flow(flows):
    with pytest.raises(FlowNotFound):
        await flows.require_flow("empty-org")


@pytest.mark.asyncio
async def test_seed_default_only_once(flows):
    assert await flows.seed_default("org1") is True
    assert await flows.seed_default("org1") is False
    tree, _ = await flows.get_flow("org1")
    assert tree.root_id == DEFAULT_FLOW["id"]
    assert "welcome-1" in tree


def test_default_flow_is_valid():
    tree = FlowTree.from_document(DEFAULT_FLOW, strict=True)
    assert tree.check_integrity() == []
    assert "welcome-1" in tree


def test_default_flow_downloads_are_absolute_urls():
    tree = FlowTree.from_document(DEFAULT_FLOW, strict=True)
    targets = [
        action.target
        for node in tree.iter_nodes()
        for action in node.actions
        if isinstance(action, DownloadAction)
    ]
    assert targets
    assert all(httpx.URL(target).is_absolute_url for target in targets)


# --- OnboardingService ---

@pytest.mark.asyncio
async def test_current_view_new_user(service, published):
    view = await service.current_view("org1", "newUser")
    assert view["status"] == "ok"
    assert view["node"].id == "welcome-1"
    assert view["completed_count"] == 0


@pytest.mark.asyncio
async def test_current_view_stale_pointer(service, published):
    await service.progress.apply_partial("org1", "u1", ProgressPatch(current_node_id="deleted-node"))
    view = await service.current_view("org1", "u1")
    assert view["status"] == "step_not_found"
    assert view["node"] is None
    assert view["record"].current_node_id == "deleted-node"


@pytest.mark.asyncio
async def test_current_view_without_flow(service):
    view = await service.current_view("org1", "u1")
    assert view["status"] == "flow_not_found"


@pytest.mark.asyncio
async def test_dispatch_goto(service, published):
    outcome = await service.dispatch("org1", "u1", 0)
    assert outcome["applied"] is True
    assert outcome["record"].current_node_id == "step-2"
    assert outcome["record"].completed_nodes == ["welcome-1"]
    assert outcome["effect"] is None


@pytest.mark.asyncio
async def test_dispatch_stale_node(service, published):
    outcome = await service.dispatch("org1", "u1", 0, node_id="policies-1")
    assert outcome["applied"] is False
    assert outcome["reason"] == STALE_NODE
    assert outcome["record"].current_node_id == "welcome-1"


@pytest.mark.asyncio
async def test_double_press_moves_one_step(service, flows):
    def card(node_id, target=None):
        node = {"id": node_id, "title": node_id, "type": "card", "content": node_id}
        if target:
            node["actions"] = [{"id": f"to-{target}", "type": "goto", "target": target}]
            node["buttons"] = [{"label": "Next", "actionId": f"to-{target}"}]
        return node

    chain = FlowTree.from_document({
        "id": "root",
        "type": "flow",
        "children": [card("welcome-1", "step-2"), card("step-2", "step-3"), card("step-3")],
    }, strict=True)
    await flows.publish("org1", chain)
    await service.progress.get_or_create("org1", "u1")

    first, second = await asyncio.gather(
        service.dispatch("org1", "u1", 0),
        service.dispatch("org1", "u1", 0),
    )

    record = await service.progress.get("org1", "u1")
    assert record.current_node_id == "step-2"
    assert record.completed_nodes == ["welcome-1"]
    assert sorted([first["applied"], second["applied"]]) == [False, True]
    assert STALE_NODE in (first["reason"], second["reason"])


@pytest.mark.asyncio
async def test_press_after_moving_on_applies_to_new_node(service, published):
    await service.dispatch("org1", "u1", 0)
    await service.progress.apply_partial("org1", "u1", ProgressPatch(current_node_id="policies-1"))
    outcome = await service.dispatch("org1", "u1", 1)
    assert outcome["applied"] is True
    assert outcome["record"].completed_nodes == ["welcome-1", "policies-1"]


@pytest.mark.asyncio
async def test_dispatch_missing_button(service, published):
    outcome = await service.dispatch("org1", "u1", 9)
    assert outcome["reason"] == BUTTON_NOT_FOUND


@pytest.mark.asyncio
async def test_dispatch_unresolved_action_leaves_record(service, published, fake_repository):
    await service.progress.apply_partial("org1", "u1", ProgressPatch(current_node_id="policies-1"))
    before = await service.progress.get("org1", "u1")

    outcome = await service.dispatch("org1", "u1", 4)
    assert outcome["reason"] == engine.ACTION_UNRESOLVED
    assert await service.progress.get("org1", "u1") == before


@pytest.mark.asyncio
async def test_dispatch_effect_does_not_touch_progress(service, published):
    await service.progress.apply_partial("org1", "u1", ProgressPatch(current_node_id="policies-1"))
    outcome = await service.dispatch("org1", "u1", 2)
    assert outcome["effect"].url == "https://hooks.test/read"
    assert outcome["record"].version == 1

    await service.run_effect(outcome["effect"])
    service.effects.execute.assert_awaited_once_with(outcome["effect"])


@pytest.mark.asyncio
async def test_dispatch_without_flow(service):
    with pytest.raises(FlowNotFound):
        await service.dispatch("org1", "u1", 0)


@pytest.mark.asyncio
async def test_editor_operation_publishes(service, published):
    tree, version = await service.add_child("org1", "policies", NodeType.FLOW)
    assert version == 2
    stored, _ = await service.flows.get_flow("org1")
    assert stored.to_json_dict() == tree.to_json_dict()
    assert len(stored) == len(published) + 2


@pytest.mark.asyncio
async def test_rejected_editor_operation_publishes_nothing(service, published):
    with pytest.raises(ValidationRejected):
        await service.delete_node("org1", "root")
    _, version = await service.flows.get_flow("org1")
    assert version == 1


@pytest.mark.asyncio
async def test_action_and_button_editing(service, published):
    tree, _ = await service.add_action("org1", "step-2", "acknowledge")
    tree, _ = await service.add_button("org1", "step-2", "Done")
    node = tree.find_by_id("step-2")
    assert node.buttons[0].action_id == node.actions[0].id

    tree, _ = await service.remove_button("org1", "step-2", 0)
    tree, _ = await service.remove_action("org1", "step-2", 0)
    assert tree.find_by_id("step-2").actions == []


@pytest.mark.asyncio
async def test_dispatch_by_action_id(service, published):
    await service.progress.apply_partial("org1", "u1", ProgressPatch(current_node_id="policies-1"))
    outcome = await service.dispatch("org1", "u1", action_id="ack")
    assert outcome["applied"] is True
    assert outcome["record"].completed_nodes == ["policies-1"]

    missing = await service.dispatch("org1", "u1", action_id="nope")
    assert missing["reason"] == engine.ACTION_UNRESOLVED
