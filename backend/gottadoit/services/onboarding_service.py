# /gottadoit/services/onboarding_service.py

import logging
from typing import Any, Callable, Dict, Optional, Tuple, TypedDict

from gottadoit.errors import NodeNotFound, ValidationRejected
from gottadoit.models.onboarding import (
    ActionType,
    ButtonDef,
    Effect,
    FlowNode,
    NodeType,
    ProgressPatch,
    UserProgressRecord,
)
from gottadoit.services.effect_service import effect_service
from gottadoit.services.flow_service import flow_service
from gottadoit.services.progress_service import progress_store
from gottadoit.utils.metrics import dispatch_counter, editor_operations_counter, step_not_found_counter
from gottadoit.workflows import engine
from gottadoit.workflows.editor import FlowEditor
from gottadoit.workflows.tree import FlowTree

logger = logging.getLogger(__name__)

STALE_NODE = "STALE_NODE"
BUTTON_NOT_FOUND = "BUTTON_NOT_FOUND"

FlowOperation = Callable[[FlowEditor, FlowTree], FlowTree]


class CurrentView(TypedDict):
    status: str
    node: Optional[FlowNode]
    record: UserProgressRecord
    completed_count: int


class DispatchOutcome(TypedDict):
    applied: bool
    reason: Optional[str]
    record: UserProgressRecord
    effect: Optional[Effect]


class OnboardingService:
    """
    Ties the pure flow engine and editor to persistence.

    Runtime: resolve the user's current step and turn button presses into one
    atomic progress write plus an optional side effect.
    Authoring: load the published flow, apply one editor operation, publish.
    """

    def __init__(self, flows, progress, effects):
        self.flows = flows
        self.progress = progress
        self.effects = effects

    # ==================== Runtime ====================

    async def current_view(self, org_id: str, user_id: str) -> CurrentView:
        record = await self.progress.get_or_create(org_id, user_id)
        loaded = await self.flows.get_flow(org_id)
        if loaded is None:
            return {"status": "flow_not_found", "node": None, "record": record,
                    "completed_count": engine.completed_count(record)}

        tree, _ = loaded
        resolved = engine.resolve_current_node(tree, record)
        if not resolved["found"]:
            step_not_found_counter.inc()
            logger.warning(f"Progress of {org_id}/{user_id} points at missing node '{record.current_node_id}'")
            return {"status": "step_not_found", "node": None, "record": record,
                    "completed_count": engine.completed_count(record)}

        return {"status": "ok", "node": resolved["node"], "record": record,
                "completed_count": engine.completed_count(record)}

    async def dispatch(
        self,
        org_id: str,
        user_id: str,
        button_index: Optional[int] = None,
        node_id: Optional[str] = None,
        action_id: Optional[str] = None
    ) -> DispatchOutcome:
        """
        Press the button at `button_index` on the user's current node, or run
        the node's action `action_id` directly.

        The patch is computed from the record as read and written conditionally
        on its version; on conflict the record is re-read and the press
        re-evaluated, so concurrent presses never tear or lose an update.
        The press is pinned to `node_id`, or to the current node of the first
        read when none is given; if a retry finds the user elsewhere it
        answers STALE_NODE rather than pressing a button on a node the user
        never saw.
        """
        tree, _ = await self.flows.require_flow(org_id)
        outcome: Dict[str, Any] = {}
        pinned: Dict[str, Optional[str]] = {"node_id": node_id}

        def compute(record: UserProgressRecord) -> Optional[ProgressPatch]:
            outcome.clear()
            if pinned["node_id"] is None:
                pinned["node_id"] = record.current_node_id
            resolved = engine.resolve_current_node(tree, record)
            if not resolved["found"]:
                outcome.update(applied=False, reason=engine.STEP_NOT_FOUND, action_type="none")
                return None
            node = resolved["node"]
            if pinned["node_id"] != node.id:
                outcome.update(applied=False, reason=STALE_NODE, action_type="none")
                return None
            if action_id is not None:
                button = ButtonDef(action_id=action_id)
            else:
                button = engine.button_at(node, button_index) if button_index is not None else None
            if button is None:
                outcome.update(applied=False, reason=BUTTON_NOT_FOUND, action_type="none")
                return None
            action = node.find_action(button.action_id)
            result = engine.dispatch(tree, record, node, button)
            outcome.update(
                applied=result["applied"],
                reason=result["reason"],
                effect=result["effect"],
                action_type=action.type if action is not None else "none"
            )
            return result["record_patch"]

        record = await self.progress.update(org_id, user_id, compute)
        dispatch_counter.labels(
            action_type=outcome["action_type"],
            status="applied" if outcome["applied"] else (outcome["reason"] or "ignored").lower()
        ).inc()
        return {
            "applied": outcome["applied"],
            "reason": outcome["reason"],
            "record": record,
            "effect": outcome.get("effect"),
        }

    async def run_effect(self, effect: Effect) -> bool:
        return await self.effects.execute(effect)

    # ==================== Authoring ====================

    async def edit_flow(
        self,
        org_id: str,
        operation_name: str,
        operation: FlowOperation,
        expected_version: Optional[int] = None
    ) -> Tuple[FlowTree, int]:
        tree, _ = await self.flows.require_flow(org_id)
        editor = FlowEditor(org_id, self.flows)
        try:
            updated = operation(editor, tree)
        except (ValidationRejected, NodeNotFound) as e:
            editor_operations_counter.labels(operation=operation_name, status="rejected").inc()
            logger.info(f"Editor operation {operation_name} on {org_id} rejected: {e}")
            raise
        await editor.publish(updated, expected_version=expected_version)
        editor_operations_counter.labels(operation=operation_name, status="published").inc()
        return updated, editor.published_version

    async def add_child(self, org_id: str, parent_id: str, node_type: NodeType, expected_version: Optional[int] = None):
        return await self.edit_flow(
            org_id, "add_child",
            lambda editor, tree: editor.add_child(tree, parent_id, node_type),
            expected_version
        )

    async def add_sibling(self, org_id: str, reference_id: str, node_type: NodeType, expected_version: Optional[int] = None):
        return await self.edit_flow(
            org_id, "add_sibling",
            lambda editor, tree: editor.add_sibling(tree, reference_id, node_type),
            expected_version
        )

    async def delete_node(self, org_id: str, node_id: str, expected_version: Optional[int] = None):
        return await self.edit_flow(
            org_id, "delete_node",
            lambda editor, tree: editor.delete_node(tree, node_id),
            expected_version
        )

    async def update_node(self, org_id: str, node_id: str, edited: FlowNode, expected_version: Optional[int] = None):
        return await self.edit_flow(
            org_id, "update_node",
            lambda editor, tree: editor.commit_edit_for(tree, node_id, edited),
            expected_version
        )

    async def add_action(
        self,
        org_id: str,
        node_id: str,
        action_type: ActionType,
        target: Optional[str] = None,
        expected_version: Optional[int] = None
    ):
        def operation(editor: FlowEditor, tree: FlowTree) -> FlowTree:
            draft = editor.draft(tree, node_id)
            draft.add_action(action_type, target)
            return editor.commit_draft(tree, draft)
        return await self.edit_flow(org_id, "add_action", operation, expected_version)

    async def remove_action(self, org_id: str, node_id: str, index: int, expected_version: Optional[int] = None):
        def operation(editor: FlowEditor, tree: FlowTree) -> FlowTree:
            draft = editor.draft(tree, node_id)
            draft.remove_action(index)
            return editor.commit_draft(tree, draft)
        return await self.edit_flow(org_id, "remove_action", operation, expected_version)

    async def add_button(
        self,
        org_id: str,
        node_id: str,
        label: str,
        action_id: Optional[str] = None,
        expected_version: Optional[int] = None
    ):
        def operation(editor: FlowEditor, tree: FlowTree) -> FlowTree:
            draft = editor.draft(tree, node_id)
            draft.add_button(label, action_id)
            return editor.commit_draft(tree, draft)
        return await self.edit_flow(org_id, "add_button", operation, expected_version)

    async def remove_button(self, org_id: str, node_id: str, index: int, expected_version: Optional[int] = None):
        def operation(editor: FlowEditor, tree: FlowTree) -> FlowTree:
            draft = editor.draft(tree, node_id)
            draft.remove_button(index)
            return editor.commit_draft(tree, draft)
        return await self.edit_flow(org_id, "remove_button", operation, expected_version)


# Globally accessible instance
onboarding_service = OnboardingService(flow_service, progress_store, effect_service)
