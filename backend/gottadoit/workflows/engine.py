# /gottadoit/workflows/engine.py

"""
Pure onboarding flow interpreter.

Given a flow tree and a user's progress record this module:
- Resolves the node the user is currently on
- Turns a button press into a progress patch and/or an external effect

All functions are:
- Pure (no side effects, no database access, no HTTP)
- Deterministic (same input = same output)

The progress state is (current_node_id, completed_nodes). Only `goto` and
`acknowledge` change it; `download`, `api` and `db` only request effects.
A `goto` always yields ONE patch carrying both the new current node and the
extended completion set, so the store can write them together.
"""

from typing import List, Optional, TypedDict

from gottadoit.models.onboarding import (
    AcknowledgeAction,
    ApiAction,
    ButtonDef,
    DbAction,
    DownloadAction,
    Effect,
    EffectKind,
    FlowNode,
    GotoAction,
    ProgressPatch,
    UserProgressRecord,
)
from gottadoit.workflows.tree import FlowTree

STEP_NOT_FOUND = "STEP_NOT_FOUND"
ACTION_UNRESOLVED = "ACTION_UNRESOLVED"
EMPTY_GOTO_TARGET = "EMPTY_GOTO_TARGET"


class ResolveResult(TypedDict):
    """Result of resolving the user's current node."""
    found: bool
    reason: Optional[str]
    node: Optional[FlowNode]


class DispatchResult(TypedDict):
    """Result of dispatching a button press."""
    applied: bool
    reason: Optional[str]
    record_patch: Optional[ProgressPatch]
    effect: Optional[Effect]


def resolve_current_node(tree: FlowTree, record: UserProgressRecord) -> ResolveResult:
    """
    Find the node referenced by `record.current_node_id`.

    A stale pointer (deleted or renamed node) is reported as STEP_NOT_FOUND.
    It is never replaced by the root: losing the user's place must be visible.
    """
    node = tree.find_by_id(record.current_node_id)
    if node is None:
        return {"found": False, "reason": STEP_NOT_FOUND, "node": None}
    return {"found": True, "reason": None, "node": node}


def button_at(node: FlowNode, index: int) -> Optional[ButtonDef]:
    if 0 <= index < len(node.buttons):
        return node.buttons[index]
    return None


def completed_count(record: UserProgressRecord) -> int:
    """Number of completed steps shown to the user. Derived, never stored."""
    return len(record.completed_nodes)


def _with_completed(record: UserProgressRecord, node_id: str) -> List[str]:
    if node_id in record.completed_nodes:
        return list(record.completed_nodes)
    return list(record.completed_nodes) + [node_id]


def _noop(reason: str) -> DispatchResult:
    return {"applied": False, "reason": reason, "record_patch": None, "effect": None}


def dispatch(
    tree: FlowTree,
    record: UserProgressRecord,
    node: FlowNode,
    button: ButtonDef
) -> DispatchResult:
    """
    Execute the action a button is bound to.

    Args:
        tree: The organization's flow
        record: The user's progress record as read from the store
        node: The node displaying the button
        button: The pressed button

    Returns:
        DispatchResult. A button whose action id does not resolve on `node` is an
        inert no-op (applied=False, no patch, no effect).
    """
    if node.id not in tree:
        return _noop(STEP_NOT_FOUND)

    action = node.find_action(button.action_id)
    if action is None:
        return _noop(ACTION_UNRESOLVED)

    if isinstance(action, GotoAction):
        if not action.target:
            return _noop(EMPTY_GOTO_TARGET)
        patch = ProgressPatch(
            current_node_id=action.target,
            completed_nodes=_with_completed(record, record.current_node_id)
        )
        return {"applied": True, "reason": None, "record_patch": patch, "effect": None}

    if isinstance(action, AcknowledgeAction):
        patch = ProgressPatch(completed_nodes=_with_completed(record, record.current_node_id))
        return {"applied": True, "reason": None, "record_patch": patch, "effect": None}

    if isinstance(action, DownloadAction):
        effect = Effect(kind=EffectKind.DOWNLOAD, action_id=action.id, url=action.target)
        return {"applied": True, "reason": None, "record_patch": None, "effect": effect}

    if isinstance(action, ApiAction):
        effect = Effect(
            kind=EffectKind.HTTP,
            action_id=action.id,
            url=action.target,
            method=action.method or "GET",
            headers=dict(action.headers)
        )
        return {"applied": True, "reason": None, "record_patch": None, "effect": effect}

    if isinstance(action, DbAction):
        effect = Effect(
            kind=EffectKind.DB_PROXY,
            action_id=action.id,
            db_type=action.db_type,
            query=action.query,
            operation=action.operation,
            params=dict(action.params)
        )
        return {"applied": True, "reason": None, "record_patch": None, "effect": effect}

    raise TypeError(f"Unhandled action type: {type(action).__name__}")
