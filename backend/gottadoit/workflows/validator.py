# /gottadoit/workflows/validator.py

"""
Pure validation functions for onboarding flows.

These checks back the flow editor and the publish path. They never mutate the
tree, never touch the database and never log; callers decide whether a failed
result becomes a ValidationRejected error.
"""

from typing import Any, List, Mapping, Optional, Sequence, TypedDict

from gottadoit.models.onboarding import DbAction, FlowNode, GotoAction, NodeType
from gottadoit.workflows.tree import FlowTree


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]


def _valid() -> ValidationResult:
    return {"is_valid": True, "error_code": None, "message": None}


def _invalid(error_code: str, message: str) -> ValidationResult:
    return {"is_valid": False, "error_code": error_code, "message": message}


def validate_node_exists(tree: FlowTree, node_id: str) -> ValidationResult:
    if not node_id:
        return _invalid("EMPTY_NODE_ID", "Node id cannot be empty")
    if node_id not in tree:
        return _invalid("UNKNOWN_NODE", f"Node '{node_id}' is not part of the flow")
    return _valid()


def validate_removable(tree: FlowTree, node_id: str) -> ValidationResult:
    """The root anchors the flow and can never be deleted."""
    result = validate_node_exists(tree, node_id)
    if not result["is_valid"]:
        return result
    if tree.is_root(node_id):
        return _invalid("ROOT_NOT_REMOVABLE", "The root node of a flow cannot be deleted")
    return _valid()


def validate_has_parent(tree: FlowTree, node_id: str) -> ValidationResult:
    result = validate_node_exists(tree, node_id)
    if not result["is_valid"]:
        return result
    if tree.is_root(node_id):
        return _invalid("ROOT_HAS_NO_PARENT", "The root node has no parent to add a sibling under")
    return _valid()


def validate_id_unchanged(node_id: str, edited_id: str) -> ValidationResult:
    if node_id != edited_id:
        return _invalid(
            "ID_IMMUTABLE",
            f"Node ids cannot be changed (attempted '{node_id}' -> '{edited_id}')"
        )
    return _valid()


def validate_node_type(node_type: Any) -> ValidationResult:
    allowed = [t.value for t in NodeType]
    value = node_type.value if isinstance(node_type, NodeType) else node_type
    if value not in allowed:
        return _invalid("UNKNOWN_NODE_TYPE", f"Node type '{value}' is not one of {allowed}")
    return _valid()


def validate_index(items: Sequence[Any], index: int, kind: str) -> ValidationResult:
    if index < 0 or index >= len(items):
        return _invalid(
            "INDEX_OUT_OF_RANGE",
            f"No {kind} at position {index} (node has {len(items)})"
        )
    return _valid()


def validate_action_ids_unique(node: FlowNode) -> ValidationResult:
    seen = set()
    for action in node.actions:
        if action.id in seen:
            return _invalid(
                "DUPLICATE_ACTION_ID",
                f"Action id '{action.id}' is used more than once on node '{node.id}'"
            )
        seen.add(action.id)
    return _valid()


def validate_flow(tree: FlowTree) -> ValidationResult:
    """Structural validation run before a flow is published."""
    problems = tree.check_integrity()
    if problems:
        return _invalid("INVALID_FLOW", "; ".join(problems))
    for node in tree.iter_nodes():
        result = validate_action_ids_unique(node)
        if not result["is_valid"]:
            return result
    return _valid()


def find_dangling_references(tree: FlowTree) -> List[str]:
    """
    Buttons pointing at missing actions and goto actions pointing at missing nodes.
    Both are tolerated at runtime, so they are reported, not rejected.
    """
    warnings = []
    for node in tree.iter_nodes():
        action_ids = {action.id for action in node.actions}
        for button in node.buttons:
            if button.action_id is None:
                warnings.append(f"Button '{button.label}' on '{node.id}' has no action")
            elif button.action_id not in action_ids:
                warnings.append(f"Button '{button.label}' on '{node.id}' references missing action '{button.action_id}'")
        for action in node.actions:
            if isinstance(action, GotoAction) and action.target not in tree:
                warnings.append(f"Action '{action.id}' on '{node.id}' targets missing node '{action.target}'")
    return warnings


def validate_db_action(
    action: DbAction,
    operations: Mapping[str, Any],
    allow_free_text: bool
) -> ValidationResult:
    """
    A db action may either name a pre-registered operation or carry a free-text
    query. Free text is only accepted when the deployment explicitly allows it.
    """
    if action.operation:
        if action.operation not in operations:
            return _invalid(
                "UNKNOWN_DB_OPERATION",
                f"Database operation '{action.operation}' is not registered"
            )
        return _valid()
    if not action.query:
        return _invalid("EMPTY_DB_QUERY", f"Action '{action.id}' has neither an operation nor a query")
    if not allow_free_text:
        return _invalid(
            "FREE_TEXT_QUERY_DISABLED",
            f"Action '{action.id}' carries a free-text query and free-text forwarding is disabled"
        )
    return _valid()
