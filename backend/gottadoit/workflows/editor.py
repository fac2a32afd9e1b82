# /gottadoit/workflows/editor.py

"""
Authoring operations for onboarding flows.

Every tree operation is clone-mutate-replace: the tree passed in is never
modified, so readers holding the previous snapshot stay valid until the new tree
is published. Rejected operations raise ValidationRejected (or NodeNotFound)
before anything is cloned.

Action and button authoring happens on a NodeDraft, a private copy of one node,
and only reaches the tree through `commit_edit`.
"""

import copy
import logging
from typing import Any, NamedTuple, Optional, Union

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from gottadoit.errors import NodeNotFound, ValidationRejected
from gottadoit.models.onboarding import (
    ActionDef,
    ActionType,
    ButtonDef,
    FlowNode,
    NodeType,
    action_adapter,
)
from gottadoit.workflows import validator
from gottadoit.workflows.tree import FlowTree, NodeIdFactory

logger = logging.getLogger(__name__)

# fields that only the tree itself may change
_STRUCTURAL_FIELDS = ("id", "children")


class EditTarget(NamedTuple):
    node: FlowNode
    parent: Optional[FlowNode]


def _raise_if_invalid(result: validator.ValidationResult) -> None:
    if not result["is_valid"]:
        raise ValidationRejected(result["error_code"], result["message"])


def _wire_name(field: str) -> str:
    return to_camel(field) if "_" in field else field


class NodeDraft:
    """Editable copy of a single node."""

    def __init__(self, node: FlowNode, id_factory: Optional[NodeIdFactory] = None):
        self.node = node.model_copy(deep=True)
        self._ids = id_factory or NodeIdFactory()

    def set_field(self, field: str, value: Any) -> None:
        if field in _STRUCTURAL_FIELDS:
            raise ValidationRejected("ID_IMMUTABLE" if field == "id" else "CHILDREN_NOT_EDITABLE",
                                     f"Field '{field}' cannot be edited on a draft")
        data = self.node.model_dump(by_alias=True)
        data[_wire_name(field)] = value
        try:
            self.node = FlowNode.model_validate(data)
        except ValidationError as e:
            raise ValidationRejected("INVALID_NODE", str(e))

    # --- actions ---

    def add_action(self, action_type: Union[ActionType, str] = ActionType.GOTO, target: Optional[str] = None) -> ActionDef:
        taken = {action.id for action in self.node.actions}
        action_id = self._ids.next_id("", "action", lambda candidate: candidate in taken)
        data = {"id": action_id, "type": ActionType(action_type).value}
        if target is not None:
            data["target"] = target
        action = action_adapter.validate_python(data)
        self.node.actions.append(action)
        return action

    def remove_action(self, index: int) -> ActionDef:
        _raise_if_invalid(validator.validate_index(self.node.actions, index, "action"))
        return self.node.actions.pop(index)

    def update_action_field(self, index: int, field: str, value: Any) -> ActionDef:
        """Set one field of an action. Setting `type` switches the action to that variant."""
        _raise_if_invalid(validator.validate_index(self.node.actions, index, "action"))
        data = self.node.actions[index].model_dump(by_alias=True)
        data[_wire_name(field)] = value
        try:
            action = action_adapter.validate_python(data)
        except ValidationError as e:
            raise ValidationRejected("INVALID_ACTION", str(e))
        if field == "id" and any(i != index and a.id == action.id for i, a in enumerate(self.node.actions)):
            raise ValidationRejected("DUPLICATE_ACTION_ID", f"Action id '{action.id}' already exists on this node")
        self.node.actions[index] = action
        return action

    # --- buttons ---

    def add_button(self, label: str = "New", action_id: Optional[str] = None) -> ButtonDef:
        if action_id is None and self.node.actions:
            action_id = self.node.actions[0].id
        button = ButtonDef(label=label, action_id=action_id)
        self.node.buttons.append(button)
        return button

    def remove_button(self, index: int) -> ButtonDef:
        _raise_if_invalid(validator.validate_index(self.node.buttons, index, "button"))
        return self.node.buttons.pop(index)

    def update_button_field(self, index: int, field: str, value: Any) -> ButtonDef:
        _raise_if_invalid(validator.validate_index(self.node.buttons, index, "button"))
        data = self.node.buttons[index].model_dump(by_alias=True)
        data[_wire_name(field)] = value
        try:
            button = ButtonDef.model_validate(data)
        except ValidationError as e:
            raise ValidationRejected("INVALID_BUTTON", str(e))
        self.node.buttons[index] = button
        return button


class FlowEditor:
    """
    One editing session over an organization's flow.

    The id factory is scoped to the session so ids minted in quick succession
    never collide, and `publish` replaces the stored flow wholesale.
    """

    def __init__(self, org_id: Optional[str] = None, flow_store=None, id_factory: Optional[NodeIdFactory] = None):
        self.org_id = org_id
        self.flow_store = flow_store
        self._ids = id_factory or NodeIdFactory()
        self.published_version: Optional[int] = None

    def begin_edit(self, tree: FlowTree, node_id: str) -> Optional[EditTarget]:
        node = tree.find_by_id(node_id)
        if node is None:
            return None
        return EditTarget(node=node, parent=tree.parent_of(node_id))

    def draft(self, tree: FlowTree, node_id: str) -> NodeDraft:
        target = self.begin_edit(tree, node_id)
        if target is None:
            raise NodeNotFound(node_id)
        return NodeDraft(target.node, self._ids)

    def commit_edit(self, tree: FlowTree, edited: FlowNode) -> FlowTree:
        """Return a new tree where the node with `edited.id` carries the edited fields. Children are kept."""
        if edited.id not in tree:
            raise NodeNotFound(edited.id)
        _raise_if_invalid(validator.validate_action_ids_unique(edited))

        def apply(node: FlowNode, parent: Optional[FlowNode]) -> None:
            for field in FlowNode.model_fields:
                if field not in _STRUCTURAL_FIELDS:
                    setattr(node, field, copy.deepcopy(getattr(edited, field)))

        updated = tree.clone()
        updated.update_by_id(edited.id, apply)
        return updated

    def commit_edit_for(self, tree: FlowTree, node_id: str, edited: FlowNode) -> FlowTree:
        """As commit_edit, but rejects an edited node whose id differs from the node being edited."""
        _raise_if_invalid(validator.validate_id_unchanged(node_id, edited.id))
        return self.commit_edit(tree, edited)

    def commit_draft(self, tree: FlowTree, draft: NodeDraft) -> FlowTree:
        return self.commit_edit(tree, draft.node)

    def delete_node(self, tree: FlowTree, node_id: str) -> FlowTree:
        """Remove the node and its whole subtree."""
        if node_id not in tree:
            raise NodeNotFound(node_id)
        _raise_if_invalid(validator.validate_removable(tree, node_id))
        updated = tree.clone()
        updated.remove_by_id(node_id)
        return updated

    def new_node(self, tree: FlowTree, parent_id: str, node_type: Union[NodeType, str]) -> FlowNode:
        """
        Build a node to be placed under `parent_id`. A new `flow` always gets one
        empty card so the flow never ends in an empty container.
        """
        _raise_if_invalid(validator.validate_node_type(node_type))
        node_type = NodeType(node_type)
        node_id = self._ids.next_id(parent_id, "child", lambda candidate: candidate in tree)
        if node_type == NodeType.FLOW:
            card_id = self._ids.next_id(
                node_id, "card", lambda candidate: candidate in tree or candidate == node_id
            )
            card = FlowNode(id=card_id, title="New Card", type=NodeType.CARD, content="", actions=[], buttons=[])
            return FlowNode(id=node_id, title="New Node", type=NodeType.FLOW, children=[card])
        return FlowNode(id=node_id, title="New Node", type=NodeType.CARD, content="", actions=[], buttons=[])

    def add_child(self, tree: FlowTree, parent_id: str, node_type: Union[NodeType, str]) -> FlowTree:
        if parent_id not in tree:
            raise NodeNotFound(parent_id)
        node = self.new_node(tree, parent_id, node_type)
        updated = tree.clone()
        updated.insert_child(parent_id, node)
        logger.debug(f"Added {node.type.value} node {node.id} under {parent_id}")
        return updated

    def add_sibling(self, tree: FlowTree, reference_node_id: str, node_type: Union[NodeType, str]) -> FlowTree:
        if reference_node_id not in tree:
            raise NodeNotFound(reference_node_id)
        _raise_if_invalid(validator.validate_has_parent(tree, reference_node_id))
        parent = tree.parent_of(reference_node_id)
        node = self.new_node(tree, parent.id, node_type)
        updated = tree.clone()
        updated.insert_sibling(reference_node_id, node)
        logger.debug(f"Added {node.type.value} node {node.id} next to {reference_node_id}")
        return updated

    async def publish(self, tree: FlowTree, expected_version: Optional[int] = None) -> bool:
        """Store `tree` as the organization's flow, replacing the previous document."""
        if self.flow_store is None or not self.org_id:
            raise RuntimeError("FlowEditor was created without an organization or flow store")
        self.published_version = await self.flow_store.publish(self.org_id, tree, expected_version=expected_version)
        return True
