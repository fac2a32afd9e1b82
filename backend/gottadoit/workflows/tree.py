# /gottadoit/workflows/tree.py

"""
Arena-backed onboarding flow tree.

The stored flow is a nested JSON document. In memory it is flattened into an
arena: every node sits in one mapping keyed by an internal handle, with its
parent handle and ordered child handles kept beside it, and an index from node
id to the first node carrying that id in depth-first pre-order.

Consequences:
- lookups never recurse, so arbitrarily deep flows are fine
- a node can only ever have one parent, so the structure cannot form a cycle
- duplicate ids are rejected when nodes are inserted; legacy documents that
  already contain duplicates still load, the first pre-order match wins
"""

import copy
import itertools
from collections import Counter
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from gottadoit.errors import ValidationRejected
from gottadoit.models.onboarding import FlowNode

Mutator = Callable[[FlowNode, Optional[FlowNode]], None]


class FlowTree:
    def __init__(self):
        self._nodes: Dict[int, FlowNode] = {}
        self._parent: Dict[int, Optional[int]] = {}
        self._children: Dict[int, List[int]] = {}
        self._index: Dict[str, int] = {}
        self._root: Optional[int] = None
        self._next_handle = 0

    # ==================== Construction ====================

    @classmethod
    def from_document(cls, document: Union[FlowNode, Dict[str, Any]], strict: bool = False) -> "FlowTree":
        """
        Build a tree from a nested flow document.

        Args:
            document: Root FlowNode or its JSON form
            strict: Reject documents with duplicate ids or other structural problems

        Raises:
            ValidationRejected: strict mode and the document is not a valid tree
        """
        root = document if isinstance(document, FlowNode) else FlowNode.model_validate(document)
        tree = cls()
        tree._root = tree._adopt(root, None)
        tree._reindex()
        if strict:
            problems = tree.check_integrity()
            if problems:
                raise ValidationRejected("INVALID_FLOW", "; ".join(problems))
        return tree

    def to_document(self) -> FlowNode:
        return self._materialize(self._root)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.to_document().to_json_dict()

    def clone(self) -> "FlowTree":
        """Deep copy sharing no mutable state with this tree."""
        return copy.deepcopy(self)

    # ==================== Queries ====================

    @property
    def root_id(self) -> str:
        return self._nodes[self._root].id

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    def node_ids(self) -> List[str]:
        """All node ids in depth-first pre-order."""
        return [self._nodes[h].id for h in self._walk(self._root)]

    def iter_nodes(self) -> Iterator[FlowNode]:
        """Pre-order view of every node. Yielded nodes have no children attached and must not be mutated."""
        for handle in self._walk(self._root):
            yield self._nodes[handle]

    def find_by_id(self, node_id: str) -> Optional[FlowNode]:
        """Return a detached copy of the first node with this id (pre-order), or None."""
        handle = self._index.get(node_id)
        if handle is None:
            return None
        return self._materialize(handle)

    def parent_of(self, node_id: str) -> Optional[FlowNode]:
        handle = self._index.get(node_id)
        if handle is None or self._parent[handle] is None:
            return None
        return self._materialize(self._parent[handle])

    def is_root(self, node_id: str) -> bool:
        return self._index.get(node_id) == self._root

    # ==================== Mutations ====================

    def update_by_id(self, node_id: str, mutator: Mutator) -> bool:
        """
        Apply `mutator(node, parent)` in place to the first node with this id.

        Both arguments are the stored arena nodes, so their `children` lists
        are always empty; use find_by_id for a materialized view. Children are
        owned by the tree and any change the mutator makes to them is dropped;
        use insert/remove to change them.
        """
        handle = self._index.get(node_id)
        if handle is None:
            return False
        parent_handle = self._parent[handle]
        node = self._nodes[handle]
        mutator(node, self._nodes[parent_handle] if parent_handle is not None else None)
        node.children = []
        if node.id != node_id:
            self._reindex()
        return True

    def remove_by_id(self, node_id: str) -> bool:
        handle = self._index.get(node_id)
        if handle is None or handle == self._root:
            return False
        self._children[self._parent[handle]].remove(handle)
        for doomed in list(self._walk(handle)):
            del self._nodes[doomed]
            del self._parent[doomed]
            del self._children[doomed]
        self._reindex()
        return True

    def insert_child(self, parent_id: str, node: FlowNode) -> bool:
        """Append `node` (with its subtree) as the last child of `parent_id`. No-op if the parent is missing."""
        parent_handle = self._index.get(parent_id)
        if parent_handle is None:
            return False
        self._ensure_ids_free(node)
        self._adopt(node, parent_handle)
        self._reindex()
        return True

    def insert_sibling(self, after_node_id: str, node: FlowNode) -> bool:
        """Append `node` as the last child of the reference node's parent. No-op on the root."""
        handle = self._index.get(after_node_id)
        if handle is None or self._parent[handle] is None:
            return False
        self._ensure_ids_free(node)
        self._adopt(node, self._parent[handle])
        self._reindex()
        return True

    # ==================== Integrity ====================

    def check_integrity(self) -> List[str]:
        """List structural problems. An empty list means the arena is a well-formed tree."""
        if self._root is None or self._root not in self._nodes:
            return ["Flow has no root node"]

        problems = []
        if self._parent.get(self._root) is not None:
            problems.append("Root node has a parent")

        seen = set()
        stack = [self._root]
        while stack:
            handle = stack.pop()
            if handle in seen:
                problems.append(f"Node '{self._nodes[handle].id}' is reachable more than once")
                continue
            seen.add(handle)
            for child in self._children.get(handle, []):
                if self._parent.get(child) != handle:
                    problems.append(f"Node '{self._nodes[child].id}' has an inconsistent parent link")
                stack.append(child)

        for handle in self._nodes:
            if handle not in seen:
                problems.append(f"Node '{self._nodes[handle].id}' is not reachable from the root")

        counts = Counter(self._nodes[h].id for h in seen)
        for node_id, count in counts.items():
            if count > 1:
                problems.append(f"Node id '{node_id}' is used {count} times")
        return problems

    # ==================== Internals ====================

    def _walk(self, start: int) -> Iterator[int]:
        stack = [start]
        while stack:
            handle = stack.pop()
            yield handle
            stack.extend(reversed(self._children[handle]))

    def _reindex(self) -> None:
        self._index = {}
        for handle in self._walk(self._root):
            self._index.setdefault(self._nodes[handle].id, handle)

    def _store(self, node: FlowNode, parent: Optional[int]) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._nodes[handle] = node.model_copy(update={"children": []}).model_copy(deep=True)
        self._parent[handle] = parent
        self._children[handle] = []
        if parent is not None:
            self._children[parent].append(handle)
        return handle

    def _adopt(self, node: FlowNode, parent: Optional[int]) -> int:
        top = self._store(node, parent)
        stack = [(top, node.children)]
        while stack:
            handle, children = stack.pop()
            for child in children:
                stack.append((self._store(child, handle), child.children))
        return top

    def _materialize(self, handle: int) -> FlowNode:
        built: Dict[int, FlowNode] = {}
        # reversed pre-order visits every child before its parent
        for h in reversed(list(self._walk(handle))):
            built[h] = self._nodes[h].model_copy(
                deep=True,
                update={"children": [built[c] for c in self._children[h]]},
            )
        return built[handle]

    def _ensure_ids_free(self, node: FlowNode) -> None:
        incoming = []
        stack = [node]
        while stack:
            current = stack.pop()
            incoming.append(current.id)
            stack.extend(current.children)
        clashes = sorted({i for i in incoming if i in self._index} | {i for i, n in Counter(incoming).items() if n > 1})
        if clashes:
            raise ValidationRejected(
                "DUPLICATE_NODE_ID",
                f"Node id(s) already present in flow: {', '.join(clashes)}"
            )


class NodeIdFactory:
    """
    Session-scoped id source for new nodes and actions.
    Ids are `<prefix>-<kind>-<n>` with `n` from a monotonic counter; taken ids are skipped.
    """

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)

    def next_id(self, prefix: str, kind: str, taken: Callable[[str], bool]) -> str:
        while True:
            candidate = f"{prefix}-{kind}-{next(self._counter)}" if prefix else f"{kind}-{next(self._counter)}"
            if not taken(candidate):
                return candidate
