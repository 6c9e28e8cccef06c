from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .exceptions import ConfigurationError
from .ir import Node, NodeIdSequence, format_labels
from .parser import parse

logger = logging.getLogger(__name__)

DEFAULT_INDEX_SIZE = 2


def _positive_size(label: Any, value: Any) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        size = 0
    if size <= 0 or size != value:
        raise ConfigurationError(
            f"Index size for {label!r} must be a positive integer; received {value!r}"
        )
    return size


@dataclass
class NodeIndexUpdate:
    node_id: str
    value: List[str]


@dataclass
class IndexPatch:
    """Relabels a contraction and its operands: ``{id, value, left, right}``."""

    root: Optional[NodeIndexUpdate] = None
    left: Optional[NodeIndexUpdate] = None
    right: Optional[NodeIndexUpdate] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "IndexPatch":
        def _entry(item: Optional[Mapping[str, Any]]) -> Optional[NodeIndexUpdate]:
            if not item:
                return None
            node_id = item.get("id")
            value = item.get("value")
            if not node_id or value is None:
                logger.warning("ignoring index update without id or value: %r", item)
                return None
            return NodeIndexUpdate(node_id=str(node_id), value=[str(v) for v in value])

        return cls(
            root=_entry(data),
            left=_entry(data.get("left")),
            right=_entry(data.get("right")),
        )

    def updates(self) -> List[NodeIndexUpdate]:
        return [entry for entry in (self.root, self.left, self.right) if entry is not None]


class ContractionTree:
    def __init__(self, expression: Optional[str] = None):
        self._ids = NodeIdSequence()
        self.index_sizes: Dict[str, int] = {}
        self.root: Optional[Node] = parse(expression, self._ids) if expression else None

    @classmethod
    def from_expression(cls, expression: str) -> "ContractionTree":
        """Like the constructor, but blank input is a ``ParseError`` too."""
        tree = cls()
        tree.root = parse(expression, tree._ids)
        return tree

    # ------------------------------------------------------------------ access
    def get_root(self) -> Optional[Node]:
        return self.root

    def set_root(self, root: Optional[Node]) -> "ContractionTree":
        self.root = root
        if root is not None:
            self._ids.advance_past(node.id for node in root.iter_preorder())
        return self

    def iter_nodes(self) -> Iterable[Node]:
        if self.root is None:
            return iter(())
        return self.root.iter_preorder()

    def find_node(self, node_id: str) -> Optional[Node]:
        for node in self.iter_nodes():
            if node.id == node_id:
                return node
        return None

    def find_parent(self, node_id: str) -> Optional[Node]:
        for node in self.iter_nodes():
            if any(child.id == node_id for child in node.children()):
                return node
        return None

    def index_labels(self) -> List[str]:
        seen: Dict[str, None] = {}
        for node in self.iter_nodes():
            for label in node.value:
                seen.setdefault(label, None)
        return list(seen.keys())

    # ------------------------------------------------------------------ sizes
    def update_index_sizes(self, sizes: Mapping[str, int]) -> None:
        """Merge ``sizes`` into the table; nothing changes if any size is invalid."""
        checked = {str(label): _positive_size(label, value) for label, value in sizes.items()}
        self.index_sizes = {**self.index_sizes, **checked}
        self._refresh_sizes()

    def seed_index_sizes(
        self,
        provided: Optional[Mapping[str, int]] = None,
        default: int = DEFAULT_INDEX_SIZE,
    ) -> Dict[str, int]:
        """Size table covering every label: provided, else current, else the default."""
        provided = provided or {}
        seeded: Dict[str, int] = {}
        for label in self.index_labels():
            if label in provided:
                seeded[label] = int(provided[label])
            elif label in self.index_sizes:
                seeded[label] = self.index_sizes[label]
            else:
                seeded[label] = int(default)
        return seeded

    def _refresh_sizes(self) -> None:
        for node in self.iter_nodes():
            node.sizes = [self.index_sizes.get(label, DEFAULT_INDEX_SIZE) for label in node.value]

    # --------------------------------------------------------- serialization
    def tree_to_string(self, node: Optional[Node] = None) -> str:
        start = node if node is not None else self.root
        if start is None:
            return ""
        return _strip_outer(_node_to_string(start))

    def __str__(self) -> str:
        return self.tree_to_string()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expression": self.tree_to_string(),
            "index_sizes": dict(self.index_sizes),
            "root": self.root.to_dict() if self.root is not None else None,
        }

    def create_subtree_expression(self, selected_ids: Iterable[str]) -> str:
        selected = set(selected_ids)
        start = next((node for node in self.iter_nodes() if node.id in selected), None)
        if start is None:
            return ""
        return _strip_outer(_selected_to_string(start, selected))

    # ------------------------------------------------------------------ edits
    def swap_children(self, node_id: str) -> bool:
        node = self.find_node(node_id)
        if node is None or node.right is None:
            return False
        node.left, node.right = node.right, node.left
        return True

    def add_permutation_node(self, node_id: str) -> bool:
        node = self.find_node(node_id)
        if node is None:
            return False
        inner = Node.create(self._ids, node.value, node.left, node.right, deletable=True)
        inner.sizes = list(node.sizes) if node.sizes is not None else None
        node.left = inner
        node.right = None
        node.deletable = True
        return True

    def remove_permutation_node(self, node_id: str) -> bool:
        if self.root is not None and self.root.id == node_id:
            if not self.root.deletable or not self.root.is_permutation():
                return False
            self.root = self.root.left
            return True

        parent = self.find_parent(node_id)
        if parent is None:
            return False
        side = "left" if parent.left is not None and parent.left.id == node_id else "right"
        target: Node = getattr(parent, side)
        if not target.deletable:
            return False
        sibling = parent.right if side == "left" else parent.left

        if target.is_contraction():
            if sibling is not None:
                return False
            parent.left, parent.right = target.left, target.right
            parent.deletable = False
        elif target.left is not None:
            adopted = target.left
            adopted.deletable = False
            setattr(parent, side, adopted)
        else:
            if sibling is not None:
                return False
            setattr(parent, side, None)
            parent.deletable = False
        return True

    def update_indices(self, patch: Any) -> bool:
        if patch is None:
            logger.warning("update_indices called without a patch")
            return False
        if not isinstance(patch, IndexPatch):
            patch = IndexPatch.from_mapping(patch)

        updates = patch.updates()
        emptied = [entry.node_id for entry in updates if not entry.value]
        if emptied:
            logger.warning("index update rejected; empty index list for %s", ", ".join(emptied))
            return False

        updated = False
        for entry in updates:
            node = self.find_node(entry.node_id)
            if node is None:
                logger.warning("node %s not found; index update skipped", entry.node_id)
                continue
            node.value = list(entry.value)
            updated = True

        if updated and self.root is not None:
            self.root = self.root.reconstruct()
            self._refresh_sizes()
        return updated

    # ------------------------------------------------------------------ copies
    def clone(self) -> "ContractionTree":
        copy = ContractionTree()
        copy._ids = self._ids.fork()
        copy.root = self.root.reconstruct() if self.root is not None else None
        copy.index_sizes = dict(self.index_sizes)
        return copy


def _strip_outer(text: str) -> str:
    return text[1:-1]


def _node_to_string(node: Node) -> str:
    if node.is_leaf():
        return format_labels(node.value)
    if node.right is not None:
        return (
            f"[{_node_to_string(node.left)},{_node_to_string(node.right)}"
            f"->{format_labels(node.value)}]"
        )
    return f"[{_node_to_string(node.left)}->{format_labels(node.value)}]"


def _selected_to_string(node: Optional[Node], selected: set) -> str:
    if node is None or node.id not in selected:
        return ""
    if node.is_leaf():
        return format_labels(node.value)

    # Unselected children are dropped; a selected node without selected
    # children is rendered as a leaf of its own indices.
    parts: Tuple[str, ...] = tuple(
        text
        for text in (
            _selected_to_string(node.left, selected),
            _selected_to_string(node.right, selected),
        )
        if text
    )
    if not parts:
        return format_labels(node.value)
    return f"[{','.join(parts)}->{format_labels(node.value)}]"
