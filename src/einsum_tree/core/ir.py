import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import numpy as np

_NODE_ID_RE = re.compile(r"^node_(\d+)$")


class NodeIdSequence:
    """Issues ``node_<n>`` identifiers for the nodes of one tree."""

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError("Node id sequence must start at a non-negative value")
        self._next = int(start)

    def next_id(self) -> str:
        value = self._next
        self._next += 1
        return f"node_{value}"

    @property
    def issued(self) -> int:
        return self._next

    def fork(self) -> "NodeIdSequence":
        return NodeIdSequence(self._next)

    def advance_past(self, node_ids: Iterable[str]) -> None:
        for node_id in node_ids:
            match = _NODE_ID_RE.match(str(node_id))
            if match:
                self._next = max(self._next, int(match.group(1)) + 1)


@dataclass
class NodeMetrics:
    tensor_size: Optional[int] = None
    size_percentage: Optional[float] = None
    normalized_size_percentage: Optional[float] = None
    operations: Optional[int] = None
    operations_percentage: Optional[float] = None
    normalized_operations_percentage: Optional[float] = None
    byte_accesses: Optional[int] = None
    arithmetic_intensity: Optional[float] = None
    total_operations: Optional[int] = None

    def reset_operations(self) -> None:
        self.operations = None
        self.operations_percentage = None
        self.normalized_operations_percentage = None
        self.byte_accesses = None
        self.arithmetic_intensity = None
        self.total_operations = None


@dataclass(eq=False)
class Node:
    id: str
    value: List[str]  # output indices, in order as written
    left: Optional["Node"] = None
    right: Optional["Node"] = None
    deletable: bool = False  # synthetic permutation wrapper that may be removed
    sizes: Optional[List[int]] = None  # parallel to value once sizes are applied
    metrics: NodeMetrics = field(default_factory=NodeMetrics)

    @classmethod
    def create(
        cls,
        ids: NodeIdSequence,
        value: Sequence[str],
        left: Optional["Node"] = None,
        right: Optional["Node"] = None,
        deletable: bool = False,
    ) -> "Node":
        return cls(
            id=ids.next_id(),
            value=list(value),
            left=left,
            right=right,
            deletable=deletable,
        )

    @property
    def string(self) -> str:
        return "".join(self.value)

    def is_leaf(self) -> bool:
        return self.left is None and self.right is None

    def is_permutation(self) -> bool:
        return self.left is not None and self.right is None

    def is_contraction(self) -> bool:
        return self.left is not None and self.right is not None

    def children(self) -> List["Node"]:
        return [child for child in (self.left, self.right) if child is not None]

    def iter_preorder(self) -> Iterator["Node"]:
        stack: List[Node] = [self]
        while stack:
            node = stack.pop()
            yield node
            if node.right is not None:
                stack.append(node.right)
            if node.left is not None:
                stack.append(node.left)

    def iter_postorder(self) -> Iterator["Node"]:
        stack: List[Any] = [(self, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                yield node
                continue
            stack.append((node, True))
            if node.right is not None:
                stack.append((node.right, False))
            if node.left is not None:
                stack.append((node.left, False))

    def reconstruct(self) -> "Node":
        """Structural deep copy: ids, values, flags and sizes; metrics start unset."""
        return Node(
            id=self.id,
            value=list(self.value),
            left=self.left.reconstruct() if self.left is not None else None,
            right=self.right.reconstruct() if self.right is not None else None,
            deletable=self.deletable,
            sizes=list(self.sizes) if self.sizes is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "value": list(self.value),
            "string": self.string,
            "deletable": self.deletable,
            "sizes": list(self.sizes) if self.sizes is not None else None,
            "metrics": asdict(self.metrics),
            "left": self.left.to_dict() if self.left is not None else None,
            "right": self.right.to_dict() if self.right is not None else None,
        }


def format_labels(labels: Sequence[str]) -> str:
    return "[" + ",".join(labels) + "]"


def json_ready(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (np.integer, np.floating)):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, dict):
        return {str(k): json_ready(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_ready(v) for v in value]
    return str(value)
