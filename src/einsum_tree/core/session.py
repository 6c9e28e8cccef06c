from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .classifier import DimensionTypes, classify
from .exceptions import (
    ClassificationError,
    ConfigurationError,
    EditError,
    EinsumTreeError,
    ParseError,
)
from .formatting import format_number, format_size, format_strides
from .ir import Node, format_labels, json_ready
from .metrics import MetricsConfig, MetricsResult, compute_metrics, compute_strides
from .tree import ContractionTree

logger = logging.getLogger(__name__)


def _node_kind(node: Node) -> str:
    if node.is_contraction():
        return "contraction"
    if node.is_permutation():
        return "permutation"
    return "leaf"


@dataclass
class EditOutcome:
    applied: bool
    tree: ContractionTree
    error: Optional[EinsumTreeError] = None


@dataclass
class ClassificationOutcome:
    dims: Optional[DimensionTypes] = None
    error: Optional[EinsumTreeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Session:
    """Holds the current tree, its size table and its metrics.

    Errors never escape the public methods: parse and size failures are
    returned by ``load``, ``resize`` and ``configure``, and rejected edits come
    back inside an ``EditOutcome``. Edits are applied to a clone which
    replaces the current tree only on success, so a tree handed out earlier
    is never mutated by an edit.
    """

    def __init__(
        self,
        expression: Optional[str] = None,
        index_sizes: Optional[Mapping[str, int]] = None,
        config: Optional[MetricsConfig] = None,
    ):
        self.config = (config or MetricsConfig()).normalized()
        self._tree = ContractionTree()
        self._metrics = MetricsResult()
        self.last_error: Optional[EinsumTreeError] = None
        if expression:
            self.last_error = self.load(expression, index_sizes)

    # ------------------------------------------------------------ properties
    @property
    def tree(self) -> ContractionTree:
        return self._tree

    @property
    def metrics(self) -> MetricsResult:
        return self._metrics

    @property
    def expression(self) -> str:
        return self._tree.tree_to_string()

    @property
    def index_sizes(self) -> Dict[str, int]:
        return dict(self._tree.index_sizes)

    # --------------------------------------------------------------- loading
    def load(
        self, expression: str, index_sizes: Optional[Mapping[str, int]] = None
    ) -> Optional[EinsumTreeError]:
        try:
            tree = ContractionTree.from_expression(expression)
        except ParseError as exc:
            logger.warning("could not parse %r: %s", expression, exc.message)
            return exc

        known = {**self._tree.index_sizes, **dict(index_sizes or {})}
        try:
            tree.update_index_sizes(tree.seed_index_sizes(known, self.config.default_index_size))
        except ConfigurationError as exc:
            logger.warning("could not load %r: %s", expression, exc)
            return exc
        self._tree = tree
        self._recompute()
        logger.info("loaded %s", self.expression)
        return None

    def resize(self, sizes: Mapping[str, int]) -> Optional[ConfigurationError]:
        try:
            self._tree.update_index_sizes(sizes)
        except ConfigurationError as exc:
            logger.warning("sizes %r rejected: %s", dict(sizes), exc)
            return exc
        self._recompute()
        return None

    def configure(self, **changes: Any) -> Optional[ConfigurationError]:
        try:
            self.config = replace(self.config, **changes).normalized()
        except ConfigurationError as exc:
            logger.warning("metrics settings rejected: %s", exc)
            return exc
        except (TypeError, ValueError) as exc:
            logger.warning("metrics settings rejected: %s", exc)
            return ConfigurationError(f"Invalid metrics setting: {exc}")
        self._recompute()
        return None

    def _recompute(self) -> MetricsResult:
        self._metrics = compute_metrics(self._tree.index_sizes, self._tree, config=self.config)
        if self._metrics.faulty_nodes:
            logger.warning(
                "operation metrics unavailable; faulty nodes: %s",
                ", ".join(node.id for node in self._metrics.faulty_nodes),
            )
        return self._metrics

    # ----------------------------------------------------------------- edits
    def _edit(
        self, action: str, node_id: Optional[str], apply: Callable[[ContractionTree], bool]
    ) -> EditOutcome:
        candidate = self._tree.clone()
        if not apply(candidate):
            error = EditError(f"{action} was not applied", node_id=node_id)
            logger.info("%s", error)
            return EditOutcome(applied=False, tree=self._tree, error=error)
        self._tree = candidate
        self._recompute()
        return EditOutcome(applied=True, tree=candidate)

    def swap(self, node_id: str) -> EditOutcome:
        return self._edit("swap", node_id, lambda tree: tree.swap_children(node_id))

    def add_permutation(self, node_id: str) -> EditOutcome:
        return self._edit(
            "add permutation", node_id, lambda tree: tree.add_permutation_node(node_id)
        )

    def remove_permutation(self, node_id: str) -> EditOutcome:
        return self._edit(
            "remove permutation", node_id, lambda tree: tree.remove_permutation_node(node_id)
        )

    def relabel(self, patch: Any) -> EditOutcome:
        def _apply(tree: ContractionTree) -> bool:
            if not tree.update_indices(patch):
                return False
            # New labels need an entry in the size table.
            tree.update_index_sizes(tree.seed_index_sizes(default=self.config.default_index_size))
            return True

        node_id = getattr(getattr(patch, "root", None), "node_id", None)
        if node_id is None and isinstance(patch, Mapping):
            node_id = patch.get("id")
        return self._edit("relabel", node_id, _apply)

    # --------------------------------------------------------------- queries
    def classify_node(self, node_id: str) -> ClassificationOutcome:
        node = self._tree.find_node(node_id)
        if node is None:
            return ClassificationOutcome(error=ClassificationError(f"Node {node_id} not found"))
        if not node.is_contraction():
            return ClassificationOutcome(
                error=ClassificationError(f"Node {node_id} is not a binary contraction")
            )
        try:
            dims = classify(node.value, node.left.value, node.right.value)
        except ClassificationError as exc:
            logger.warning("node %s: %s", node_id, exc)
            return ClassificationOutcome(error=exc)
        return ClassificationOutcome(dims=dims)

    def subtree_expression(self, node_ids: Iterable[str]) -> str:
        return self._tree.create_subtree_expression(node_ids)

    def explain(self, *, json: bool = False) -> Any:
        nodes: List[Dict[str, Any]] = []
        sizes = self._tree.index_sizes
        for node in self._tree.iter_nodes():
            nodes.append(
                {
                    "id": node.id,
                    "kind": _node_kind(node),
                    "indices": list(node.value),
                    "sizes": list(node.sizes) if node.sizes is not None else None,
                    "strides": compute_strides(
                        node.value, sizes, self.config.default_index_size
                    ),
                    "deletable": node.deletable,
                    "metrics": node.metrics,
                }
            )

        payload = {
            "expression": self.expression,
            "index_sizes": dict(sizes),
            "element_bytes": self.config.element_bytes,
            "total_operations": self._metrics.total_operations,
            "faulty_nodes": [node.id for node in self._metrics.faulty_nodes],
            "nodes": nodes,
        }

        if json:
            payload["nodes"] = [
                {**entry, "metrics": asdict(entry["metrics"])} for entry in nodes
            ]
            return json_ready(payload)

        unit = self.config.size_unit
        lines: List[str] = [f"[expr] {payload['expression'] or '-'}"]
        for entry in nodes:
            metrics = entry["metrics"]
            line = (
                f"[{entry['kind']}] {entry['id']} {format_labels(entry['indices'])}"
                f" size={format_size(metrics.tensor_size, unit)}"
                f" ({format_number(metrics.size_percentage)}%)"
                f" strides={format_strides(entry['indices'], entry['strides'])}"
            )
            if metrics.operations is not None:
                line += (
                    f" ops={format_number(metrics.operations)}"
                    f" ({format_number(metrics.operations_percentage)}%)"
                    f" ai={format_number(metrics.arithmetic_intensity)}"
                )
            lines.append(line)
        if payload["faulty_nodes"]:
            lines.append(f"[faulty] {', '.join(payload['faulty_nodes'])}")
        lines.append(f"[total] ops={format_number(payload['total_operations'])}")
        return "\n".join(lines)
