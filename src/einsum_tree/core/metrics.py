from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np

from .classifier import DimensionTypes, classify
from .exceptions import ClassificationError, ConfigurationError
from .ir import Node
from .tree import DEFAULT_INDEX_SIZE, ContractionTree

logger = logging.getLogger(__name__)

SIZE_UNITS = ("Bytes", "KiB", "MiB")


@dataclass
class MetricsConfig:
    """
    Settings shared by the metric passes and the command line report.

    * ``element_bytes`` is the width of one tensor element (4 for fp32, 8 for fp64).
    * ``default_index_size`` applies to every label missing from the size table.
    * ``size_unit`` selects how byte counts are rendered (``"Bytes"``, ``"KiB"``, ``"MiB"``).
    """

    element_bytes: int = 4
    default_index_size: int = DEFAULT_INDEX_SIZE
    size_unit: str = "KiB"

    def normalized(self) -> "MetricsConfig":
        element_bytes = int(self.element_bytes)
        if element_bytes <= 0:
            raise ConfigurationError(f"element_bytes must be positive; received {self.element_bytes}")
        default_size = int(self.default_index_size)
        if default_size <= 0:
            raise ConfigurationError(
                f"default_index_size must be positive; received {self.default_index_size}"
            )
        units = {unit.lower(): unit for unit in SIZE_UNITS}
        unit = units.get(str(self.size_unit).lower())
        if unit is None:
            raise ConfigurationError(f"Unsupported size unit: {self.size_unit}")
        return replace(
            self,
            element_bytes=element_bytes,
            default_index_size=default_size,
            size_unit=unit,
        )


@dataclass
class MetricsResult:
    total_operations: int = 0
    faulty_nodes: List[Node] = field(default_factory=list)
    contraction_nodes: List[Node] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.faulty_nodes


def _prod(values: Iterable[int]) -> int:
    result = 1
    for value in values:
        result *= int(value)
    return int(result)


def _size_of(label: str, index_sizes: Mapping[str, int], default: int) -> int:
    return int(index_sizes.get(label, default))


def dimension_product(
    labels: Sequence[str],
    index_sizes: Mapping[str, int],
    default: int = DEFAULT_INDEX_SIZE,
) -> int:
    return _prod(_size_of(label, index_sizes, default) for label in labels)


def calculate_operations(
    dims: DimensionTypes,
    index_sizes: Mapping[str, int],
    default: int = DEFAULT_INDEX_SIZE,
) -> int:
    """Multiply-accumulate count over the full blocked and looped iteration space."""
    cmn = _prod(dimension_product(dims.dims(kind), index_sizes, default) for kind in "cmn")
    k = dimension_product(dims.dims("k"), index_sizes, default)
    return 2 * cmn * k - cmn


def calculate_byte_accesses(
    dims: DimensionTypes,
    index_sizes: Mapping[str, int],
    default: int = DEFAULT_INDEX_SIZE,
) -> int:
    c, m, n, k = (dimension_product(dims.dims(kind), index_sizes, default) for kind in "cmnk")
    return c * m * n + n * k + m * k


def compute_strides(
    labels: Sequence[str],
    index_sizes: Mapping[str, int],
    default: int = DEFAULT_INDEX_SIZE,
) -> List[int]:
    """Row-major strides: the last label is the unit-stride dimension."""
    strides = [0] * len(labels)
    stride = 1
    for position in range(len(labels) - 1, -1, -1):
        strides[position] = stride
        stride *= max(1, _size_of(labels[position], index_sizes, default))
    return strides


def _normalize(values: np.ndarray) -> np.ndarray:
    low = values.min()
    high = values.max()
    if low == high:
        return np.zeros_like(values)
    return (values - low) / (high - low) * 100.0


def _annotate_sizes(
    nodes: List[Node], index_sizes: Mapping[str, int], cfg: MetricsConfig
) -> None:
    for node in nodes:
        node.metrics.tensor_size = (
            dimension_product(node.value, index_sizes, cfg.default_index_size) * cfg.element_bytes
        )
    sizes = np.asarray([node.metrics.tensor_size for node in nodes], dtype=np.float64)
    total = sizes.sum()
    percentages = sizes / total * 100.0 if total > 0 else np.zeros_like(sizes)
    normalized = _normalize(sizes)
    for node, pct, norm in zip(nodes, percentages.tolist(), normalized.tolist()):
        node.metrics.size_percentage = pct
        node.metrics.normalized_size_percentage = norm


def _annotate_operations(
    nodes: List[Node],
    index_sizes: Mapping[str, int],
    cfg: MetricsConfig,
    result: MetricsResult,
) -> None:
    for node in nodes:
        if not node.is_contraction():
            continue
        try:
            dims = classify(node.value, node.left.value, node.right.value)
        except ClassificationError as exc:
            logger.warning("node %s is faulty: %s", node.id, exc)
            result.faulty_nodes.append(node)
            continue
        operations = calculate_operations(dims, index_sizes, cfg.default_index_size)
        byte_accesses = calculate_byte_accesses(dims, index_sizes, cfg.default_index_size)
        node.metrics.operations = operations
        node.metrics.byte_accesses = byte_accesses
        # Zero-sized labels leave nothing to move.
        traffic = byte_accesses * cfg.element_bytes
        node.metrics.arithmetic_intensity = operations / traffic if traffic else None
        result.contraction_nodes.append(node)
        result.total_operations += operations


def _annotate_operation_percentages(nodes: List[Node], total: int) -> None:
    if not nodes:
        return
    operations = np.asarray([node.metrics.operations for node in nodes], dtype=np.float64)
    percentages = operations / float(total) * 100.0 if total > 0 else np.zeros_like(operations)
    normalized = _normalize(percentages)
    for node, pct, norm in zip(nodes, percentages.tolist(), normalized.tolist()):
        node.metrics.operations_percentage = pct
        node.metrics.normalized_operations_percentage = norm


def compute_metrics(
    index_sizes: Optional[Mapping[str, int]],
    tree: Union[ContractionTree, Node, None],
    element_bytes: Optional[int] = None,
    config: Optional[MetricsConfig] = None,
) -> MetricsResult:
    """Annotate every node with size and cost metrics.

    Tensor sizes are always computed. Operation metrics require every
    contraction to be classifiable; otherwise they are cleared for the whole
    tree, ``total_operations`` is 0, and the offending nodes are reported in
    ``faulty_nodes``.
    """
    cfg = config or MetricsConfig()
    if element_bytes is not None:
        cfg = replace(cfg, element_bytes=element_bytes)
    cfg = cfg.normalized()

    root = tree.get_root() if isinstance(tree, ContractionTree) else tree
    result = MetricsResult()
    if root is None:
        return result

    sizes = dict(index_sizes or {})
    nodes = list(root.iter_postorder())
    for node in nodes:
        node.metrics.reset_operations()

    _annotate_sizes(nodes, sizes, cfg)
    _annotate_operations(nodes, sizes, cfg, result)

    if result.faulty_nodes:
        for node in nodes:
            node.metrics.reset_operations()
        return MetricsResult(total_operations=0, faulty_nodes=result.faulty_nodes)

    root.metrics.total_operations = result.total_operations
    _annotate_operation_percentages(result.contraction_nodes, result.total_operations)
    return result
