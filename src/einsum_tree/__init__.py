from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _load_version

from .core.classifier import DimensionClassifier, DimensionTypes, classify, try_classify
from .core.exceptions import (
    ClassificationError,
    ConfigurationError,
    EditError,
    EinsumTreeError,
    ParseError,
)
from .core.ir import Node, NodeIdSequence, NodeMetrics
from .core.metrics import (
    MetricsConfig,
    MetricsResult,
    calculate_byte_accesses,
    calculate_operations,
    compute_metrics,
    compute_strides,
)
from .core.parser import parse
from .core.session import ClassificationOutcome, EditOutcome, Session
from .core.tree import ContractionTree, IndexPatch, NodeIndexUpdate

try:
    __version__ = _load_version("einsum-tree")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "ContractionTree",
    "IndexPatch",
    "NodeIndexUpdate",
    "Node",
    "NodeIdSequence",
    "NodeMetrics",
    "parse",
    "classify",
    "try_classify",
    "DimensionClassifier",
    "DimensionTypes",
    "compute_metrics",
    "calculate_operations",
    "calculate_byte_accesses",
    "compute_strides",
    "MetricsConfig",
    "MetricsResult",
    "Session",
    "EditOutcome",
    "ClassificationOutcome",
    "EinsumTreeError",
    "ParseError",
    "ClassificationError",
    "EditError",
    "ConfigurationError",
    "__version__",
]
