from __future__ import annotations

from typing import Optional, Sequence


class EinsumTreeError(Exception):
    """Base class for einsum-tree specific exceptions."""


class ParseError(EinsumTreeError, ValueError):
    def __init__(
        self,
        message: str,
        *,
        line: Optional[int] = None,
        column: Optional[int] = None,
        line_text: Optional[str] = None,
    ):
        detail = _format_location(line, column, line_text)
        super().__init__(f"{message}{detail}")
        self.message = message
        self.line = line
        self.column = column
        self.line_text = line_text

    @property
    def position(self) -> Optional[int]:
        """Zero-based offset of the offending character in the stripped input."""
        if self.column is None:
            return None
        return self.column - 1


class ClassificationError(EinsumTreeError, ValueError):
    def __init__(
        self,
        message: str,
        *,
        node: Optional[Sequence[str]] = None,
        left: Optional[Sequence[str]] = None,
        right: Optional[Sequence[str]] = None,
    ):
        detail = _format_operands(node, left, right)
        super().__init__(f"{message}{detail}")
        self.message = message
        self.node = list(node) if node is not None else None
        self.left = list(left) if left is not None else None
        self.right = list(right) if right is not None else None


class ConfigurationError(EinsumTreeError, ValueError):
    """Rejected metric settings or index sizes."""


class EditError(EinsumTreeError, RuntimeError):
    def __init__(self, message: str, *, node_id: Optional[str] = None):
        super().__init__(message if node_id is None else f"{message} (node {node_id})")
        self.node_id = node_id


def _format_location(
    line: Optional[int],
    column: Optional[int],
    line_text: Optional[str],
) -> str:
    if line is None and column is None:
        return ""
    location = []
    if line is not None:
        location.append(f"line {line}")
    if column is not None:
        location.append(f"col {column}")
    location_str = f" ({', '.join(location)})"
    if line_text is None or column is None or column < 1:
        return location_str
    caret = " " * (column - 1) + "^"
    return f"{location_str}\n  {line_text}\n  {caret}"


def _format_operands(
    node: Optional[Sequence[str]],
    left: Optional[Sequence[str]],
    right: Optional[Sequence[str]],
) -> str:
    if node is None:
        return ""

    def _fmt(labels: Optional[Sequence[str]]) -> str:
        return "[" + ",".join(str(label) for label in (labels or [])) + "]"

    return f" ({_fmt(left)},{_fmt(right)}->{_fmt(node)})"
