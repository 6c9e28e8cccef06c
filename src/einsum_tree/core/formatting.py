from __future__ import annotations

from typing import List, Optional, Sequence, Union

from .classifier import KIND_KEYS, DimensionTypes

_UNIT_DIVISORS = {"Bytes": 1, "KiB": 1024, "MiB": 1024 * 1024}


def format_number(value: Optional[Union[int, float]], digits: int = 2) -> str:
    if value is None:
        return "-"
    if isinstance(value, int):
        return f"{value:,}"
    return f"{float(value):,.{digits}f}"


def format_size(nbytes: Optional[int], unit: str = "KiB") -> str:
    if nbytes is None:
        return "-"
    divisor = _UNIT_DIVISORS.get(unit)
    if divisor is None:
        raise ValueError(f"Unsupported size unit: {unit}")
    if divisor == 1:
        return f"{format_number(int(nbytes))} {unit}"
    return f"{format_number(nbytes / divisor)} {unit}"


def format_strides(labels: Sequence[str], strides: Sequence[int]) -> str:
    if len(labels) != len(strides):
        raise ValueError("labels and strides must have the same length")
    parts = [
        f"{label}=unit" if stride == 1 else f"{label}={format_number(int(stride))}"
        for label, stride in zip(labels, strides)
    ]
    return " ".join(parts) if parts else "-"


def format_dimension_table(dims: DimensionTypes) -> str:
    """Render a CMNK table: one row per kind, primitive and loop columns."""

    def _cell(labels: List[str]) -> str:
        return ",".join(labels) if labels else "-"

    rows = [("", "primitive", "loop")]
    for kind, (primitive_key, loop_key) in KIND_KEYS.items():
        rows.append(
            (
                kind.upper(),
                _cell(dims.primitive[primitive_key]),
                _cell(dims.loop[loop_key]),
            )
        )
    widths = [max(len(row[col]) for row in rows) for col in range(3)]
    lines = [
        "  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip()
        for row in rows
    ]
    return "\n".join(lines)
