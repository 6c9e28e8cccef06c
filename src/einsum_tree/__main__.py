from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional

from .core.classifier import classify
from .core.exceptions import ClassificationError
from .core.formatting import format_dimension_table
from .core.metrics import SIZE_UNITS, MetricsConfig
from .core.session import Session


def _parse_sizes(text: Optional[str]) -> Dict[str, int]:
    sizes: Dict[str, int] = {}
    if not text:
        return sizes
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        label, sep, value = item.partition("=")
        if not sep or not label.strip():
            raise SystemExit(f"Invalid size entry {item!r}; expected label=size")
        try:
            size = int(value)
        except ValueError as exc:
            raise SystemExit(f"Invalid size for {label.strip()!r}: {value!r}") from exc
        if size <= 0:
            raise SystemExit(f"Size for {label.strip()!r} must be positive")
        sizes[label.strip()] = size
    return sizes


def _parse_labels(text: str) -> List[str]:
    return [label.strip() for label in text.strip("[]").split(",") if label.strip()]


def _load_session(expression: str, config: MetricsConfig, sizes: Dict[str, int]) -> Session:
    session = Session(config=config)
    error = session.load(expression, sizes)
    if error is not None:
        print(f"error: {error}", file=sys.stderr)
        raise SystemExit(1)
    return session


def _explain(args: argparse.Namespace) -> None:
    try:
        config = MetricsConfig(element_bytes=args.element_bytes, size_unit=args.unit).normalized()
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    session = _load_session(args.expression, config, _parse_sizes(args.sizes))
    if args.json:
        print(json.dumps(session.explain(json=True), indent=2))
    else:
        print(session.explain())


def _classify(args: argparse.Namespace) -> None:
    try:
        dims = classify(
            _parse_labels(args.node), _parse_labels(args.left), _parse_labels(args.right)
        )
    except ClassificationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    print(format_dimension_table(dims))


def _subtree(args: argparse.Namespace) -> None:
    session = _load_session(args.expression, MetricsConfig(), {})
    print(session.subtree_expression(args.ids))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Einsum tree command line utilities")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="cmd")

    explain_parser = subparsers.add_parser(
        "explain", help="Print per-node sizes, strides and operation counts"
    )
    explain_parser.add_argument("expression", help="Tree in bracket notation")
    explain_parser.add_argument(
        "--sizes",
        default=None,
        help="Comma-separated index sizes, e.g. i=3,j=4 (missing labels default to 2)",
    )
    explain_parser.add_argument(
        "--element-bytes",
        type=int,
        default=4,
        help="Bytes per tensor element (default: 4)",
    )
    explain_parser.add_argument(
        "--unit",
        default="KiB",
        choices=list(SIZE_UNITS),
        help="Unit used for tensor sizes (default: KiB)",
    )
    explain_parser.add_argument("--json", action="store_true", help="Emit a JSON document")

    classify_parser = subparsers.add_parser(
        "classify", help="Classify the dimensions of one binary contraction"
    )
    classify_parser.add_argument("node", help="Output indices, e.g. m,n")
    classify_parser.add_argument("left", help="Left operand indices, e.g. m,k")
    classify_parser.add_argument("right", help="Right operand indices, e.g. k,n")

    subtree_parser = subparsers.add_parser(
        "subtree", help="Extract the expression spanned by the selected node ids"
    )
    subtree_parser.add_argument("expression", help="Tree in bracket notation")
    subtree_parser.add_argument("ids", nargs="+", help="Node ids, e.g. node_0 node_2")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    if args.cmd == "explain":
        _explain(args)
        return
    if args.cmd == "classify":
        _classify(args)
        return
    if args.cmd == "subtree":
        _subtree(args)
        return

    parser.print_help()


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
