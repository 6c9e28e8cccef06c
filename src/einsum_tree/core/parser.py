from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Collection, List, Optional

from lark import Lark, Token, Transformer
from lark.exceptions import LarkError, UnexpectedEOF, UnexpectedInput

from .exceptions import ParseError
from .ir import Node, NodeIdSequence

logger = logging.getLogger(__name__)

GRAMMAR_PATH = Path(__file__).with_name("tree_grammar.lark")

_WHITESPACE_RE = re.compile(r"\s+")
# Characters that may appear somewhere in a well-formed expression.
_ALPHABET_RE = re.compile(r"[A-Za-z0-9,+\-\[\]>]")


@lru_cache(maxsize=1)
def _build_lark() -> Lark:
    grammar = GRAMMAR_PATH.read_text()
    return Lark(
        grammar,
        parser="lalr",
        start="start",
        propagate_positions=False,
        maybe_placeholders=False,
    )


def strip_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub("", text)


class TreeTransformer(Transformer):
    """Builds ``Node`` objects bottom-up, so ids are issued in post-order."""

    def __init__(self, ids: NodeIdSequence):
        super().__init__()
        self.ids = ids

    def labels(self, items: List[Token]) -> List[str]:
        return [str(token) for token in items]

    def leaf(self, items: List[Any]) -> Node:
        return Node.create(self.ids, items[0])

    def node(self, items: List[Any]) -> Node:
        if len(items) == 2:
            operand, head = items
            # A permutation wrapper and the tensor it relabels are both removable.
            operand.deletable = True
            return Node.create(self.ids, head, operand, None, deletable=True)
        left, right, head = items
        return Node.create(self.ids, head, left, right)

    def start(self, items: List[Any]) -> Node:
        root = items[0]
        if isinstance(root, Node):
            return root
        return Node.create(self.ids, root)


def _expected_terminals(exc: UnexpectedInput) -> Collection[str]:
    expected = getattr(exc, "expected", None)
    if expected is None:
        expected = getattr(exc, "allowed", None)
    return expected or ()


def _is_end_of_input(exc: UnexpectedInput) -> bool:
    if isinstance(exc, UnexpectedEOF):
        return True
    token = getattr(exc, "token", None)
    return getattr(token, "type", None) == "$END"


def _accepted_terminals(prefix: str, fallback: Collection[str]) -> Collection[str]:
    """Terminals the parser can shift after ``prefix``, pending reductions applied.

    The lexer's lookahead set is shared between states LALR merged (the left
    and right operand of a node), so it over-reports what may follow.
    """
    interactive = _build_lark().parse_interactive(prefix)
    try:
        interactive.exhaust_lexer()
    except UnexpectedInput:
        return fallback
    return interactive.accepts()


def _describe_syntax_error(text: str, position: int, expected: Collection[str]) -> str:
    found = text[position]
    if not _ALPHABET_RE.match(found):
        return f"Invalid character '{found}'"
    expected = _accepted_terminals(text[:position], expected)
    if position > 0 and "$END" in expected:
        return f"Parsed tree but found extra characters '{text[position:]}'"
    if "_SEP" in expected and "_ARROW" in expected:
        return f"Expected '+[', ',[' or '->[' but found '{text[position:position + 2]}'"
    if "_ARROW" in expected:
        return f"Expected '->[' but found '{text[position:position + 3]}'"
    if found == "]" and "LABEL" in expected and "_RSQB" not in expected:
        return "Expected index label but found ']'"
    return f"Invalid character '{found}'"


def _error_position(exc: UnexpectedInput, text: str) -> int:
    position = getattr(exc, "pos_in_stream", None)
    if position is None or position < 0:
        column = getattr(exc, "column", None)
        position = column - 1 if isinstance(column, int) and column > 0 else len(text)
    return min(int(position), len(text))


def _syntax_error(exc: UnexpectedInput, text: str) -> ParseError:
    if _is_end_of_input(exc):
        position = len(text)
        message = "Unexpected end of input"
    else:
        position = _error_position(exc, text)
        if position >= len(text):
            message = "Unexpected end of input"
        else:
            message = _describe_syntax_error(text, position, _expected_terminals(exc))
    return ParseError(message, line=1, column=position + 1, line_text=text)


def parse(text: str, ids: Optional[NodeIdSequence] = None) -> Node:
    """Parse a bracket-notation einsum tree into its root ``Node``.

    All whitespace is removed first; error columns refer to the stripped text.
    When ``ids`` is omitted a fresh sequence starting at ``node_0`` is used.
    """
    source = strip_whitespace(text or "")
    if not source:
        raise ParseError("Unexpected end of input", line=1, column=1, line_text=source)

    parser = _build_lark()
    try:
        tree = parser.parse(source)
    except UnexpectedInput as exc:
        error = _syntax_error(exc, source)
        logger.debug("rejected expression %r: %s", source, error.message)
        raise error from exc
    except LarkError as exc:  # pragma: no cover
        raise ParseError(str(exc)) from exc

    transformer = TreeTransformer(ids if ids is not None else NodeIdSequence())
    return transformer.transform(tree)
