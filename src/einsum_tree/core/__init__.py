"""Compiler core for einsum contraction trees."""

__all__ = [
    "classifier",
    "exceptions",
    "formatting",
    "ir",
    "metrics",
    "parser",
    "session",
    "tree",
]
