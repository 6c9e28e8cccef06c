"""Setuptools build hooks for einsum-tree."""

from __future__ import annotations

from setuptools import setup

# Metadata lives in pyproject.toml; the package is pure Python and builds a
# py3-none-any wheel with the default command classes.
setup()
