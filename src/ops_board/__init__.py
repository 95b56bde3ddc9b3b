"""Provide the public `ops_board` package exports."""

from __future__ import annotations

from .board.engine import BoardEngine
from .logging_setup import setup_logging

__all__ = ["BoardEngine", "setup_logging"]
