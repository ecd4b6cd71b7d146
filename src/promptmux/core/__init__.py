"""Core utilities shared across the application.

This package holds framework-free building blocks with no I/O.
"""

from .history import DEFAULT_MAX_HISTORY, UndoHistory

__all__ = ["DEFAULT_MAX_HISTORY", "UndoHistory"]
