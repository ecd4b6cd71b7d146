"""Snapshot-based undo/redo history."""

from __future__ import annotations

import copy as _copy
import logging
import operator
from typing import Callable, Generic, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_HISTORY = 50


class UndoHistory(Generic[T]):
    """Bounded linear undo/redo log of full-state snapshots.

    The history never owns the caller's current state. Callers push every new
    state after an edit and pass their current state into :meth:`undo` and
    :meth:`redo`; a ``None`` result means the operation had no effect.

    ``past`` holds recorded snapshots (oldest first) and is capped at
    ``max_history`` entries, evicting the oldest. ``future`` is a stack of
    snapshots stepped back over by :meth:`undo`; any successful :meth:`push`
    empties it.

    Snapshots are compared with ``equals`` (deep structural ``==`` by default)
    and copied with ``copy`` on the way in and out so that mutations made by
    the caller can never reach the recorded history.

    Not thread-safe: all calls must come from the owning thread.
    """

    __slots__ = ("_past", "_future", "_max_history", "_equals", "_copy")

    def __init__(
        self,
        max_history: int = DEFAULT_MAX_HISTORY,
        *,
        equals: Callable[[T, T], bool] = operator.eq,
        copy: Callable[[T], T] = _copy.deepcopy,
    ) -> None:
        if isinstance(max_history, bool) or not isinstance(max_history, int) or max_history < 1:
            raise ValueError("max_history must be a positive integer")
        self._past: list[T] = []
        self._future: list[T] = []
        self._max_history = max_history
        self._equals = equals
        self._copy = copy

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def push(self, state: T) -> None:
        """Record ``state`` as the newest snapshot.

        Consecutive duplicates are ignored. A recorded push evicts the oldest
        snapshot once the bound is exceeded and discards the redo stack.
        """

        if self._past and self._equals(self._past[-1], state):
            LOGGER.debug("UndoHistory.push: duplicate of tip ignored")
            return

        self._past.append(self._copy(state))
        if len(self._past) > self._max_history:
            self._past.pop(0)
        self._future.clear()
        LOGGER.debug(
            "UndoHistory.push: past=%d future=%d", len(self._past), len(self._future)
        )

    def clear(self) -> None:
        """Forget all recorded snapshots."""

        self._past.clear()
        self._future.clear()
        LOGGER.debug("UndoHistory.clear")

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def undo(self, current_state: T) -> T | None:
        """Return the snapshot preceding ``current_state``, or ``None``.

        When the caller sits exactly on the tip of ``past`` the tip is moved
        onto the redo stack first. When the caller has drifted away from the
        tip nothing moves and the tip itself is returned.
        """

        if not self._past:
            return None

        if self._equals(self._past[-1], current_state):
            self._future.append(self._past.pop())

        if not self._past:
            LOGGER.debug("UndoHistory.undo: reached start of history")
            return None

        LOGGER.debug(
            "UndoHistory.undo: past=%d future=%d", len(self._past), len(self._future)
        )
        return self._copy(self._past[-1])

    def redo(self, current_state: T) -> T | None:
        """Re-apply the most recently undone snapshot, or return ``None``.

        ``current_state`` mirrors the :meth:`undo` signature and is not
        consulted: the redo stack alone decides the result.
        """

        del current_state
        if not self._future:
            return None

        snapshot = self._future.pop()
        self._past.append(snapshot)
        LOGGER.debug(
            "UndoHistory.redo: past=%d future=%d", len(self._past), len(self._future)
        )
        return self._copy(snapshot)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    @property
    def max_history(self) -> int:
        return self._max_history

    @property
    def past(self) -> tuple[T, ...]:
        """Recorded snapshots, oldest first."""

        return tuple(self._copy(item) for item in self._past)

    @property
    def future(self) -> tuple[T, ...]:
        """Redo stack, bottom first (the last item is redone next)."""

        return tuple(self._copy(item) for item in self._future)

    def __len__(self) -> int:
        return len(self._past)

    def __repr__(self) -> str:
        return (
            f"UndoHistory(past={len(self._past)}, future={len(self._future)}, "
            f"max_history={self._max_history})"
        )


__all__ = ["DEFAULT_MAX_HISTORY", "UndoHistory"]
