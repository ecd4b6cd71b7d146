"""Typed event bus connecting stores, editor sessions and views.

Publishers never hold references to their listeners: the project store
announces workspace and selection changes, editor sessions announce history
changes, and whoever cares subscribes by event class.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for bus events; subclasses are slotted dataclasses."""


# =============================================================================
# Workspace Events
# =============================================================================


@dataclass(slots=True)
class WorkspaceLoaded(Event):
    """The workspace mirror was refreshed from the backend.

    Attributes:
        active_project_id: Project the workspace points at.
        project_count: Number of projects in the workspace.
    """

    active_project_id: str
    project_count: int


@dataclass(slots=True)
class ProjectSwitched(Event):
    """A different project became active, by request or because the active one was deleted."""

    project_id: str


@dataclass(slots=True)
class OutlineItemDeleted(Event):
    """A section or topic was removed.

    Attributes:
        item_type: ``"section"`` or ``"topic"``.
        item_id: Identifier of the removed item.
    """

    item_type: str
    item_id: str


# =============================================================================
# Selection Events
# =============================================================================


@dataclass(slots=True)
class ActiveTopicChanged(Event):
    topic_id: str | None


@dataclass(slots=True)
class ActiveSectionChanged(Event):
    section_id: str | None


# =============================================================================
# Editing & Status Events
# =============================================================================


@dataclass(slots=True)
class HistoryChanged(Event):
    """An editor session recorded, undid, redid or reset its history."""

    session: str
    can_undo: bool
    can_redo: bool


@dataclass(slots=True)
class BackendCallFailed(Event):
    """A backend command raised; ``error`` is the user-facing message."""

    command: str
    error: str


@dataclass(slots=True)
class NoticePosted(Event):
    """A short message for the status area, e.g. "Nothing to undo"."""

    message: str


# Published on every keystroke-level edit; not worth a debug line each.
_UNLOGGED_EVENTS: frozenset[type[Event]] = frozenset({HistoryChanged})


class EventBus(Generic[E]):
    """Publish/subscribe dispatch keyed by exact event class.

    Bound methods are referenced weakly so a store or editor that goes away
    unsubscribes itself; functions and lambdas are referenced strongly.
    Handlers run synchronously in subscription order. Not thread-safe.
    """

    __slots__ = ("_subscriptions",)

    def __init__(self) -> None:
        self._subscriptions: dict[type[Event], list[_Subscription]] = {}

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler``; registering it twice means two calls per event."""

        self._subscriptions.setdefault(event_type, []).append(_Subscription.of(handler))
        logger.debug("%s subscribed to %s", _describe(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Drop the earliest registration of ``handler``, if there is one."""

        subscriptions = self._subscriptions.get(event_type, [])
        for position, subscription in enumerate(subscriptions):
            if subscription.refers_to(handler):
                del subscriptions[position]
                logger.debug("%s unsubscribed from %s", _describe(handler), event_type.__name__)
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` to its subscribers; a failing handler is logged and skipped."""

        event_type = type(event)
        subscriptions = self._subscriptions.get(event_type)
        if not subscriptions:
            return
        if event_type not in _UNLOGGED_EVENTS:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(subscriptions))

        stale = False
        # Snapshot so handlers can subscribe or unsubscribe while we deliver.
        for subscription in tuple(subscriptions):
            handler = subscription.target()
            if handler is None:
                stale = True
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("%s failed while handling %s", _describe(handler), event_type.__name__)

        if stale:
            subscriptions[:] = [item for item in subscriptions if item.target() is not None]

    def clear(self) -> None:
        self._subscriptions.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Number of registrations for ``event_type`` (all types when omitted)."""

        if event_type is None:
            return sum(len(items) for items in self._subscriptions.values())
        return len(self._subscriptions.get(event_type, ()))


class _Subscription:
    __slots__ = ("_handler", "_method")

    def __init__(self, handler: Handler | None, method: WeakMethod | None) -> None:
        self._handler = handler
        self._method = method

    @classmethod
    def of(cls, handler: Handler) -> _Subscription:
        if getattr(handler, "__self__", None) is not None and hasattr(handler, "__func__"):
            try:
                return cls(None, WeakMethod(handler))
            except TypeError:
                # Owner does not support weak references.
                pass
        return cls(handler, None)

    def target(self) -> Handler | None:
        if self._method is not None:
            return self._method()
        return self._handler

    def refers_to(self, handler: Handler) -> bool:
        target = self.target()
        return target is not None and target == handler


def _describe(handler: Handler) -> str:
    owner = getattr(handler, "__self__", None)
    if owner is not None and hasattr(handler, "__func__"):
        return f"{type(owner).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__qualname__", None) or repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "WorkspaceLoaded",
    "ProjectSwitched",
    "OutlineItemDeleted",
    "ActiveTopicChanged",
    "ActiveSectionChanged",
    "HistoryChanged",
    "BackendCallFailed",
    "NoticePosted",
]
