"""Front-end state layer: event bus, observable stores, editor sessions."""

from .events import EventBus

__all__ = [
    "EventBus",
]
