"""Explicit observable state holders and derived views.

Each store owns its own ``Observable`` instances; nothing here is a module
level singleton.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, Protocol, Sequence, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

Listener = Callable[[T], None]
Unsubscribe = Callable[[], None]


class Readable(Protocol[T_co]):
    """Anything exposing a current value and change subscriptions."""

    def get(self) -> T_co:
        ...

    def subscribe(self, listener: Callable[[T_co], None]) -> Unsubscribe:
        ...


class Observable(Generic[T]):
    """A writable value that notifies listeners when it changes.

    Setting a value equal to the current one is silent. Listeners receive the
    current value immediately on :meth:`subscribe`.
    """

    __slots__ = ("_value", "_listeners", "_name")

    def __init__(self, value: T, *, name: str = "") -> None:
        self._value = value
        self._listeners: list[Listener[T]] = []
        self._name = name

    @property
    def value(self) -> T:
        return self._value

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value is self._value or _safe_equal(value, self._value):
            return
        self._value = value
        self._notify()

    def update(self, fn: Callable[[T], T]) -> None:
        self.set(fn(self._value))

    def subscribe(self, listener: Listener[T]) -> Unsubscribe:
        self._listeners.append(listener)
        _call(listener, self._value, self._name)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            _call(listener, self._value, self._name)

    def __repr__(self) -> str:
        label = f" {self._name}" if self._name else ""
        return f"<Observable{label} value={self._value!r}>"


class Derived(Generic[T]):
    """A read-only view recomputed whenever one of its sources changes."""

    __slots__ = ("_sources", "_compute", "_state", "_unsubscribers", "_ready")

    def __init__(
        self,
        sources: Sequence[Readable[Any]],
        compute: Callable[..., T],
        *,
        name: str = "",
    ) -> None:
        if not sources:
            raise ValueError("Derived requires at least one source")
        self._sources = tuple(sources)
        self._compute = compute
        self._ready = False
        self._state: Observable[T] = Observable(self._recompute(), name=name)
        self._unsubscribers = [source.subscribe(self._on_source_changed) for source in self._sources]
        self._ready = True

    def get(self) -> T:
        return self._state.get()

    @property
    def value(self) -> T:
        return self._state.get()

    def subscribe(self, listener: Listener[T]) -> Unsubscribe:
        return self._state.subscribe(listener)

    def dispose(self) -> None:
        """Detach from all sources; the last computed value stays readable."""

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _recompute(self) -> T:
        return self._compute(*(source.get() for source in self._sources))

    def _on_source_changed(self, _value: Any) -> None:
        # Sources replay their value on subscribe; skip until wiring is done.
        if not self._ready:
            return
        self._state.set(self._recompute())


def _safe_equal(left: Any, right: Any) -> bool:
    try:
        return bool(left == right)
    except Exception:  # pragma: no cover - exotic __eq__ implementations
        return False


def _call(listener: Callable[[Any], None], value: Any, name: str) -> None:
    try:
        listener(value)
    except Exception:
        LOGGER.exception("Listener %r for observable %s raised", listener, name or "<anonymous>")


__all__ = ["Derived", "Listener", "Observable", "Readable", "Unsubscribe"]
