"""Tests for the observable state holders."""

from __future__ import annotations

import pytest

from promptmux.ui.domain.observable import Derived, Observable


class TestObservable:
    """Tests for writable observables."""

    def test_subscribe_replays_current_value(self) -> None:
        state = Observable(1)
        seen: list[int] = []
        state.subscribe(seen.append)
        assert seen == [1]

    def test_set_notifies_on_change_only(self) -> None:
        state = Observable("a")
        seen: list[str] = []
        state.subscribe(seen.append)

        state.set("b")
        state.set("b")

        assert seen == ["a", "b"]

    def test_equal_structures_are_silent(self) -> None:
        state = Observable({"x": 1})
        seen: list[dict] = []
        state.subscribe(seen.append)

        state.set({"x": 1})

        assert len(seen) == 1

    def test_update_applies_function(self) -> None:
        state = Observable(2)
        state.update(lambda value: value * 5)
        assert state.get() == 10
        assert state.value == 10

    def test_unsubscribe_stops_notifications(self) -> None:
        state = Observable(0)
        seen: list[int] = []
        unsubscribe = state.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        state.set(1)

        assert seen == [0]
        assert state.listener_count() == 0

    def test_failing_listener_is_isolated(self, caplog: pytest.LogCaptureFixture) -> None:
        state = Observable(0, name="counter")
        seen: list[int] = []

        def broken(value: int) -> None:
            if value:
                raise ValueError("nope")

        state.subscribe(broken)
        state.subscribe(seen.append)

        with caplog.at_level("ERROR"):
            state.set(3)

        assert seen == [0, 3]
        assert "counter" in caplog.text


class TestDerived:
    """Tests for derived views."""

    def test_computes_from_sources(self) -> None:
        first = Observable(2)
        second = Observable(3)
        total = Derived([first, second], lambda a, b: a + b)

        assert total.get() == 5
        first.set(10)
        assert total.value == 13

    def test_notifies_only_on_result_change(self) -> None:
        source = Observable(1)
        parity = Derived([source], lambda value: value % 2)
        seen: list[int] = []
        parity.subscribe(seen.append)

        source.set(3)
        source.set(4)

        assert seen == [1, 0]

    def test_chained_views(self) -> None:
        source = Observable("abc")
        upper = Derived([source], str.upper)
        length = Derived([upper], len)

        source.set("hello")

        assert upper.get() == "HELLO"
        assert length.get() == 5

    def test_compute_runs_once_on_construction(self) -> None:
        calls: list[int] = []
        source = Observable(1)

        def compute(value: int) -> int:
            calls.append(value)
            return value

        Derived([source], compute)

        assert calls == [1]

    def test_dispose_detaches(self) -> None:
        source = Observable(1)
        view = Derived([source], lambda value: value * 2)

        view.dispose()
        source.set(5)

        assert view.get() == 2
        assert source.listener_count() == 0

    def test_requires_sources(self) -> None:
        with pytest.raises(ValueError):
            Derived([], lambda: None)
