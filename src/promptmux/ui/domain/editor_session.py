"""Editor sessions binding current state to an undo history.

An :class:`EditorSession` owns the current state of one editable unit and an
:class:`~promptmux.core.history.UndoHistory` for it. Every edit is pushed to
the history before it becomes current; undo and redo hand the current state to
the history and adopt whatever snapshot comes back.

:class:`TopicEditor` applies that contract to the content of the selected
topic, forwarding each change to the backend through the project store.
"""

from __future__ import annotations

import logging
import operator
from typing import Callable, Generic, TypeVar

from ...core.history import DEFAULT_MAX_HISTORY, UndoHistory
from ...services.backend import BackendError
from ..events import EventBus, HistoryChanged, NoticePosted, OutlineItemDeleted, ProjectSwitched
from .observable import Observable
from .project_store import ProjectStore

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class EditorSession(Generic[T]):
    """Current state of one editable unit plus its undo history."""

    def __init__(
        self,
        baseline: T | None = None,
        *,
        name: str = "editor",
        max_history: int = DEFAULT_MAX_HISTORY,
        equals: Callable[[T, T], bool] = operator.eq,
        event_bus: EventBus | None = None,
    ) -> None:
        self._name = name
        self._bus = event_bus
        self._history: UndoHistory[T] = UndoHistory(max_history, equals=equals)
        self.state: Observable[T | None] = Observable(None, name=name)
        if baseline is not None:
            self._history.push(baseline)
            self.state.set(baseline)

    @property
    def name(self) -> str:
        return self._name

    @property
    def current(self) -> T | None:
        return self.state.get()

    @property
    def history(self) -> UndoHistory[T]:
        return self._history

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    def apply(self, new_state: T) -> T:
        """Record ``new_state`` and make it current."""

        self._history.push(new_state)
        self.state.set(new_state)
        self._announce()
        return new_state

    def undo(self) -> T | None:
        """Step back; returns the new current state or ``None`` if nothing changed."""

        current = self.state.get()
        if current is None:
            return None
        previous = self._history.undo(current)
        if previous is not None:
            self.state.set(previous)
        self._announce()
        return previous

    def redo(self) -> T | None:
        """Step forward; returns the new current state or ``None`` if nothing changed."""

        current = self.state.get()
        if current is None:
            return None
        following = self._history.redo(current)
        if following is not None:
            self.state.set(following)
        self._announce()
        return following

    def reset(self, baseline: T | None = None) -> None:
        """Drop all history and start over from ``baseline``."""

        self._history.clear()
        if baseline is not None:
            self._history.push(baseline)
        self.state.set(baseline)
        LOGGER.debug("EditorSession.reset: session=%s baseline=%s", self._name, baseline is not None)
        self._announce()

    def _announce(self) -> None:
        if self._bus is None:
            return
        self._bus.publish(HistoryChanged(
            session=self._name,
            can_undo=self._history.can_undo,
            can_redo=self._history.can_redo,
        ))


class TopicEditor:
    """Edits the content of one topic with undo/redo backed by the backend.

    Edits are pushed to the history only after the backend accepted them.
    When persisting an undo or redo fails, the workspace is reloaded and the
    history restarts from the backend's content before the error propagates.
    """

    def __init__(
        self,
        store: ProjectStore,
        *,
        max_history: int = DEFAULT_MAX_HISTORY,
    ) -> None:
        self._store = store
        self._bus = store.event_bus
        self._topic_id: str | None = None
        self.session: EditorSession[str] = EditorSession(
            name="topic", max_history=max_history, event_bus=self._bus
        )
        self._bus.subscribe(ProjectSwitched, self._on_project_switched)
        self._bus.subscribe(OutlineItemDeleted, self._on_item_deleted)

    @property
    def topic_id(self) -> str | None:
        return self._topic_id

    @property
    def content(self) -> str | None:
        return self.session.current

    @property
    def can_undo(self) -> bool:
        return self.session.can_undo

    @property
    def can_redo(self) -> bool:
        return self.session.can_redo

    def open(self, topic_id: str) -> str:
        """Select ``topic_id`` and start a fresh history from its content."""

        project = self._store.project.get()
        topic = project.get_topic(topic_id) if project is not None else None
        if topic is None:
            raise KeyError(f"Topic with id {topic_id} not found")
        self._store.select_topic(topic_id)
        self._topic_id = topic_id
        self.session.reset(topic.content)
        LOGGER.debug("TopicEditor.open: topic_id=%s", topic_id)
        return topic.content

    def close(self) -> None:
        self._topic_id = None
        self.session.reset(None)

    async def edit(self, content: str) -> str:
        """Persist ``content`` and record it; failed saves leave history untouched."""

        topic_id = self._require_topic()
        await self._store.update_topic_content(topic_id, content)
        return self.session.apply(content)

    async def undo(self) -> str | None:
        previous = self.session.undo()
        if previous is None:
            self._bus.publish(NoticePosted(message="Nothing to undo"))
            return None
        await self._persist(previous)
        return previous

    async def redo(self) -> str | None:
        following = self.session.redo()
        if following is None:
            self._bus.publish(NoticePosted(message="Nothing to redo"))
            return None
        await self._persist(following)
        return following

    async def _persist(self, content: str) -> None:
        topic_id = self._require_topic()
        try:
            await self._store.update_topic_content(topic_id, content)
        except BackendError:
            LOGGER.warning("TopicEditor: persisting history step failed; reloading topic %s", topic_id)
            await self._resync(topic_id)
            raise

    async def _resync(self, topic_id: str) -> None:
        try:
            await self._store.load_project()
        except BackendError:
            LOGGER.warning("TopicEditor: reload after failure also failed; closing editor")
            self.close()
            return
        project = self._store.project.get()
        topic = project.get_topic(topic_id) if project is not None else None
        if topic is None:
            self.close()
            return
        self.session.reset(topic.content)

    def _require_topic(self) -> str:
        if self._topic_id is None:
            raise RuntimeError("No topic is open")
        return self._topic_id

    def _on_project_switched(self, event: ProjectSwitched) -> None:
        LOGGER.debug("TopicEditor: project switched to %s; clearing history", event.project_id)
        self.close()

    def _on_item_deleted(self, event: OutlineItemDeleted) -> None:
        if self._topic_id is None:
            return
        if event.item_type == "topic" and event.item_id == self._topic_id:
            self.close()
            return
        if event.item_type == "section":
            project = self._store.project.get()
            if project is None or project.get_topic(self._topic_id) is None:
                self.close()


__all__ = ["EditorSession", "TopicEditor"]
