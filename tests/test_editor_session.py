"""Tests for editor sessions and the topic editor."""

from __future__ import annotations

from typing import Any, Mapping

import pytest

from promptmux.services.backend import BackendError, LocalBackend
from promptmux.ui.domain.editor_session import EditorSession, TopicEditor
from promptmux.ui.domain.project_store import ProjectStore
from promptmux.ui.events import EventBus, HistoryChanged, NoticePosted


class FlakyBackend:
    """Delegates to a LocalBackend but fails the commands listed in ``failing``."""

    def __init__(self, inner: LocalBackend) -> None:
        self.inner = inner
        self.failing: set[str] = set()

    async def invoke(self, command: str, args: Mapping[str, Any] | None = None) -> Any:
        if command in self.failing:
            raise BackendError(command, "backend offline")
        return await self.inner.invoke(command, args)


@pytest.fixture
def flaky(backend: LocalBackend) -> FlakyBackend:
    return FlakyBackend(backend)


@pytest.fixture
def flaky_store(flaky: FlakyBackend, event_bus: EventBus) -> ProjectStore:
    return ProjectStore(flaky, event_bus)


async def _open_topic(store: ProjectStore, content: str = "base") -> tuple[TopicEditor, str]:
    await store.load_workspace()
    section = await store.create_section("Intro")
    topic = await store.create_topic(section.id, "Goal")
    await store.update_topic_content(topic.id, content)
    editor = TopicEditor(store)
    editor.open(topic.id)
    return editor, topic.id


def _stored_content(store: ProjectStore, topic_id: str) -> str:
    return store.project.get().get_topic(topic_id).content


class TestEditorSession:
    """Tests for the generic session."""

    def test_baseline_is_recorded(self) -> None:
        session: EditorSession[str] = EditorSession("v0")
        assert session.current == "v0"
        assert session.history.past == ("v0",)

    def test_apply_undo_redo(self) -> None:
        session: EditorSession[str] = EditorSession("v0")
        session.apply("v1")
        session.apply("v2")

        assert session.undo() == "v1"
        assert session.current == "v1"
        assert session.redo() == "v2"
        assert session.current == "v2"
        assert session.redo() is None
        assert session.current == "v2"

    def test_undo_past_baseline_keeps_current(self) -> None:
        session: EditorSession[str] = EditorSession("v0")
        assert session.undo() is None
        assert session.current == "v0"
        assert session.can_redo

    def test_without_state_nothing_happens(self) -> None:
        session: EditorSession[str] = EditorSession()
        assert session.undo() is None
        assert session.redo() is None

    def test_reset_drops_history(self) -> None:
        session: EditorSession[str] = EditorSession("v0")
        session.apply("v1")

        session.reset("other")

        assert session.current == "other"
        assert session.history.past == ("other",)
        assert not session.can_redo

    def test_bounded_history(self) -> None:
        session: EditorSession[int] = EditorSession(0, max_history=2)
        session.apply(1)
        session.apply(2)
        assert session.history.past == (1, 2)

    def test_announces_history_changes(self, event_bus: EventBus) -> None:
        received: list[HistoryChanged] = []
        event_bus.subscribe(HistoryChanged, received.append)
        session: EditorSession[str] = EditorSession("v0", name="doc", event_bus=event_bus)

        session.apply("v1")
        session.undo()

        assert received == [
            HistoryChanged(session="doc", can_undo=True, can_redo=False),
            HistoryChanged(session="doc", can_undo=True, can_redo=True),
        ]


class TestTopicEditor:
    """Tests for editing topic content with undo/redo."""

    @pytest.mark.asyncio
    async def test_open_starts_from_topic_content(self, store: ProjectStore) -> None:
        editor, topic_id = await _open_topic(store, "hello")

        assert editor.topic_id == topic_id
        assert editor.content == "hello"
        assert store.active_topic_id.get() == topic_id
        assert not editor.can_redo

    @pytest.mark.asyncio
    async def test_open_unknown_topic(self, store: ProjectStore) -> None:
        await store.load_workspace()
        editor = TopicEditor(store)
        with pytest.raises(KeyError):
            editor.open("missing")

    @pytest.mark.asyncio
    async def test_edits_persist_and_undo_restores(self, store: ProjectStore) -> None:
        editor, topic_id = await _open_topic(store)

        await editor.edit("first")
        await editor.edit("second")
        assert _stored_content(store, topic_id) == "second"

        assert await editor.undo() == "first"
        assert _stored_content(store, topic_id) == "first"
        assert await editor.undo() == "base"
        assert _stored_content(store, topic_id) == "base"

        assert await editor.redo() == "first"
        assert _stored_content(store, topic_id) == "first"

    @pytest.mark.asyncio
    async def test_new_edit_discards_redo(self, store: ProjectStore) -> None:
        editor, _ = await _open_topic(store)
        await editor.edit("first")
        await editor.undo()

        await editor.edit("branch")

        assert not editor.can_redo
        assert editor.session.history.past == ("base", "branch")

    @pytest.mark.asyncio
    async def test_nothing_to_undo_posts_notice(self, store: ProjectStore, event_bus: EventBus) -> None:
        notices: list[NoticePosted] = []
        event_bus.subscribe(NoticePosted, notices.append)
        editor, topic_id = await _open_topic(store)

        assert await editor.undo() is None
        assert await editor.redo() == "base"
        assert await editor.redo() is None

        assert [notice.message for notice in notices] == ["Nothing to undo", "Nothing to redo"]
        assert _stored_content(store, topic_id) == "base"

    @pytest.mark.asyncio
    async def test_failed_edit_is_not_recorded(self, flaky: FlakyBackend, flaky_store: ProjectStore) -> None:
        editor, topic_id = await _open_topic(flaky_store)
        await editor.edit("saved")
        flaky.failing.add("update_topic_content")

        with pytest.raises(BackendError, match="backend offline"):
            await editor.edit("lost")

        assert editor.content == "saved"
        assert editor.session.history.past == ("base", "saved")
        assert _stored_content(flaky_store, topic_id) == "saved"

    @pytest.mark.asyncio
    async def test_failed_undo_resyncs_with_backend(self, flaky: FlakyBackend, flaky_store: ProjectStore) -> None:
        editor, topic_id = await _open_topic(flaky_store)
        await editor.edit("one")
        await editor.edit("two")
        flaky.failing.add("update_topic_content")

        with pytest.raises(BackendError):
            await editor.undo()

        assert editor.content == "two"
        assert editor.session.history.past == ("two",)
        assert _stored_content(flaky_store, topic_id) == "two"

    @pytest.mark.asyncio
    async def test_failed_resync_closes_editor(self, flaky: FlakyBackend, flaky_store: ProjectStore) -> None:
        editor, _ = await _open_topic(flaky_store)
        await editor.edit("one")
        flaky.failing.update({"update_topic_content", "get_workspace"})

        with pytest.raises(BackendError):
            await editor.undo()

        assert editor.topic_id is None
        assert editor.content is None

    @pytest.mark.asyncio
    async def test_project_switch_clears_history(self, store: ProjectStore) -> None:
        editor, _ = await _open_topic(store)
        await editor.edit("changed")
        second = await store.create_project("Second")

        await store.switch_project(second.id)

        assert editor.topic_id is None
        assert editor.content is None
        assert not editor.can_undo
        assert not editor.can_redo

    @pytest.mark.asyncio
    async def test_deleting_active_project_clears_history(self, store: ProjectStore) -> None:
        editor, _ = await _open_topic(store)
        await editor.edit("changed")
        first_id = store.workspace.get().active_project_id
        await store.create_project("Second")

        await store.delete_project(first_id)

        assert editor.topic_id is None
        assert editor.content is None
        assert not editor.can_undo
        with pytest.raises(RuntimeError, match="No topic is open"):
            await editor.edit("more")

    @pytest.mark.asyncio
    async def test_deleting_open_topic_closes_editor(self, store: ProjectStore) -> None:
        editor, topic_id = await _open_topic(store)
        await editor.edit("changed")

        await store.delete_topic(topic_id)

        assert editor.topic_id is None
        assert not editor.can_undo

    @pytest.mark.asyncio
    async def test_deleting_parent_section_closes_editor(self, store: ProjectStore) -> None:
        editor, topic_id = await _open_topic(store)
        section_id = store.project.get().find_topic(topic_id)[0].id

        await store.delete_section(section_id)

        assert editor.topic_id is None

    @pytest.mark.asyncio
    async def test_edit_without_open_topic(self, store: ProjectStore) -> None:
        await store.load_workspace()
        editor = TopicEditor(store)
        with pytest.raises(RuntimeError, match="No topic is open"):
            await editor.edit("x")
