"""Tests for the ProjectStore domain manager."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from promptmux.editor.project_model import Refinement
from promptmux.services.backend import BackendError
from promptmux.ui.domain.project_store import ActiveTopic, ProjectStore, format_platform
from promptmux.ui.events import (
    ActiveTopicChanged,
    BackendCallFailed,
    Event,
    EventBus,
    OutlineItemDeleted,
    ProjectSwitched,
    WorkspaceLoaded,
)


def _collect(bus: EventBus, *event_types: type[Event]) -> list[Event]:
    received: list[Event] = []
    for event_type in event_types:
        bus.subscribe(event_type, received.append)
    return received


async def _outline(store: ProjectStore) -> tuple[str, str]:
    await store.load_workspace()
    section = await store.create_section("Intro")
    topic = await store.create_topic(section.id, "Goal")
    return section.id, topic.id


class TestLoading:
    """Tests for mirroring the backend workspace."""

    @pytest.mark.asyncio
    async def test_load_workspace_populates_views(self, store: ProjectStore, event_bus: EventBus) -> None:
        events = _collect(event_bus, WorkspaceLoaded)
        assert store.project.get() is None
        assert store.merged_output.get() == ""

        workspace = await store.load_workspace()

        assert store.workspace.get() == workspace
        assert store.project.get().name == "My Project"
        assert events == [WorkspaceLoaded(active_project_id=workspace.active_project_id, project_count=1)]

    @pytest.mark.asyncio
    async def test_mutations_refresh_the_mirror(self, store: ProjectStore) -> None:
        _, topic_id = await _outline(store)

        await store.update_topic_content(topic_id, "  Ship the CLI  ")

        assert store.project.get().get_topic(topic_id).content == "  Ship the CLI  "
        assert store.merged_output.get() == "// Section: Intro\nShip the CLI"
        assert await store.get_merged_output() == "// Section: Intro\n  Ship the CLI  "

    @pytest.mark.asyncio
    async def test_accepts_dict_payloads(self, event_bus: EventBus) -> None:
        backend = AsyncMock()
        backend.invoke.return_value = {
            "projects": [{"id": "p1", "name": "Remote", "sections": []}],
            "active_project_id": "p1",
        }
        store = ProjectStore(backend, event_bus)

        await store.load_workspace()

        assert store.project.get().name == "Remote"
        backend.invoke.assert_awaited_once_with("get_workspace", {})


class TestSelection:
    """Tests for selection state and derived selection views."""

    @pytest.mark.asyncio
    async def test_active_topic_includes_section_name(self, store: ProjectStore, event_bus: EventBus) -> None:
        events = _collect(event_bus, ActiveTopicChanged)
        section_id, topic_id = await _outline(store)

        store.select_topic(topic_id)
        store.select_topic(topic_id)
        store.select_section(section_id)

        active = store.active_topic.get()
        assert isinstance(active, ActiveTopic)
        assert active.id == topic_id
        assert active.section_name == "Intro"
        assert store.active_section.get().id == section_id
        assert events == [ActiveTopicChanged(topic_id=topic_id)]

    @pytest.mark.asyncio
    async def test_active_topic_follows_content_updates(self, store: ProjectStore) -> None:
        _, topic_id = await _outline(store)
        store.select_topic(topic_id)

        await store.update_topic_content(topic_id, "fresh")

        assert store.active_topic.get().content == "fresh"

    @pytest.mark.asyncio
    async def test_deleting_active_topic_clears_selection(self, store: ProjectStore, event_bus: EventBus) -> None:
        events = _collect(event_bus, OutlineItemDeleted)
        _, topic_id = await _outline(store)
        store.select_topic(topic_id)

        await store.delete_topic(topic_id)

        assert store.active_topic_id.get() is None
        assert store.active_topic.get() is None
        assert events == [OutlineItemDeleted(item_type="topic", item_id=topic_id)]

    @pytest.mark.asyncio
    async def test_deleting_active_section_clears_both(self, store: ProjectStore) -> None:
        section_id, topic_id = await _outline(store)
        store.select_section(section_id)
        store.select_topic(topic_id)

        await store.delete_section(section_id)

        assert store.active_section_id.get() is None
        assert store.active_topic_id.get() is None

    @pytest.mark.asyncio
    async def test_deleting_other_section_keeps_selection(self, store: ProjectStore) -> None:
        section_id, topic_id = await _outline(store)
        other = await store.create_section("Other")
        store.select_section(section_id)
        store.select_topic(topic_id)

        await store.delete_section(other.id)

        assert store.active_section_id.get() == section_id
        assert store.active_topic_id.get() == topic_id

    @pytest.mark.asyncio
    async def test_switch_project_clears_selection(self, store: ProjectStore, event_bus: EventBus) -> None:
        events = _collect(event_bus, ProjectSwitched)
        section_id, topic_id = await _outline(store)
        store.select_section(section_id)
        store.select_topic(topic_id)
        second = await store.create_project("Second")

        switched = await store.switch_project(second.id)

        assert switched.id == second.id
        assert store.project.get().name == "Second"
        assert store.active_topic_id.get() is None
        assert store.active_section_id.get() is None
        assert events == [ProjectSwitched(project_id=second.id)]

    def test_leader_key_flag(self, store: ProjectStore) -> None:
        store.set_leader_key_active(True)
        assert store.leader_key_active.get() is True
        store.set_leader_key_active(False)
        assert store.leader_key_active.get() is False


class TestProjectsAndRefinements:
    """Tests for project level commands."""

    @pytest.mark.asyncio
    async def test_rename_and_delete_project(self, store: ProjectStore) -> None:
        await store.load_workspace()
        second = await store.create_project("Second")
        await store.rename_project(second.id, "Renamed")
        assert store.workspace.get().get_project(second.id).name == "Renamed"

        await store.delete_project(second.id)

        assert len(store.workspace.get().projects) == 1

    @pytest.mark.asyncio
    async def test_deleting_active_project_switches(self, store: ProjectStore, event_bus: EventBus) -> None:
        section_id, topic_id = await _outline(store)
        first_id = store.workspace.get().active_project_id
        second = await store.create_project("Second")
        store.select_section(section_id)
        store.select_topic(topic_id)
        events = _collect(event_bus, ProjectSwitched)

        await store.delete_project(first_id)

        assert store.workspace.get().active_project_id == second.id
        assert store.active_section_id.get() is None
        assert store.active_topic_id.get() is None
        assert events == [ProjectSwitched(project_id=second.id)]

    @pytest.mark.asyncio
    async def test_deleting_inactive_project_keeps_selection(self, store: ProjectStore, event_bus: EventBus) -> None:
        section_id, _ = await _outline(store)
        second = await store.create_project("Second")
        store.select_section(section_id)
        events = _collect(event_bus, ProjectSwitched)

        await store.delete_project(second.id)

        assert store.active_section_id.get() == section_id
        assert events == []

    @pytest.mark.asyncio
    async def test_reorder_item(self, store: ProjectStore) -> None:
        await store.load_workspace()
        first = await store.create_section("First")
        await store.create_section("Second")

        await store.reorder_item("section", first.id, 2)

        assert [section.name for section in store.project.get().sorted_sections()] == ["Second", "First"]

    @pytest.mark.asyncio
    async def test_rename_outline_items(self, store: ProjectStore) -> None:
        section_id, topic_id = await _outline(store)
        await store.update_section_name(section_id, "Opening")
        await store.update_topic_name(topic_id, "Purpose")

        project = store.project.get()
        assert project.get_section(section_id).name == "Opening"
        assert project.get_topic(topic_id).name == "Purpose"

    @pytest.mark.asyncio
    async def test_save_refinements(self, store: ProjectStore) -> None:
        section_id, topic_id = await _outline(store)
        refinement = Refinement.create("draft", "polished")

        await store.save_topic_refinement(topic_id, refinement)
        await store.save_section_refinement(section_id, refinement)
        await store.save_project_refinement(refinement)

        project = store.project.get()
        assert project.get_topic(topic_id).history == [refinement]
        assert project.get_section(section_id).history == [refinement]
        assert project.history == [refinement]


class TestFailures:
    """Tests for backend failure handling."""

    @pytest.mark.asyncio
    async def test_backend_error_is_logged_published_and_raised(
        self, store: ProjectStore, event_bus: EventBus, caplog: pytest.LogCaptureFixture
    ) -> None:
        events = _collect(event_bus, BackendCallFailed)
        await store.load_workspace()

        with caplog.at_level("ERROR"):
            with pytest.raises(BackendError, match="Topic with id ghost not found"):
                await store.update_topic_content("ghost", "x")

        assert events == [BackendCallFailed(command="update_topic_content", error="Topic with id ghost not found")]
        assert "Failed to update topic content" in caplog.text

    @pytest.mark.asyncio
    async def test_unexpected_exceptions_are_wrapped(self, event_bus: EventBus) -> None:
        backend = AsyncMock()
        backend.invoke.side_effect = ConnectionError("socket closed")
        store = ProjectStore(backend, event_bus)

        with pytest.raises(BackendError) as excinfo:
            await store.create_section("Intro")

        assert excinfo.value.command == "create_section"
        assert isinstance(excinfo.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_failed_mutation_leaves_mirror_untouched(self, store: ProjectStore) -> None:
        _, topic_id = await _outline(store)
        before = store.workspace.get()

        with pytest.raises(BackendError):
            await store.create_topic("ghost-section", "x")

        assert store.workspace.get() is before


class TestPlatform:
    """Tests for platform lookups."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("linux", "Linux"), ("windows", "Windows"), ("macos", "macOS"), ("freebsd", "Freebsd")],
    )
    def test_format_platform(self, raw: str, expected: str) -> None:
        assert format_platform(raw) == expected

    @pytest.mark.asyncio
    async def test_get_platform_sets_observable(self, event_bus: EventBus) -> None:
        backend = AsyncMock()
        backend.invoke.return_value = "macos"
        store = ProjectStore(backend, event_bus)

        assert await store.get_platform() == "macOS"
        assert store.platform.get() == "macOS"

    @pytest.mark.asyncio
    async def test_get_platform_falls_back_to_unknown(self, event_bus: EventBus) -> None:
        backend = AsyncMock()
        backend.invoke.side_effect = BackendError("get_platform", "unavailable")
        store = ProjectStore(backend, event_bus)

        assert await store.get_platform() == "Unknown"
        assert store.platform.get() == "unknown"
