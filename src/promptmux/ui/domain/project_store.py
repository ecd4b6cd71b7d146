"""Project store domain manager.

Mirrors the backend-held workspace, exposes observable views over it, and
forwards every mutation to the backend. After each successful mutation the
workspace is reloaded so the mirror never drifts from the backend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, TypeVar

from ...editor.project_model import Project, Refinement, Section, Topic, Workspace
from ...services.backend import BackendClient, BackendError
from ..events import (
    ActiveSectionChanged,
    ActiveTopicChanged,
    BackendCallFailed,
    EventBus,
    OutlineItemDeleted,
    ProjectSwitched,
    WorkspaceLoaded,
)
from .observable import Derived, Observable

LOGGER = logging.getLogger(__name__)

_PLATFORM_NAMES: Mapping[str, str] = {
    "linux": "Linux",
    "windows": "Windows",
    "macos": "macOS",
}

_Model = TypeVar("_Model", Workspace, Project, Section, Topic)


@dataclass(slots=True, frozen=True)
class ActiveTopic:
    """The selected topic together with the name of its section."""

    topic: Topic
    section_name: str

    @property
    def id(self) -> str:
        return self.topic.id

    @property
    def content(self) -> str:
        return self.topic.content


class ProjectStore:
    """Reactive mirror of the backend workspace.

    Observable state:
        - workspace: the last workspace loaded from the backend
        - active_topic_id / active_section_id: current selection
        - platform: display name of the host OS
        - leader_key_active: keyboard leader-key state

    Derived views:
        - project: the workspace's active project
        - merged_output: preview of the combined prompt
        - active_topic: selected topic plus its section name
        - active_section: selected section

    Events Emitted:
        - WorkspaceLoaded, ProjectSwitched, OutlineItemDeleted
        - ActiveTopicChanged, ActiveSectionChanged
        - BackendCallFailed: whenever a backend command raises
    """

    def __init__(self, backend: BackendClient, event_bus: EventBus | None = None) -> None:
        self._backend = backend
        self._bus = event_bus or EventBus()

        self.workspace: Observable[Workspace | None] = Observable(None, name="workspace")
        self.active_topic_id: Observable[str | None] = Observable(None, name="active_topic_id")
        self.active_section_id: Observable[str | None] = Observable(None, name="active_section_id")
        self.platform: Observable[str] = Observable("unknown", name="platform")
        self.leader_key_active: Observable[bool] = Observable(False, name="leader_key_active")

        self.project: Derived[Project | None] = Derived(
            [self.workspace], _active_project, name="project"
        )
        self.merged_output: Derived[str] = Derived(
            [self.project], _merged_preview, name="merged_output"
        )
        self.active_topic: Derived[ActiveTopic | None] = Derived(
            [self.project, self.active_topic_id], _find_active_topic, name="active_topic"
        )
        self.active_section: Derived[Section | None] = Derived(
            [self.project, self.active_section_id], _find_active_section, name="active_section"
        )

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def backend(self) -> BackendClient:
        return self._backend

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_workspace(self) -> Workspace:
        result = await self._call("get_workspace", action="load workspace")
        workspace = _coerce(Workspace, result)
        self.workspace.set(workspace)
        LOGGER.debug(
            "ProjectStore.load_workspace: %d project(s), active=%s",
            len(workspace.projects),
            workspace.active_project_id,
        )
        self._bus.publish(WorkspaceLoaded(
            active_project_id=workspace.active_project_id,
            project_count=len(workspace.projects),
        ))
        return workspace

    async def load_project(self) -> Workspace:
        """Reload the active project (the whole workspace is fetched)."""

        return await self.load_workspace()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(self, name: str) -> Project:
        result = await self._call("create_project", {"name": name}, action="create project")
        await self.load_workspace()
        return _coerce(Project, result)

    async def delete_project(self, project_id: str) -> None:
        """Delete ``project_id``; deleting the active one switches to the backend's pick."""

        await self._call("delete_project", {"project_id": project_id}, action="delete project")
        previous = self.workspace.get()
        workspace = await self.load_workspace()

        if previous is None or previous.active_project_id != project_id:
            return
        self.select_section(None)
        self.select_topic(None)
        LOGGER.debug(
            "ProjectStore.delete_project: active project removed; now %s",
            workspace.active_project_id,
        )
        self._bus.publish(ProjectSwitched(project_id=workspace.active_project_id))

    async def switch_project(self, project_id: str) -> Project:
        result = await self._call("switch_project", {"project_id": project_id}, action="switch project")
        await self.load_workspace()

        self.select_section(None)
        self.select_topic(None)
        project = _coerce(Project, result)
        LOGGER.debug("ProjectStore.switch_project: project_id=%s", project.id)
        self._bus.publish(ProjectSwitched(project_id=project.id))
        return project

    async def rename_project(self, project_id: str, name: str) -> None:
        await self._call(
            "rename_project", {"project_id": project_id, "name": name}, action="rename project"
        )
        await self.load_workspace()

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    async def create_section(self, name: str) -> Section:
        result = await self._call("create_section", {"name": name}, action="create section")
        await self.load_project()
        return _coerce(Section, result)

    async def update_section_name(self, section_id: str, name: str) -> None:
        await self._call(
            "update_section_name",
            {"section_id": section_id, "name": name},
            action="update section name",
        )
        await self.load_project()

    async def delete_section(self, section_id: str) -> None:
        await self._call("delete_section", {"section_id": section_id}, action="delete section")
        await self.load_project()

        if self.active_section_id.get() == section_id:
            self.select_section(None)
            self.select_topic(None)
        self._bus.publish(OutlineItemDeleted(item_type="section", item_id=section_id))

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def create_topic(self, section_id: str, name: str) -> Topic:
        result = await self._call(
            "create_topic", {"section_id": section_id, "name": name}, action="create topic"
        )
        await self.load_project()
        return _coerce(Topic, result)

    async def update_topic_content(self, topic_id: str, content: str) -> None:
        await self._call(
            "update_topic_content",
            {"topic_id": topic_id, "content": content},
            action="update topic content",
        )
        await self.load_project()

    async def update_topic_name(self, topic_id: str, name: str) -> None:
        await self._call(
            "update_topic_name", {"topic_id": topic_id, "name": name}, action="update topic name"
        )
        await self.load_project()

    async def delete_topic(self, topic_id: str) -> None:
        await self._call("delete_topic", {"topic_id": topic_id}, action="delete topic")
        await self.load_project()

        if self.active_topic_id.get() == topic_id:
            self.select_topic(None)
        self._bus.publish(OutlineItemDeleted(item_type="topic", item_id=topic_id))

    async def reorder_item(self, item_type: str, item_id: str, new_index: int) -> None:
        await self._call(
            "reorder_item",
            {"item_type": item_type, "id": item_id, "new_index": new_index},
            action="reorder item",
        )
        await self.load_project()

    # ------------------------------------------------------------------
    # Output & refinement
    # ------------------------------------------------------------------

    async def get_merged_output(self) -> str:
        return str(await self._call("get_merged_output", action="get merged output"))

    async def refine_with_llm(self, content: str) -> str:
        return str(await self._call("refine_with_llm", {"content": content}, action="refine with LLM"))

    async def save_topic_refinement(self, topic_id: str, refinement: Refinement) -> None:
        await self._call(
            "save_topic_refinement",
            {"topic_id": topic_id, "refinement": refinement.to_dict()},
            action="save topic refinement",
        )
        await self.load_project()

    async def save_section_refinement(self, section_id: str, refinement: Refinement) -> None:
        await self._call(
            "save_section_refinement",
            {"section_id": section_id, "refinement": refinement.to_dict()},
            action="save section refinement",
        )
        await self.load_project()

    async def save_project_refinement(self, refinement: Refinement) -> None:
        await self._call(
            "save_project_refinement",
            {"refinement": refinement.to_dict()},
            action="save project refinement",
        )
        await self.load_project()

    async def get_platform(self) -> str:
        """Return a display name for the host OS, ``"Unknown"`` on failure."""

        try:
            raw = await self._call("get_platform", action="get platform")
        except BackendError:
            return "Unknown"
        name = format_platform(str(raw))
        self.platform.set(name)
        return name

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_topic(self, topic_id: str | None) -> None:
        if self.active_topic_id.get() == topic_id:
            return
        self.active_topic_id.set(topic_id)
        self._bus.publish(ActiveTopicChanged(topic_id=topic_id))

    def select_section(self, section_id: str | None) -> None:
        if self.active_section_id.get() == section_id:
            return
        self.active_section_id.set(section_id)
        self._bus.publish(ActiveSectionChanged(section_id=section_id))

    def set_leader_key_active(self, active: bool) -> None:
        self.leader_key_active.set(bool(active))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, command: str, args: Mapping[str, Any] | None = None, *, action: str) -> Any:
        try:
            return await self._backend.invoke(command, dict(args or {}))
        except BackendError as exc:
            error = exc
        except Exception as exc:
            error = BackendError(command, str(exc) or type(exc).__name__)
            error.__cause__ = exc
        LOGGER.error("Failed to %s: %s", action, error)
        self._bus.publish(BackendCallFailed(command=command, error=str(error)))
        raise error


def format_platform(raw: str) -> str:
    """Turn a backend OS identifier into a display name."""

    if raw in _PLATFORM_NAMES:
        return _PLATFORM_NAMES[raw]
    return raw[:1].upper() + raw[1:]


def _coerce(model: type[_Model], value: Any) -> _Model:
    if isinstance(value, model):
        return value
    if isinstance(value, Mapping):
        return model.from_dict(value)
    raise BackendError(model.__name__.lower(), f"Unexpected backend payload for {model.__name__}")


def _active_project(workspace: Workspace | None) -> Project | None:
    if workspace is None:
        return None
    return workspace.active_project


def _merged_preview(project: Project | None) -> str:
    if project is None:
        return ""
    return project.merged_output(skip_empty=True)


def _find_active_topic(project: Project | None, topic_id: str | None) -> ActiveTopic | None:
    if project is None or not topic_id:
        return None
    match = project.find_topic(topic_id)
    if match is None:
        return None
    section, topic = match
    return ActiveTopic(topic=topic, section_name=section.name)


def _find_active_section(project: Project | None, section_id: str | None) -> Section | None:
    if project is None or not section_id:
        return None
    return project.get_section(section_id)


__all__ = ["ActiveTopic", "ProjectStore", "format_platform"]
