"""Backend command boundary and an in-process implementation.

The front-end stores talk to the backend exclusively through
``BackendClient.invoke(command, args)``. :class:`LocalBackend` implements the
command set against a JSON workspace file so the application runs without a
separate backend process.
"""

from __future__ import annotations

import copy
import inspect
import json
import logging
import sys
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Protocol, runtime_checkable

from ..ai.client import RefinementClient, RefinementError
from ..editor.project_model import (
    DEFAULT_PROJECT_NAME,
    OutlineError,
    Project,
    Refinement,
    Section,
    Topic,
    Workspace,
)
from .settings import LlmSettings, SettingsStore

LOGGER = logging.getLogger(__name__)

WORKSPACE_FILENAME = "workspace.json"
LEGACY_PROJECT_FILENAME = "project.json"

Args = Mapping[str, Any]
RefinerFactory = Callable[[], RefinementClient]


class BackendError(RuntimeError):
    """Raised when a backend command fails."""

    def __init__(self, command: str, message: str) -> None:
        super().__init__(message)
        self.command = command
        self.message = message

    def __str__(self) -> str:
        return self.message


@runtime_checkable
class BackendClient(Protocol):
    """Asynchronous request/response channel to the backend."""

    async def invoke(self, command: str, args: Args | None = None) -> Any:
        """Run ``command`` with named ``args`` and return its result."""
        ...


class WorkspaceRepository:
    """Reads and writes the workspace JSON file inside a data directory."""

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = Path(data_dir)

    @property
    def path(self) -> Path:
        return self._data_dir / WORKSPACE_FILENAME

    @property
    def legacy_path(self) -> Path:
        return self._data_dir / LEGACY_PROJECT_FILENAME

    def load_or_create(self) -> Workspace:
        """Load the workspace, migrating a legacy single project or creating one."""

        self._data_dir.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            return Workspace.from_dict(self._read_json(self.path))

        if self.legacy_path.exists():
            project = Project.from_dict(self._read_json(self.legacy_path))
            LOGGER.info("Migrating legacy project %s into a workspace", project.id)
            workspace = Workspace.with_project(project)
        else:
            workspace = Workspace.with_project(Project(name=DEFAULT_PROJECT_NAME))
            LOGGER.info("Created new workspace in %s", self._data_dir)
        self.save(workspace)
        return workspace

    def save(self, workspace: Workspace) -> Path:
        body = json.dumps(workspace.to_dict(), indent=2)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self.path)
        return self.path

    @staticmethod
    def _read_json(path: Path) -> Dict[str, Any]:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise BackendError("get_workspace", f"Failed to read project file: {exc}") from exc
        if not isinstance(payload, dict):
            raise BackendError("get_workspace", f"Failed to parse project file: {path}")
        return payload


class LocalBackend:
    """In-process backend holding the workspace behind a lock."""

    def __init__(
        self,
        data_dir: Path,
        *,
        settings_store: SettingsStore | None = None,
        refiner: RefinerFactory | None = None,
    ) -> None:
        self._repository = WorkspaceRepository(data_dir)
        self._settings_store = settings_store or SettingsStore()
        self._refiner = refiner
        self._lock = threading.RLock()
        self._workspace = self._repository.load_or_create()
        self._handlers: Dict[str, Callable[[Args], Any]] = {
            "get_workspace": self._get_workspace,
            "get_project": self._get_project,
            "create_project": self._create_project,
            "delete_project": self._delete_project,
            "switch_project": self._switch_project,
            "rename_project": self._rename_project,
            "create_section": self._create_section,
            "update_section_name": self._update_section_name,
            "delete_section": self._delete_section,
            "create_topic": self._create_topic,
            "update_topic_content": self._update_topic_content,
            "update_topic_name": self._update_topic_name,
            "delete_topic": self._delete_topic,
            "reorder_item": self._reorder_item,
            "get_merged_output": self._get_merged_output,
            "refine_with_llm": self._refine_with_llm,
            "save_topic_refinement": self._save_topic_refinement,
            "save_section_refinement": self._save_section_refinement,
            "save_project_refinement": self._save_project_refinement,
            "get_llm_settings": self._get_llm_settings,
            "save_llm_settings": self._save_llm_settings,
            "get_platform": self._get_platform,
        }

    @property
    def commands(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    @property
    def workspace_path(self) -> Path:
        return self._repository.path

    async def invoke(self, command: str, args: Args | None = None) -> Any:
        handler = self._handlers.get(command)
        if handler is None:
            raise BackendError(command, f"Unknown command: {command}")
        payload = dict(args or {})
        LOGGER.debug("LocalBackend.invoke: %s args=%s", command, sorted(payload))
        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                result = await result
        except BackendError:
            raise
        except OutlineError as exc:
            raise BackendError(command, str(exc)) from exc
        except RefinementError as exc:
            raise BackendError(command, str(exc)) from exc
        except OSError as exc:
            raise BackendError(command, f"Failed to save project: {exc}") from exc
        return copy.deepcopy(result)

    # ------------------------------------------------------------------
    # Workspace & projects
    # ------------------------------------------------------------------

    def _get_workspace(self, args: Args) -> Workspace:
        return self._workspace

    def _get_project(self, args: Args) -> Project:
        return self._active_project()

    def _create_project(self, args: Args) -> Project:
        name = _require_str(args, "name", "create_project")
        with self._lock:
            project = Project(name=name)
            self._workspace.projects.append(project)
            self._commit()
            return project

    def _delete_project(self, args: Args) -> None:
        project_id = _require_str(args, "project_id", "delete_project")
        with self._lock:
            workspace = self._workspace
            workspace.require_project(project_id)
            if len(workspace.projects) <= 1:
                raise BackendError("delete_project", "Cannot delete the last project")
            workspace.projects = [p for p in workspace.projects if p.id != project_id]
            if workspace.active_project_id == project_id:
                workspace.active_project_id = workspace.projects[0].id
            self._commit()

    def _switch_project(self, args: Args) -> Project:
        project_id = _require_str(args, "project_id", "switch_project")
        with self._lock:
            project = self._workspace.require_project(project_id)
            self._workspace.active_project_id = project.id
            self._commit()
            return project

    def _rename_project(self, args: Args) -> None:
        project_id = _require_str(args, "project_id", "rename_project")
        name = _require_str(args, "name", "rename_project")
        with self._lock:
            project = self._workspace.require_project(project_id)
            project.name = name
            project.touch()
            self._commit()

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _create_section(self, args: Args) -> Section:
        name = _require_str(args, "name", "create_section", allow_empty=True)
        with self._lock:
            section = self._active_project().add_section(Section(name=name))
            self._commit()
            return section

    def _update_section_name(self, args: Args) -> None:
        section_id = _require_str(args, "section_id", "update_section_name")
        name = _require_str(args, "name", "update_section_name", allow_empty=True)
        with self._lock:
            project = self._active_project()
            project.require_section(section_id).name = name
            project.touch()
            self._commit()

    def _delete_section(self, args: Args) -> None:
        section_id = _require_str(args, "section_id", "delete_section")
        with self._lock:
            self._active_project().remove_section(section_id)
            self._commit()

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    def _create_topic(self, args: Args) -> Topic:
        section_id = _require_str(args, "section_id", "create_topic")
        name = _require_str(args, "name", "create_topic", allow_empty=True)
        with self._lock:
            project = self._active_project()
            topic = project.require_section(section_id).add_topic(Topic(name=name))
            project.touch()
            self._commit()
            return topic

    def _update_topic_content(self, args: Args) -> None:
        topic_id = _require_str(args, "topic_id", "update_topic_content")
        content = _require_str(args, "content", "update_topic_content", allow_empty=True)
        with self._lock:
            project = self._active_project()
            project.require_topic(topic_id).content = content
            project.touch()
            self._commit()

    def _update_topic_name(self, args: Args) -> None:
        topic_id = _require_str(args, "topic_id", "update_topic_name")
        name = _require_str(args, "name", "update_topic_name", allow_empty=True)
        with self._lock:
            project = self._active_project()
            project.require_topic(topic_id).name = name
            project.touch()
            self._commit()

    def _delete_topic(self, args: Args) -> None:
        topic_id = _require_str(args, "topic_id", "delete_topic")
        with self._lock:
            self._active_project().remove_topic(topic_id)
            self._commit()

    def _reorder_item(self, args: Args) -> None:
        item_type = _require_str(args, "item_type", "reorder_item")
        item_id = _require_str(args, "id", "reorder_item")
        new_index = args.get("new_index")
        if isinstance(new_index, bool) or not isinstance(new_index, int) or new_index < 0:
            raise BackendError("reorder_item", "new_index must be a non-negative integer")
        with self._lock:
            self._active_project().reorder_item(item_type, item_id, new_index)
            self._commit()

    def _get_merged_output(self, args: Args) -> str:
        return self._active_project().merged_output()

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    async def _refine_with_llm(self, args: Args) -> str:
        content = _require_str(args, "content", "refine_with_llm", allow_empty=True)
        client = self._refiner() if self._refiner is not None else RefinementClient(self._settings_store.load())
        try:
            return await client.refine(content)
        finally:
            await client.aclose()

    def _save_topic_refinement(self, args: Args) -> None:
        topic_id = _require_str(args, "topic_id", "save_topic_refinement")
        refinement = _require_refinement(args, "save_topic_refinement")
        with self._lock:
            project = self._active_project()
            project.require_topic(topic_id).history.append(refinement)
            project.touch()
            self._commit()

    def _save_section_refinement(self, args: Args) -> None:
        section_id = _require_str(args, "section_id", "save_section_refinement")
        refinement = _require_refinement(args, "save_section_refinement")
        with self._lock:
            project = self._active_project()
            project.require_section(section_id).history.append(refinement)
            project.touch()
            self._commit()

    def _save_project_refinement(self, args: Args) -> None:
        refinement = _require_refinement(args, "save_project_refinement")
        with self._lock:
            project = self._active_project()
            project.history.append(refinement)
            project.touch()
            self._commit()

    # ------------------------------------------------------------------
    # Settings & platform
    # ------------------------------------------------------------------

    def _get_llm_settings(self, args: Args) -> dict[str, Any]:
        return self._settings_store.load().public_dict()

    def _save_llm_settings(self, args: Args) -> None:
        incoming = args.get("settings")
        if not isinstance(incoming, Mapping):
            raise BackendError("save_llm_settings", "settings must be an object")
        current = asdict(self._settings_store.load())
        for key, value in incoming.items():
            if key not in current or value is None:
                continue
            if key == "api_key" and not value:
                continue
            current[key] = value
        try:
            settings = LlmSettings(**current)
        except TypeError as exc:  # pragma: no cover - guarded by the key filter above
            raise BackendError("save_llm_settings", f"Invalid settings: {exc}") from exc
        self._settings_store.save(settings)

    def _get_platform(self, args: Args) -> str:
        return current_platform()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _active_project(self) -> Project:
        project = self._workspace.active_project
        if project is None:
            raise BackendError("get_project", "No active project")
        return project

    def _commit(self) -> None:
        self._workspace.touch()
        self._repository.save(self._workspace)


def current_platform() -> str:
    """Return the OS name using the desktop shell's vocabulary."""

    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform.startswith(("win32", "cygwin")):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return sys.platform


def _require_str(args: Args, key: str, command: str, *, allow_empty: bool = False) -> str:
    value = args.get(key)
    if not isinstance(value, str):
        raise BackendError(command, f"Missing argument '{key}'")
    if not allow_empty and not value.strip():
        raise BackendError(command, f"Argument '{key}' must not be empty")
    return value


def _require_refinement(args: Args, command: str) -> Refinement:
    payload = args.get("refinement")
    if isinstance(payload, Refinement):
        return copy.deepcopy(payload)
    if isinstance(payload, Mapping):
        return Refinement.from_dict(payload)
    raise BackendError(command, "Missing argument 'refinement'")


__all__ = [
    "BackendClient",
    "BackendError",
    "LocalBackend",
    "WorkspaceRepository",
    "current_platform",
]
