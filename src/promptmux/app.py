"""Application bootstrap and headless command line for PromptMux."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO

from .ai.client import RefinementClient
from .editor.project_model import Project, Refinement
from .services.backend import BackendError, LocalBackend
from .services.settings import LlmSettings, SettingsStore, redact_secret
from .ui.domain.editor_session import TopicEditor
from .ui.domain.project_store import ProjectStore
from .ui.events import EventBus
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_LOGGER = logging.getLogger(__name__)
_DEFAULT_DATA_DIR = Path.home() / ".promptmux" / "data"


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure file logging, echoing to the console only in debug mode."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, console=debug, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> LlmSettings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return LlmSettings()


def build_store(
    data_dir: Path,
    settings_store: SettingsStore,
    *,
    overrides: Mapping[str, Any] | None = None,
    event_bus: EventBus | None = None,
) -> ProjectStore:
    """Wire a project store to an in-process backend rooted at ``data_dir``."""

    def refiner() -> RefinementClient:
        return RefinementClient(load_settings(store=settings_store, overrides=overrides))

    backend = LocalBackend(data_dir, settings_store=settings_store, refiner=refiner)
    return ProjectStore(backend, event_bus or EventBus())


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `promptmux` console script."""

    args = _parse_cli_args(argv)

    debug = args.debug or _env_flag("PROMPTMUX_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("PROMPTMUX_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    if args.command == "settings":
        settings = load_settings(resolved_path, store=settings_store, overrides=overrides or None)
        _dump_settings(settings, settings_store, overrides=overrides)
        return 0

    data_dir_value = args.data_dir or os.environ.get("PROMPTMUX_DATA_DIR")
    data_dir = Path(data_dir_value).expanduser() if data_dir_value else _DEFAULT_DATA_DIR
    try:
        store = build_store(data_dir, settings_store, overrides=overrides or None)
        return asyncio.run(_run_command(args, store))
    except BackendError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


async def _run_command(args: argparse.Namespace, store: ProjectStore, out: TextIO | None = None) -> int:
    stream = out or sys.stdout
    await store.load_workspace()
    command = args.command

    if command == "projects":
        workspace = store.workspace.get()
        assert workspace is not None
        for project in workspace.projects:
            marker = "*" if project.id == workspace.active_project_id else " "
            stream.write(f"{marker} {project.id}  {project.name}\n")
    elif command == "outline":
        _write_outline(store.project.get(), stream)
    elif command == "merged":
        text = await store.get_merged_output() if args.raw else store.merged_output.get()
        stream.write(text + "\n")
    elif command == "new-project":
        project = await store.create_project(args.name)
        stream.write(f"{project.id}\n")
    elif command == "switch":
        project = await store.switch_project(args.project_id)
        stream.write(f"Switched to {project.name}\n")
    elif command == "add-section":
        section = await store.create_section(args.name)
        stream.write(f"{section.id}\n")
    elif command == "add-topic":
        topic = await store.create_topic(args.section_id, args.name)
        stream.write(f"{topic.id}\n")
    elif command == "edit":
        editor = TopicEditor(store)
        try:
            editor.open(args.topic_id)
        except KeyError as exc:
            raise BackendError("update_topic_content", str(exc.args[0])) from exc
        for content in args.contents:
            await editor.edit(content)
        for _ in range(args.undo):
            if await editor.undo() is None:
                break
        stream.write((editor.content or "") + "\n")
    elif command == "refine":
        await _refine_topic(store, args.topic_id, save=args.save, stream=stream)
    elif command == "platform":
        stream.write(await store.get_platform() + "\n")
    else:  # pragma: no cover - argparse restricts choices
        raise ValueError(f"Unknown command {command!r}")
    return 0


async def _refine_topic(store: ProjectStore, topic_id: str, *, save: bool, stream: TextIO) -> None:
    project = store.project.get()
    topic = project.get_topic(topic_id) if project is not None else None
    if topic is None:
        raise BackendError("refine_with_llm", f"Topic with id {topic_id} not found")
    refined = await store.refine_with_llm(topic.content)
    if save:
        await store.save_topic_refinement(topic_id, Refinement.create(topic.content, refined))
        await store.update_topic_content(topic_id, refined)
    stream.write(refined + "\n")


def _write_outline(project: Project | None, stream: TextIO) -> None:
    if project is None:
        stream.write("(no active project)\n")
        return
    stream.write(f"{project.name} [{project.id}]\n")
    for section in project.sorted_sections():
        stream.write(f"  {section.order_index}. {section.name} [{section.id}]\n")
        for topic in section.sorted_topics():
            stream.write(f"     {topic.order_index}. {topic.name} [{topic.id}]\n")


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="promptmux",
        description="Inspect and edit PromptMux projects from the command line.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--data-dir",
        metavar="PATH",
        help="Override the default ~/.promptmux/data workspace directory.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.promptmux/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override LLM settings for this run (repeatable).",
    )

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("settings", help="Print the effective settings with secrets redacted.")
    commands.add_parser("projects", help="List projects; the active one is starred.")
    commands.add_parser("outline", help="Print the active project's sections and topics.")
    merged = commands.add_parser("merged", help="Print the merged prompt of the active project.")
    merged.add_argument("--raw", action="store_true", help="Keep blank topics and whitespace.")
    new_project = commands.add_parser("new-project", help="Create a project.")
    new_project.add_argument("name")
    switch = commands.add_parser("switch", help="Make a project active.")
    switch.add_argument("project_id")
    add_section = commands.add_parser("add-section", help="Add a section to the active project.")
    add_section.add_argument("name")
    add_topic = commands.add_parser("add-topic", help="Add a topic to a section.")
    add_topic.add_argument("section_id")
    add_topic.add_argument("name")
    edit = commands.add_parser("edit", help="Apply successive contents to a topic, then undo.")
    edit.add_argument("topic_id")
    edit.add_argument("contents", nargs="+")
    edit.add_argument("--undo", type=int, default=0, metavar="N", help="Undo N steps afterwards.")
    refine = commands.add_parser("refine", help="Refine a topic's content with the configured LLM.")
    refine.add_argument("topic_id")
    refine.add_argument("--save", action="store_true", help="Store the result and a refinement record.")
    commands.add_parser("platform", help="Print the host platform name.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    fields = LlmSettings.__dataclass_fields__  # type: ignore[attr-defined]
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(LlmSettings(), key, raw_value.strip())
    return overrides


def _coerce_value(defaults: LlmSettings, key: str, raw_value: str) -> Any:
    current = getattr(defaults, key)
    if raw_value.lower() in {"none", "null"} and current is None:
        return None
    if isinstance(current, bool):
        return raw_value.lower() in _TRUE_VALUES
    if isinstance(current, int):
        return int(raw_value, 10)
    if isinstance(current, float):
        return float(raw_value)
    return raw_value


def _dump_settings(
    settings: LlmSettings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("PROMPTMUX_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
