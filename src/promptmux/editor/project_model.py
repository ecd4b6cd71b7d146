"""Dataclasses describing the workspace → project → section → topic hierarchy."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Mapping, Sequence, TypeVar

SECTION_HEADER = "// Section: {name}"
SECTION_SEPARATOR = "\n\n---\n\n"
TOPIC_SEPARATOR = "\n\n"
DEFAULT_PROJECT_NAME = "My Project"


def utcnow_iso() -> str:
    """Return the current UTC time as an RFC 3339 string."""

    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class OutlineError(LookupError):
    """Raised when an outline operation references a missing or invalid item."""


@dataclass(slots=True)
class Refinement:
    """A stored LLM rewrite of some piece of content."""

    id: str
    original_content: str
    refined_content: str
    timestamp: str

    @classmethod
    def create(cls, original_content: str, refined_content: str) -> Refinement:
        return cls(
            id=new_id(),
            original_content=original_content,
            refined_content=refined_content,
            timestamp=utcnow_iso(),
        )

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Refinement:
        return cls(
            id=str(payload.get("id") or new_id()),
            original_content=str(payload.get("original_content", "")),
            refined_content=str(payload.get("refined_content", "")),
            timestamp=str(payload.get("timestamp") or utcnow_iso()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original_content": self.original_content,
            "refined_content": self.refined_content,
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class Topic:
    """A single block of prompt content inside a section."""

    name: str
    content: str = ""
    section_id: str = ""
    order_index: int = 0
    id: str = field(default_factory=new_id)
    history: list[Refinement] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Topic:
        return cls(
            id=str(payload.get("id") or new_id()),
            name=str(payload.get("name", "")),
            content=str(payload.get("content", "")),
            order_index=int(payload.get("order_index", 0)),
            section_id=str(payload.get("section_id", "")),
            history=_refinements(payload.get("history")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "content": self.content,
            "order_index": self.order_index,
            "section_id": self.section_id,
            "history": [item.to_dict() for item in self.history],
        }


@dataclass(slots=True)
class Section:
    """An ordered group of topics."""

    name: str
    order_index: int = 0
    id: str = field(default_factory=new_id)
    topics: list[Topic] = field(default_factory=list)
    history: list[Refinement] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Section:
        return cls(
            id=str(payload.get("id") or new_id()),
            name=str(payload.get("name", "")),
            order_index=int(payload.get("order_index", 0)),
            topics=[Topic.from_dict(item) for item in payload.get("topics") or ()],
            history=_refinements(payload.get("history")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "order_index": self.order_index,
            "topics": [topic.to_dict() for topic in self.topics],
            "history": [item.to_dict() for item in self.history],
        }

    def add_topic(self, topic: Topic) -> Topic:
        topic.order_index = len(self.topics)
        topic.section_id = self.id
        self.topics.append(topic)
        return topic

    def remove_topic(self, topic_id: str) -> Topic:
        index = _position(self.topics, topic_id)
        if index is None:
            raise OutlineError(f"Topic with id {topic_id} not found")
        removed = self.topics.pop(index)
        _renumber(self.topics)
        return removed

    def get_topic(self, topic_id: str) -> Topic | None:
        index = _position(self.topics, topic_id)
        return None if index is None else self.topics[index]

    def reorder_topic(self, topic_id: str, new_index: int) -> None:
        if _position(self.topics, topic_id) is None:
            raise OutlineError("Topic not found")
        _move(self.topics, topic_id, new_index)

    def sorted_topics(self) -> list[Topic]:
        return sorted(self.topics, key=lambda topic: topic.order_index)


@dataclass(slots=True)
class Project:
    """A named outline of sections, one editing unit of the workspace."""

    name: str
    id: str = field(default_factory=new_id)
    sections: list[Section] = field(default_factory=list)
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = ""
    history: list[Refinement] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Project:
        created_at = str(payload.get("created_at") or utcnow_iso())
        return cls(
            id=str(payload.get("id") or new_id()),
            name=str(payload.get("name", "")),
            sections=[Section.from_dict(item) for item in payload.get("sections") or ()],
            created_at=created_at,
            updated_at=str(payload.get("updated_at") or created_at),
            history=_refinements(payload.get("history")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sections": [section.to_dict() for section in self.sections],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "history": [item.to_dict() for item in self.history],
        }

    def touch(self) -> None:
        self.updated_at = utcnow_iso()

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def add_section(self, section: Section) -> Section:
        section.order_index = len(self.sections)
        self.sections.append(section)
        self.touch()
        return section

    def remove_section(self, section_id: str) -> Section:
        index = _position(self.sections, section_id)
        if index is None:
            raise OutlineError(f"Section with id {section_id} not found")
        removed = self.sections.pop(index)
        _renumber(self.sections)
        self.touch()
        return removed

    def get_section(self, section_id: str) -> Section | None:
        index = _position(self.sections, section_id)
        return None if index is None else self.sections[index]

    def require_section(self, section_id: str) -> Section:
        section = self.get_section(section_id)
        if section is None:
            raise OutlineError(f"Section with id {section_id} not found")
        return section

    def sorted_sections(self) -> list[Section]:
        return sorted(self.sections, key=lambda section: section.order_index)

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    def iter_topics(self) -> Iterator[tuple[Section, Topic]]:
        for section in self.sections:
            for topic in section.topics:
                yield section, topic

    def find_topic(self, topic_id: str) -> tuple[Section, Topic] | None:
        for section, topic in self.iter_topics():
            if topic.id == topic_id:
                return section, topic
        return None

    def get_topic(self, topic_id: str) -> Topic | None:
        match = self.find_topic(topic_id)
        return None if match is None else match[1]

    def require_topic(self, topic_id: str) -> Topic:
        topic = self.get_topic(topic_id)
        if topic is None:
            raise OutlineError(f"Topic with id {topic_id} not found")
        return topic

    def remove_topic(self, topic_id: str) -> Topic:
        match = self.find_topic(topic_id)
        if match is None:
            raise OutlineError(f"Topic with id {topic_id} not found")
        removed = match[0].remove_topic(topic_id)
        self.touch()
        return removed

    # ------------------------------------------------------------------
    # Ordering & rendering
    # ------------------------------------------------------------------

    def reorder_item(self, item_type: str, item_id: str, new_index: int) -> None:
        """Move a section or topic so it lands before ``new_index``.

        ``new_index`` addresses the list as it was before the move, so moving
        an item forward inserts it at ``new_index - 1``.
        """

        if item_type == "section":
            if _position(self.sections, item_id) is None:
                raise OutlineError("Section not found")
            _move(self.sections, item_id, new_index)
        elif item_type == "topic":
            match = self.find_topic(item_id)
            if match is None:
                raise OutlineError("Topic not found in any section")
            match[0].reorder_topic(item_id, new_index)
        else:
            raise OutlineError(f"Invalid item type: {item_type}")
        self.touch()

    def merged_output(self, *, skip_empty: bool = False) -> str:
        """Render the project as one prompt, sections and topics in order.

        With ``skip_empty`` topic contents are stripped and blank topics are
        left out, which is how the editor previews the prompt.
        """

        blocks: list[str] = []
        for section in self.sorted_sections():
            contents: Iterable[str] = (topic.content for topic in section.sorted_topics())
            if skip_empty:
                contents = [text.strip() for text in contents]
                contents = [text for text in contents if text]
            body = TOPIC_SEPARATOR.join(contents)
            blocks.append(f"{SECTION_HEADER.format(name=section.name)}\n{body}")
        return SECTION_SEPARATOR.join(blocks)


@dataclass(slots=True)
class Workspace:
    """All projects known to the backend plus the active project id."""

    projects: list[Project] = field(default_factory=list)
    active_project_id: str = ""
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def with_project(cls, project: Project) -> Workspace:
        return cls(projects=[project], active_project_id=project.id)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Workspace:
        created_at = str(payload.get("created_at") or utcnow_iso())
        return cls(
            projects=[Project.from_dict(item) for item in payload.get("projects") or ()],
            active_project_id=str(payload.get("active_project_id", "")),
            created_at=created_at,
            updated_at=str(payload.get("updated_at") or created_at),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "projects": [project.to_dict() for project in self.projects],
            "active_project_id": self.active_project_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def touch(self) -> None:
        self.updated_at = utcnow_iso()

    def get_project(self, project_id: str) -> Project | None:
        index = _position(self.projects, project_id)
        return None if index is None else self.projects[index]

    def require_project(self, project_id: str) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise OutlineError(f"Project with id {project_id} not found")
        return project

    @property
    def active_project(self) -> Project | None:
        return self.get_project(self.active_project_id)


_Item = TypeVar("_Item", Section, Topic, Project)


def _position(items: Sequence[_Item], item_id: str) -> int | None:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    return None


def _renumber(items: Sequence[Section] | Sequence[Topic]) -> None:
    for index, item in enumerate(items):
        item.order_index = index


def _move(items: list[Any], item_id: str, new_index: int) -> None:
    current = _position(items, item_id)
    if current is None or current == new_index:
        return
    item = items.pop(current)
    target = new_index - 1 if new_index > current else new_index
    items.insert(max(0, target), item)
    _renumber(items)


def _refinements(payload: Any) -> list[Refinement]:
    if not payload:
        return []
    return [Refinement.from_dict(item) for item in payload if isinstance(item, Mapping)]


__all__ = [
    "DEFAULT_PROJECT_NAME",
    "OutlineError",
    "Project",
    "Refinement",
    "Section",
    "Topic",
    "Workspace",
    "new_id",
    "utcnow_iso",
]
