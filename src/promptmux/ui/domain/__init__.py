"""Domain layer for the front-end state.

This package contains the stores that mirror backend state and the editor
sessions that bind current state to an undo history, independent of any
rendering toolkit.

Domain Managers:
    - ProjectStore: Workspace mirror, selection, and derived views
    - EditorSession: Current state plus undo/redo history for one unit
    - TopicEditor: Undoable editing of the selected topic's content

All domain managers:
    - Receive dependencies via constructor injection
    - Emit events to notify other layers of state changes
    - Hold their state in explicit Observable objects
"""

from __future__ import annotations

from .editor_session import EditorSession, TopicEditor
from .observable import Derived, Observable
from .project_store import ActiveTopic, ProjectStore

__all__: list[str] = [
    "ActiveTopic",
    "Derived",
    "EditorSession",
    "Observable",
    "ProjectStore",
    "TopicEditor",
]
