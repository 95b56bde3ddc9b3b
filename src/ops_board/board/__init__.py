"""Dependency-aware project board.

This package provides the task/stage model, the dependency read-model, the
drag-and-drop stage transition state machine, the assignment notification
contract and the store adapters the :class:`BoardEngine` is wired from.
"""

from .dependencies import DependencyGraph, TaskFlags, compute_flags
from .engine import BoardEngine
from .model import Stage, Task, TaskType, TeamAssignee, Unassigned, UserAssignee
from .notifier import AssignmentNotifier, NotificationFeed, TemplateNotifier, notify_assignment
from .store import FileTaskStore, InMemoryTaskStore, TaskStoreAdapter
from .transitions import DragState, StageTransitionController

__all__ = [
    "AssignmentNotifier",
    "BoardEngine",
    "DependencyGraph",
    "DragState",
    "FileTaskStore",
    "InMemoryTaskStore",
    "NotificationFeed",
    "Stage",
    "StageTransitionController",
    "Task",
    "TaskFlags",
    "TaskStoreAdapter",
    "TaskType",
    "TeamAssignee",
    "TemplateNotifier",
    "Unassigned",
    "UserAssignee",
    "compute_flags",
    "notify_assignment",
]
