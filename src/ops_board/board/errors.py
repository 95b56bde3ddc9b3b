"""Exceptions raised by the board engine.

Validation errors are contract violations detected before any write is
issued.  Store rejections arrive asynchronously on write futures and on the
engine's error channel; they are never raised synchronously by an adapter.
"""

from __future__ import annotations

from typing import Optional


class BoardError(Exception):
    """Root of every board engine error."""


class TaskValidationError(BoardError, ValueError):
    """A mutation was refused before reaching the store."""


class SelfDependencyError(TaskValidationError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} cannot depend on itself")
        self.task_id = task_id


class StageProjectMismatchError(TaskValidationError):
    def __init__(self, task_id: str, stage_id: str, task_project_id: str, stage_project_id: Optional[str]) -> None:
        super().__init__(
            f"Stage {stage_id} belongs to project {stage_project_id!r}, "
            f"not to project {task_project_id!r} of task {task_id}"
        )
        self.task_id = task_id
        self.stage_id = stage_id
        self.task_project_id = task_project_id
        self.stage_project_id = stage_project_id


class ResponsiblePartyError(TaskValidationError):
    """Both a user and a team were given as responsible party."""


class RecurrenceError(TaskValidationError):
    """Recurring task without frequency or end date."""


class DependencyCycleError(TaskValidationError):
    def __init__(self, task_id: str, depends_on_id: str) -> None:
        super().__init__(f"Adding dependency {task_id} -> {depends_on_id} would create a cycle")
        self.task_id = task_id
        self.depends_on_id = depends_on_id


class TransitionError(BoardError):
    """The drag state machine was driven out of order."""


class TaskLockedError(TransitionError):
    def __init__(self, task_id: str, blockers: Optional[list[str]] = None) -> None:
        blockers = list(blockers or [])
        detail = f"; unresolved blockers: {blockers}" if blockers else ""
        super().__init__(f"Task {task_id} is locked and cannot be dragged{detail}")
        self.task_id = task_id
        self.blockers = blockers


REASON_PERMISSION_DENIED = "permission_denied"
REASON_NOT_FOUND = "not_found"


class StoreRejection(BoardError):
    """The task store refused a write (permission denial, missing document)."""

    def __init__(
        self,
        reason: str,
        *,
        operation: str,
        task_id: Optional[str] = None,
        project_id: Optional[str] = None,
        detail: str = "",
    ) -> None:
        message = f"{operation} rejected ({reason})"
        if task_id:
            message += f" for task {task_id}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.reason = reason
        self.operation = operation
        self.task_id = task_id
        self.project_id = project_id


class NotificationError(BoardError):
    """Raised inside the notifier; always logged and swallowed."""


class StateFileError(BoardError):
    """A durable state file exists but cannot be read, so it is not overwritten."""
