"""Request models and pre-write checks for board mutations.

Pydantic models describe the accepted shape of create/update payloads; the
``check_*`` helpers enforce the cross-document rules (no self-dependency,
stage inside the task's project) that need the current snapshot.  Everything
here raises before a write reaches the task store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..utils import _to_iso
from .errors import SelfDependencyError, StageProjectMismatchError, TaskValidationError
from .model import Stage, Task, TaskType, party_from_fields
from .recurrence import RecurrenceFrequency, parse_frequency, recurrence_from_fields


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class CreateTaskRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: str = ""
    stage_id: Optional[str] = None
    task_type: TaskType = TaskType.TASK
    dependent_task_ids: list[str] = Field(default_factory=list)
    assignee_id: Optional[str] = None
    team_id: Optional[str] = None
    due_date: Optional[datetime] = None
    is_recurring: bool = False
    recurrence_frequency: Optional[RecurrenceFrequency] = None
    recurrence_end_date: Optional[datetime] = None
    meet_link: Optional[str] = None
    participant_ids: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("recurrence_frequency", mode="before")
    @classmethod
    def _frequency_alias(cls, value: Any) -> Any:
        return parse_frequency(value)

    def to_task(self, project_id: str) -> Task:
        """Build the new :class:`Task`; cross-field rules raise here."""
        if self.task_type == TaskType.TASK and not self.stage_id:
            raise TaskValidationError("Board tasks require a stage; only meetings may be unstaged")
        task = Task(
            project_id=project_id,
            stage_id=self.stage_id,
            name=self.name,
            description=self.description,
            task_type=self.task_type,
            dependent_task_ids=list(dict.fromkeys(self.dependent_task_ids)),
            responsible=party_from_fields(self.assignee_id, self.team_id),
            due_date=_to_iso(self.due_date),
            recurrence=recurrence_from_fields(
                self.is_recurring, self.recurrence_frequency, self.recurrence_end_date
            ),
            metadata=dict(self.metadata),
        )
        if task.is_meeting:
            task.meet_link = self.meet_link or None
            task.participant_ids = list(self.participant_ids)
        return task


class UpdateTaskRequest(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    stage_id: Optional[str] = None
    is_completed: Optional[bool] = None
    dependent_task_ids: Optional[list[str]] = None
    assignee_id: Optional[str] = None
    team_id: Optional[str] = None
    due_date: Optional[datetime] = None
    is_recurring: Optional[bool] = None
    recurrence_frequency: Optional[RecurrenceFrequency] = None
    recurrence_end_date: Optional[datetime] = None
    meet_link: Optional[str] = None
    participant_ids: Optional[list[str]] = None

    @field_validator("recurrence_frequency", mode="before")
    @classmethod
    def _frequency_alias(cls, value: Any) -> Any:
        return parse_frequency(value)

    @field_validator("is_completed", "is_recurring", mode="before")
    @classmethod
    def _flag_not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("must be true or false when given")
        return value

    def to_changes(self, current: Task) -> dict[str, Any]:
        """Translate into :class:`Task` attribute changes relative to *current*."""
        given = self.model_fields_set
        changes: dict[str, Any] = {}

        for name in ("name", "description", "stage_id", "is_completed", "meet_link"):
            if name in given:
                changes[name] = getattr(self, name)
        if "name" in given and not (self.name or "").strip():
            raise TaskValidationError("name must not be blank")
        if "dependent_task_ids" in given:
            changes["dependent_task_ids"] = list(dict.fromkeys(self.dependent_task_ids or []))
        if "participant_ids" in given:
            changes["participant_ids"] = list(self.participant_ids or [])
        if "due_date" in given:
            changes["due_date"] = _to_iso(self.due_date)

        if given & {"assignee_id", "team_id"}:
            changes["responsible"] = party_from_fields(self.assignee_id, self.team_id)

        if given & {"is_recurring", "recurrence_frequency", "recurrence_end_date"}:
            if "is_recurring" in given:
                recurring = bool(self.is_recurring)
            else:
                recurring = current.is_recurring
            if not recurring:
                changes["recurrence"] = None
            else:
                frequency = self.recurrence_frequency
                end_date = self.recurrence_end_date
                if current.recurrence is not None:
                    if "recurrence_frequency" not in given:
                        frequency = current.recurrence.frequency
                    if "recurrence_end_date" not in given:
                        end_date = current.recurrence.end_date
                changes["recurrence"] = recurrence_from_fields(True, frequency, end_date)
        return changes


def parse_create(data: Mapping[str, Any]) -> CreateTaskRequest:
    try:
        return CreateTaskRequest.model_validate(dict(data))
    except ValidationError as exc:
        raise TaskValidationError(str(exc)) from exc


def parse_update(data: Mapping[str, Any]) -> UpdateTaskRequest:
    try:
        return UpdateTaskRequest.model_validate(dict(data))
    except ValidationError as exc:
        raise TaskValidationError(str(exc)) from exc


# ---------------------------------------------------------------------------
# Snapshot checks
# ---------------------------------------------------------------------------

def check_no_self_dependency(task_id: str, dependent_task_ids: list[str]) -> None:
    if task_id in dependent_task_ids:
        raise SelfDependencyError(task_id)


def check_stage_in_project(task: Task, stage_id: Optional[str], stages: Mapping[str, Stage]) -> None:
    """Ensure *stage_id* is a stage of the task's own project.

    ``None`` is accepted only for meetings.  A stage id missing from the
    snapshot is rejected like a foreign one.
    """
    if stage_id is None:
        if not task.is_meeting:
            raise TaskValidationError(f"Task {task.id} requires a stage")
        return
    stage = stages.get(stage_id)
    if stage is None or stage.project_id != task.project_id:
        raise StageProjectMismatchError(
            task.id, stage_id, task.project_id, stage.project_id if stage else None
        )
