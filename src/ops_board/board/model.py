"""Task and stage model for the project board.

Tasks are plain dataclasses that serialize to snake_case dicts for the file
store and to the camelCase document shape used by the remote document store
(``to_document`` / ``from_document``).  Derived flags (locked, has
dependents) are deliberately absent: they are computed from a task set by
:mod:`ops_board.board.dependencies` and never stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Optional, Union

from ..utils import _coerce_string_list, _generate_id, _now_iso, _to_iso
from .errors import ResponsiblePartyError, SelfDependencyError
from .recurrence import Recurrence, recurrence_from_fields


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskType(str, Enum):
    """The kind of board item."""

    TASK = "task"
    MEETING = "meeting"


# ---------------------------------------------------------------------------
# Responsible party
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Unassigned:
    kind = "unassigned"

    @property
    def user_id(self) -> Optional[str]:
        return None

    @property
    def team_id(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class UserAssignee:
    id: str
    kind = "user"

    @property
    def user_id(self) -> Optional[str]:
        return self.id

    @property
    def team_id(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class TeamAssignee:
    id: str
    kind = "team"

    @property
    def user_id(self) -> Optional[str]:
        return None

    @property
    def team_id(self) -> Optional[str]:
        return self.id


ResponsibleParty = Union[Unassigned, UserAssignee, TeamAssignee]

UNASSIGNED = Unassigned()


def party_from_fields(assignee_id: Optional[str] = None, team_id: Optional[str] = None) -> ResponsibleParty:
    """Build the responsible party from the two legacy optional fields.

    Raises :class:`ResponsiblePartyError` if both are set.
    """
    assignee_id = str(assignee_id).strip() if assignee_id else None
    team_id = str(team_id).strip() if team_id else None
    if assignee_id and team_id:
        raise ResponsiblePartyError(
            f"A task is owned by a user or a team, not both (user={assignee_id}, team={team_id})"
        )
    if assignee_id:
        return UserAssignee(assignee_id)
    if team_id:
        return TeamAssignee(team_id)
    return UNASSIGNED


def party_from_token(token: Optional[str]) -> ResponsibleParty:
    """Parse the ``user-<id>`` / ``team-<id>`` tokens used by assignment pickers."""
    if not token:
        return UNASSIGNED
    if token.startswith("user-"):
        return party_from_fields(assignee_id=token[len("user-"):])
    if token.startswith("team-"):
        return party_from_fields(team_id=token[len("team-"):])
    raise ResponsiblePartyError(f"Unrecognized assignee token {token!r}")


def party_to_dict(party: ResponsibleParty) -> Optional[dict[str, str]]:
    if isinstance(party, Unassigned):
        return None
    return {"kind": party.kind, "id": party.id}


def party_from_dict(data: Any) -> ResponsibleParty:
    if isinstance(data, (Unassigned, UserAssignee, TeamAssignee)):
        return data
    if not isinstance(data, dict):
        return UNASSIGNED
    kind = data.get("kind")
    party_id = str(data.get("id") or "").strip()
    if not party_id:
        return UNASSIGNED
    if kind == "user":
        return UserAssignee(party_id)
    if kind == "team":
        return TeamAssignee(party_id)
    return UNASSIGNED


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------

@dataclass
class Stage:
    """A column of a project's workflow, ordered left to right by ``order``."""

    id: str = field(default_factory=lambda: _generate_id("stage"))
    project_id: str = ""
    name: str = ""
    order: int = 0
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "order": self.order,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Stage":
        try:
            order = int(data.get("order") or 0)
        except (TypeError, ValueError):
            order = 0
        return cls(
            id=str(data.get("id") or _generate_id("stage")),
            project_id=str(data.get("project_id") or data.get("projectId") or ""),
            name=str(data.get("name") or ""),
            order=order,
            description=data.get("description"),
        )


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A card on a project board."""

    # Identity
    id: str = field(default_factory=lambda: _generate_id("task"))
    project_id: str = ""
    stage_id: Optional[str] = None
    name: str = ""
    description: str = ""
    task_type: TaskType = TaskType.TASK

    # Progress
    is_completed: bool = False
    completed_at: Optional[str] = None

    # Ids of the tasks this one waits on
    dependent_task_ids: list[str] = field(default_factory=list)

    # Assignment
    responsible: ResponsibleParty = UNASSIGNED
    due_date: Optional[str] = None

    recurrence: Optional[Recurrence] = None

    # Meeting-only fields
    meet_link: Optional[str] = None
    participant_ids: list[str] = field(default_factory=list)

    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    metadata: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def assignee_id(self) -> Optional[str]:
        return self.responsible.user_id

    @property
    def team_id(self) -> Optional[str]:
        return self.responsible.team_id

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    @property
    def is_meeting(self) -> bool:
        return self.task_type == TaskType.MEETING

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "stage_id": self.stage_id,
            "name": self.name,
            "description": self.description,
            "task_type": self.task_type.value,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at,
            "dependent_task_ids": list(self.dependent_task_ids),
            "responsible": party_to_dict(self.responsible),
            "due_date": self.due_date,
            "recurrence": self.recurrence.to_dict() if self.recurrence else None,
            "meet_link": self.meet_link,
            "participant_ids": list(self.participant_ids),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        d = dict(data)

        raw_type = d.pop("task_type", None)
        try:
            task_type = TaskType(str(raw_type)) if raw_type is not None else TaskType.TASK
        except ValueError:
            task_type = TaskType.TASK

        raw_rec = d.pop("recurrence", None)
        recurrence = Recurrence.from_dict(raw_rec) if isinstance(raw_rec, dict) else None

        return cls(
            id=str(d.pop("id", None) or _generate_id("task")),
            project_id=str(d.pop("project_id", "") or ""),
            stage_id=d.pop("stage_id", None),
            name=str(d.pop("name", "") or ""),
            description=str(d.pop("description", "") or ""),
            task_type=task_type,
            is_completed=bool(d.pop("is_completed", False)),
            completed_at=d.pop("completed_at", None),
            dependent_task_ids=_coerce_string_list(d.pop("dependent_task_ids", [])),
            responsible=party_from_dict(d.pop("responsible", None)),
            due_date=_to_iso(d.pop("due_date", None)),
            recurrence=recurrence,
            meet_link=d.pop("meet_link", None) or None,
            participant_ids=_coerce_string_list(d.pop("participant_ids", [])),
            created_at=str(d.pop("created_at", None) or _now_iso()),
            updated_at=str(d.pop("updated_at", None) or _now_iso()),
            metadata=dict(d.pop("metadata", {}) or {}),
        )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase document shape of the remote store."""
        doc: dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "stageId": self.stage_id,
            "name": self.name,
            "description": self.description,
            "taskType": self.task_type.value,
            "isCompleted": self.is_completed,
            "dependentTaskIds": list(self.dependent_task_ids),
            "isRecurring": self.is_recurring,
        }
        if self.assignee_id:
            doc["assigneeId"] = self.assignee_id
        if self.team_id:
            doc["teamId"] = self.team_id
        if self.due_date:
            doc["dueDate"] = self.due_date
        if self.recurrence:
            doc["recurrenceFrequency"] = self.recurrence.frequency.value
            doc["recurrenceEndDate"] = self.recurrence.end_date
        if self.is_meeting:
            doc["meetLink"] = self.meet_link
            doc["participantIds"] = list(self.participant_ids)
        return doc

    @classmethod
    def from_document(cls, data: dict[str, Any], *, project_id: Optional[str] = None) -> "Task":
        """Build a task from a remote-store document.

        ``project_id`` fills in the owning project for documents stored in a
        per-project sub-collection, where the field is often omitted.
        """
        recurrence = recurrence_from_fields(
            bool(data.get("isRecurring")),
            data.get("recurrenceFrequency"),
            data.get("recurrenceEndDate"),
        )
        raw_type = data.get("taskType") or TaskType.TASK.value
        try:
            task_type = TaskType(str(raw_type))
        except ValueError:
            task_type = TaskType.TASK
        return cls(
            id=str(data.get("id") or _generate_id("task")),
            project_id=str(data.get("projectId") or project_id or ""),
            stage_id=data.get("stageId") or None,
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            task_type=task_type,
            is_completed=bool(data.get("isCompleted", False)),
            dependent_task_ids=_coerce_string_list(data.get("dependentTaskIds") or []),
            responsible=party_from_fields(data.get("assigneeId"), data.get("teamId")),
            due_date=_to_iso(data.get("dueDate")),
            recurrence=recurrence,
            meet_link=data.get("meetLink") or None,
            participant_ids=_coerce_string_list(data.get("participantIds") or []),
        )

    # ------------------------------------------------------------------
    # Mutation helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()

    def set_completed(self, completed: bool) -> None:
        self.is_completed = completed
        self.completed_at = _now_iso() if completed else None
        self.touch()

    def apply_patch(self, changes: dict[str, Any]) -> None:
        """Apply a partial update in place; unknown keys are ignored."""
        known = {f.name for f in fields(self)}
        for key, value in changes.items():
            if key == "id" or key not in known:
                continue
            if key == "is_completed":
                self.set_completed(bool(value))
                continue
            setattr(self, key, value)
        self.touch()

    def copy(self) -> "Task":
        return replace(
            self,
            dependent_task_ids=list(self.dependent_task_ids),
            participant_ids=list(self.participant_ids),
            metadata=dict(self.metadata),
        )

    # ------------------------------------------------------------------
    # Dependency helpers
    # ------------------------------------------------------------------

    def add_dependency(self, task_id: str) -> None:
        if task_id == self.id:
            raise SelfDependencyError(self.id)
        if task_id not in self.dependent_task_ids:
            self.dependent_task_ids.append(task_id)
            self.touch()

    def remove_dependency(self, task_id: str) -> None:
        if task_id in self.dependent_task_ids:
            self.dependent_task_ids.remove(task_id)
            self.touch()
