"""Tests for request models and pre-write checks (board/validation.py)."""

from __future__ import annotations

import pytest

from ops_board.board.errors import SelfDependencyError, StageProjectMismatchError, TaskValidationError
from ops_board.board.model import Stage, Task, TaskType, UserAssignee
from ops_board.board.recurrence import Recurrence, RecurrenceFrequency
from ops_board.board.validation import (
    check_no_self_dependency,
    check_stage_in_project,
    parse_create,
    parse_update,
)


@pytest.fixture
def stages() -> dict[str, Stage]:
    return {
        "s1": Stage(id="s1", project_id="p1", name="To Do", order=1),
        "x1": Stage(id="x1", project_id="p2", name="Other", order=1),
    }


class TestCreateRequest:
    def test_minimal(self) -> None:
        task = parse_create({"name": "  Ship it ", "stage_id": "s1"}).to_task("p1")
        assert task.name == "Ship it"
        assert task.project_id == "p1"
        assert task.task_type == TaskType.TASK

    def test_deduplicates_dependencies(self) -> None:
        task = parse_create({"name": "A", "stage_id": "s1", "dependent_task_ids": ["b", "c", "b"]}).to_task("p1")
        assert task.dependent_task_ids == ["b", "c"]

    def test_non_meeting_fields_dropped_for_tasks(self) -> None:
        task = parse_create({"name": "A", "stage_id": "s1", "meet_link": "https://x"}).to_task("p1")
        assert task.meet_link is None

    def test_bad_type(self) -> None:
        with pytest.raises(TaskValidationError):
            parse_create({"name": "A", "task_type": "epic"})

    def test_bad_frequency(self) -> None:
        with pytest.raises(TaskValidationError):
            parse_create({"name": "A", "is_recurring": True, "recurrence_frequency": "hourly"})

    def test_frequency_shares_recurrence_parsing(self) -> None:
        request = parse_create(
            {"name": "A", "stage_id": "s1", "is_recurring": True, "recurrence_frequency": " Diaria ", "recurrence_end_date": "2026-12-31"}
        )
        assert request.recurrence_frequency == RecurrenceFrequency.DAILY
        assert parse_create({"name": "A", "recurrence_frequency": "  "}).recurrence_frequency is None


class TestUpdateRequest:
    def test_only_given_fields(self) -> None:
        current = Task(id="t1", name="Old", description="keep")
        changes = parse_update({"name": "New"}).to_changes(current)
        assert changes == {"name": "New"}

    def test_blank_name(self) -> None:
        with pytest.raises(TaskValidationError):
            parse_update({"name": " "}).to_changes(Task(id="t1"))

    def test_assignee_change(self) -> None:
        changes = parse_update({"assignee_id": "u2"}).to_changes(Task(id="t1"))
        assert changes == {"responsible": UserAssignee("u2")}

    def test_enable_recurrence_needs_both(self) -> None:
        with pytest.raises(TaskValidationError):
            parse_update({"is_recurring": True, "recurrence_frequency": "daily"}).to_changes(Task(id="t1"))

    def test_disable_recurrence_clears(self) -> None:
        current = Task(id="t1", recurrence=Recurrence(RecurrenceFrequency.DAILY, "2026-12-31T00:00:00+00:00"))
        assert parse_update({"is_recurring": False}).to_changes(current) == {"recurrence": None}

    def test_frequency_alias(self) -> None:
        current = Task(id="t1", recurrence=Recurrence(RecurrenceFrequency.DAILY, "2026-12-31T00:00:00+00:00"))
        changes = parse_update({"recurrence_frequency": "mensal"}).to_changes(current)
        assert changes["recurrence"].frequency == RecurrenceFrequency.MONTHLY

    def test_null_flags_rejected(self) -> None:
        with pytest.raises(TaskValidationError, match="is_completed"):
            parse_update({"is_completed": None})
        with pytest.raises(TaskValidationError, match="is_recurring"):
            parse_update({"is_recurring": None})
        assert parse_update({"is_completed": False}).to_changes(Task(id="t1")) == {"is_completed": False}

    def test_extra_field_rejected(self) -> None:
        with pytest.raises(TaskValidationError):
            parse_update({"id": "other"})


class TestChecks:
    def test_self_dependency(self) -> None:
        check_no_self_dependency("t1", ["t2"])
        with pytest.raises(SelfDependencyError):
            check_no_self_dependency("t1", ["t2", "t1"])

    def test_stage_in_project(self, stages: dict[str, Stage]) -> None:
        check_stage_in_project(Task(id="t1", project_id="p1"), "s1", stages)

    def test_stage_from_other_project(self, stages: dict[str, Stage]) -> None:
        with pytest.raises(StageProjectMismatchError) as exc_info:
            check_stage_in_project(Task(id="t1", project_id="p1"), "x1", stages)
        assert exc_info.value.stage_project_id == "p2"

    def test_unknown_stage(self, stages: dict[str, Stage]) -> None:
        with pytest.raises(StageProjectMismatchError):
            check_stage_in_project(Task(id="t1", project_id="p1"), "nope", stages)

    def test_null_stage_only_for_meetings(self, stages: dict[str, Stage]) -> None:
        check_stage_in_project(Task(id="m1", project_id="p1", task_type=TaskType.MEETING), None, stages)
        with pytest.raises(TaskValidationError):
            check_stage_in_project(Task(id="t1", project_id="p1"), None, stages)
