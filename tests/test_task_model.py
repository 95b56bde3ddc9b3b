"""Tests for the board model (board/model.py) and recurrence contract."""

from __future__ import annotations

import pytest

from ops_board.board.errors import RecurrenceError, ResponsiblePartyError, SelfDependencyError
from ops_board.board.model import (
    UNASSIGNED,
    Stage,
    Task,
    TaskType,
    TeamAssignee,
    Unassigned,
    UserAssignee,
    party_from_dict,
    party_from_fields,
    party_from_token,
    party_to_dict,
)
from ops_board.board.recurrence import (
    OccurrenceGenerator,
    Recurrence,
    RecurrenceFrequency,
    parse_frequency,
    recurrence_from_fields,
    recurrence_patch,
)


class TestResponsibleParty:
    def test_user(self) -> None:
        party = party_from_fields(assignee_id="u1")
        assert party == UserAssignee("u1")
        assert party.user_id == "u1"
        assert party.team_id is None

    def test_team(self) -> None:
        party = party_from_fields(team_id="t1")
        assert party == TeamAssignee("t1")
        assert party.user_id is None
        assert party.team_id == "t1"

    def test_unassigned(self) -> None:
        assert party_from_fields() == Unassigned()
        assert party_from_fields(assignee_id="  ") == UNASSIGNED

    def test_both_rejected(self) -> None:
        with pytest.raises(ResponsiblePartyError):
            party_from_fields(assignee_id="u1", team_id="t1")

    def test_tokens(self) -> None:
        assert party_from_token("user-abc") == UserAssignee("abc")
        assert party_from_token("team-xyz") == TeamAssignee("xyz")
        assert party_from_token("") == UNASSIGNED
        with pytest.raises(ResponsiblePartyError):
            party_from_token("group-1")

    def test_dict_roundtrip(self) -> None:
        for party in (UserAssignee("u1"), TeamAssignee("t1"), UNASSIGNED):
            assert party_from_dict(party_to_dict(party)) == party

    def test_from_dict_garbage_is_unassigned(self) -> None:
        assert party_from_dict({"kind": "robot", "id": "r1"}) == UNASSIGNED
        assert party_from_dict("nonsense") == UNASSIGNED


class TestTaskModel:
    def test_defaults(self) -> None:
        t = Task(name="Write report")
        assert t.id.startswith("task-")
        assert t.is_completed is False
        assert t.task_type == TaskType.TASK
        assert t.responsible == UNASSIGNED
        assert t.recurrence is None

    def test_to_dict_from_dict(self) -> None:
        t = Task(
            id="t1",
            project_id="p1",
            stage_id="s1",
            name="Deploy",
            dependent_task_ids=["t0"],
            responsible=UserAssignee("u1"),
            recurrence=Recurrence(RecurrenceFrequency.WEEKLY, "2026-12-31T00:00:00+00:00"),
        )
        restored = Task.from_dict(t.to_dict())
        assert restored.id == "t1"
        assert restored.dependent_task_ids == ["t0"]
        assert restored.responsible == UserAssignee("u1")
        assert restored.recurrence == t.recurrence

    def test_from_dict_bad_enum_falls_back(self) -> None:
        t = Task.from_dict({"id": "t1", "task_type": "epic"})
        assert t.task_type == TaskType.TASK

    def test_from_document(self) -> None:
        doc = {
            "id": "t9",
            "stageId": "s1",
            "name": "Standup",
            "taskType": "meeting",
            "assigneeId": "u7",
            "dependentTaskIds": ["t1", "t2"],
            "isRecurring": True,
            "recurrenceFrequency": "semanal",
            "recurrenceEndDate": "2026-11-30",
            "meetLink": "https://meet.example/abc",
            "participantIds": ["u1", "u2"],
        }
        t = Task.from_document(doc, project_id="p1")
        assert t.project_id == "p1"
        assert t.is_meeting
        assert t.assignee_id == "u7"
        assert t.recurrence is not None
        assert t.recurrence.frequency == RecurrenceFrequency.WEEKLY
        assert t.participant_ids == ["u1", "u2"]

    def test_from_document_both_assignees_rejected(self) -> None:
        with pytest.raises(ResponsiblePartyError):
            Task.from_document({"id": "t1", "assigneeId": "u1", "teamId": "t1"})

    def test_to_document(self) -> None:
        t = Task(id="t1", project_id="p1", stage_id="s1", name="X", responsible=TeamAssignee("team-a"))
        doc = t.to_document()
        assert doc["projectId"] == "p1"
        assert doc["teamId"] == "team-a"
        assert "assigneeId" not in doc
        assert doc["isRecurring"] is False
        assert "meetLink" not in doc

    def test_add_dependency_rejects_self(self) -> None:
        t = Task(id="t1")
        with pytest.raises(SelfDependencyError):
            t.add_dependency("t1")
        assert t.dependent_task_ids == []

    def test_add_remove_dependency(self) -> None:
        t = Task(id="t1")
        t.add_dependency("t2")
        t.add_dependency("t2")
        assert t.dependent_task_ids == ["t2"]
        t.remove_dependency("t2")
        assert t.dependent_task_ids == []

    def test_set_completed(self) -> None:
        t = Task(id="t1")
        t.set_completed(True)
        assert t.is_completed and t.completed_at
        t.set_completed(False)
        assert not t.is_completed and t.completed_at is None

    def test_apply_patch_ignores_id_and_unknown(self) -> None:
        t = Task(id="t1", name="Old")
        t.apply_patch({"id": "evil", "name": "New", "bogus": 1, "is_completed": True})
        assert t.id == "t1"
        assert t.name == "New"
        assert t.is_completed is True

    def test_copy_is_independent(self) -> None:
        t = Task(id="t1", dependent_task_ids=["a"])
        c = t.copy()
        c.dependent_task_ids.append("b")
        assert t.dependent_task_ids == ["a"]


class TestStage:
    def test_from_dict_accepts_document_keys(self) -> None:
        s = Stage.from_dict({"id": "s1", "projectId": "p1", "name": "Done", "order": "3"})
        assert s.project_id == "p1"
        assert s.order == 3

    def test_bad_order_defaults_to_zero(self) -> None:
        assert Stage.from_dict({"name": "x", "order": "first"}).order == 0


class TestRecurrence:
    def test_not_recurring_drops_fields(self) -> None:
        assert recurrence_from_fields(False, "daily", "2026-12-01") is None

    def test_recurring_requires_both(self) -> None:
        with pytest.raises(RecurrenceError, match="end_date"):
            recurrence_from_fields(True, "daily", None)
        with pytest.raises(RecurrenceError, match="frequency"):
            recurrence_from_fields(True, None, "2026-12-01")

    def test_aliases(self) -> None:
        assert parse_frequency("diaria") == RecurrenceFrequency.DAILY
        assert parse_frequency("Mensal") == RecurrenceFrequency.MONTHLY
        assert parse_frequency("weekly") == RecurrenceFrequency.WEEKLY

    def test_unknown_frequency(self) -> None:
        with pytest.raises(RecurrenceError):
            parse_frequency("hourly")

    def test_patch_clears_together(self) -> None:
        assert recurrence_patch(False) == {"recurrence": None}
        patch = recurrence_patch(True, "daily", "2026-12-01")
        assert patch["recurrence"].frequency == RecurrenceFrequency.DAILY
        assert patch["recurrence"].end_date.startswith("2026-12-01")

    def test_occurrence_generator_extension_point(self) -> None:
        class Weekly(OccurrenceGenerator):
            def next_occurrence(self, task: Task):
                if task.recurrence is None:
                    return None
                return {"name": task.name, "stage_id": task.stage_id}

        gen = Weekly()
        assert gen.next_occurrence(Task(name="x")) is None
        recurring = Task(name="Report", stage_id="s1", recurrence=Recurrence(RecurrenceFrequency.WEEKLY, "2026-12-31T00:00:00+00:00"))
        assert gen.next_occurrence(recurring) == {"name": "Report", "stage_id": "s1"}
        with pytest.raises(TypeError):
            OccurrenceGenerator()  # type: ignore[abstract]
