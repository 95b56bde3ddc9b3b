"""Board engine: dependency-aware task board for one project.

This is the primary entry-point for board manipulation.  It subscribes to a
:class:`TaskStoreAdapter`, recomputes the :class:`DependencyGraph` on every
task snapshot, validates mutations before they are issued, runs the
assignment notification contract and records an activity log.

Writes never block: every mutation returns the store's future.  Rejections
are also published on :attr:`BoardEngine.errors`, and the next snapshot
pushed by the store is the source of truth.
"""

from __future__ import annotations

from collections import deque
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from loguru import logger

from ..config import get_board_config, get_dependency_config, load_board_config
from ..constants import CYCLE_POLICY_REJECT, EVENTS_FILE, NOTIFICATIONS_FILE, STATE_DIR_NAME
from ..io_utils import _append_event, _read_events
from .dependencies import DependencyGraph, TaskFlags
from .errors import DependencyCycleError, StoreRejection, TaskValidationError
from .events import ErrorChannel, EventChannel, Subscription
from .model import ResponsibleParty, Stage, Task, party_from_fields
from .notifier import (
    AssignmentNotifier,
    NotificationFeed,
    create_notifier,
    notify_assignment,
    notify_bulk_reassignment,
)
from .store import FileTaskStore, TaskStoreAdapter
from .transitions import StageTransitionController
from .validation import (
    CreateTaskRequest,
    UpdateTaskRequest,
    check_no_self_dependency,
    check_stage_in_project,
    parse_create,
    parse_update,
)


def _done(value: Any = None) -> Future:
    fut: Future = Future()
    fut.set_result(value)
    return fut


class BoardEngine:
    """Manage the tasks and stages of a single project board.

    Parameters
    ----------
    store:
        Task store adapter owning the project's documents.
    project_id:
        The project this engine is bound to.
    notifier:
        Assignment notifier; built from *config* when omitted.
    config:
        Parsed board config (see :mod:`ops_board.config`).
    events_path:
        Optional JSONL file receiving the activity log.
    project_name:
        Human label used in notification messages.
    """

    def __init__(
        self,
        store: TaskStoreAdapter,
        project_id: str,
        *,
        notifier: Optional[AssignmentNotifier] = None,
        config: Optional[dict[str, Any]] = None,
        events_path: Optional[Path] = None,
        project_name: Optional[str] = None,
    ) -> None:
        config = config or {}
        dep_config = get_dependency_config(config)
        self.store = store
        self.project_id = project_id
        self.project_name = project_name
        self.missing_dependency = dep_config["missing_dependency"]
        self.cycle_policy = dep_config["cycle_policy"]
        self.default_stages = get_board_config(config)["default_stages"]
        self.notifier = notifier if notifier is not None else create_notifier(config)
        self._events_path = Path(events_path) if events_path is not None else None

        self.errors = ErrorChannel(f"errors:{project_id}")
        self.changes: EventChannel[DependencyGraph] = EventChannel(f"board:{project_id}")

        self._tasks: list[Task] = []
        self._stages: list[Stage] = []
        self._stages_by_id: dict[str, Stage] = {}
        self._graph = DependencyGraph([], missing_dependency=self.missing_dependency)
        self.controller = StageTransitionController(self, self._commit_stage)

        self._subscriptions: list[Subscription] = [
            store.subscribe_stages(project_id, self._on_stages, self._on_stream_error),
            store.subscribe_tasks(project_id, self._on_tasks, self._on_stream_error),
        ]

    @classmethod
    def from_project_dir(
        cls,
        project_dir: Path,
        project_id: str,
        *,
        project_name: Optional[str] = None,
    ) -> "BoardEngine":
        """Open a file-backed board under ``<project_dir>/.ops_board/``."""
        project_dir = Path(project_dir).resolve()
        state_dir = project_dir / STATE_DIR_NAME
        state_dir.mkdir(parents=True, exist_ok=True)
        config, err = load_board_config(project_dir)
        if err:
            logger.warning("Ignoring invalid board config: {}", err)
        feed = NotificationFeed(state_dir / NOTIFICATIONS_FILE)
        return cls(
            FileTaskStore(state_dir),
            project_id,
            notifier=create_notifier(config, feed),
            config=config,
            events_path=state_dir / EVENTS_FILE,
            project_name=project_name,
        )

    def close(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def _on_tasks(self, tasks: list[Task]) -> None:
        self._tasks = list(tasks)
        self._graph = DependencyGraph(self._tasks, missing_dependency=self.missing_dependency)
        self._graph.find_cycles()
        self.changes.publish(self._graph)

    def _on_stages(self, stages: list[Stage]) -> None:
        self._stages = sorted(stages, key=lambda s: s.order)
        self._stages_by_id = {s.id: s for s in self._stages}

    def _on_stream_error(self, exc: BaseException) -> None:
        logger.warning("Board subscription for project {} failed: {}", self.project_id, exc)
        self.errors.publish(exc)

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    @property
    def stages_by_id(self) -> Mapping[str, Stage]:
        return dict(self._stages_by_id)

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    def get_task(self, task_id: str) -> Optional[Task]:
        task = self._graph.get(task_id)
        return task.copy() if task is not None else None

    def flags(self, task_id: str) -> TaskFlags:
        return self._graph.flags_for(task_id)

    def is_locked(self, task_id: str) -> bool:
        return self._graph.is_locked(task_id)

    def has_dependents(self, task_id: str) -> bool:
        return self._graph.has_dependents(task_id)

    def blocking_tasks(self, task_id: str) -> list[str]:
        return self._graph.blocking_tasks(task_id)

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def _emit_event(self, event_type: str, task_id: Optional[str], **details: Any) -> None:
        if self._events_path is None:
            return
        payload: dict[str, Any] = {"type": event_type, "task_id": task_id, "project_id": self.project_id}
        if details:
            payload["details"] = details
        try:
            _append_event(self._events_path, payload)
        except Exception:
            logger.exception("Failed to append board event {} for {}", event_type, task_id)

    def get_recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        if self._events_path is None:
            return []
        return _read_events(self._events_path, limit)

    def get_task_events(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        events = self.get_recent_events(limit=max(limit * 5, limit))
        return [e for e in events if str(e.get("task_id")) == task_id][-limit:]

    # ------------------------------------------------------------------
    # Write plumbing
    # ------------------------------------------------------------------

    def _track(self, fut: Future, operation: str, task_id: Optional[str]) -> Future:
        def _done_cb(f: Future) -> None:
            exc = f.exception()
            if exc is None:
                return
            if isinstance(exc, StoreRejection):
                logger.warning("Store rejected {} of task {}: {}", operation, task_id, exc.reason)
            else:
                logger.error("Store write {} of task {} failed: {}", operation, task_id, exc)
            self.errors.publish(exc)

        fut.add_done_callback(_done_cb)
        return fut

    def _require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise TaskValidationError(f"Task {task_id} is not on the board of project {self.project_id}")
        return task

    def _check_dependencies(self, task: Task, dependency_ids: Iterable[str]) -> None:
        dependency_ids = list(dependency_ids)
        check_no_self_dependency(task.id, dependency_ids)
        added = [d for d in dependency_ids if d not in task.dependent_task_ids]
        for dep_id in added:
            if not self._graph.would_cycle(task.id, dep_id):
                continue
            if self.cycle_policy == CYCLE_POLICY_REJECT:
                raise DependencyCycleError(task.id, dep_id)
            logger.warning("Dependency {} -> {} closes a cycle; both tasks stay locked", task.id, dep_id)

    def _notify_extra(self) -> dict[str, str]:
        suffix = f' in project "{self.project_name}"' if self.project_name else ""
        return {"projectId": self.project_id, "projectSuffix": suffix}

    def _notify(self, task_id: str, label: str, old: ResponsibleParty, new: ResponsibleParty) -> bool:
        return notify_assignment(
            self.notifier,
            task_id,
            label,
            old.user_id,
            new.user_id,
            extra=self._notify_extra(),
        )

    def _update(self, current: Task, changes: dict[str, Any], event_type: str, notify: bool = True) -> Future:
        if "dependent_task_ids" in changes:
            self._check_dependencies(current, changes["dependent_task_ids"])
        if "stage_id" in changes and changes["stage_id"] != current.stage_id:
            check_stage_in_project(current, changes["stage_id"], self._stages_by_id)

        fut = self._track(
            self.store.update_task(self.project_id, current.id, changes),
            "update_task",
            current.id,
        )
        if notify and "responsible" in changes:
            self._notify(current.id, changes.get("name") or current.name, current.responsible, changes["responsible"])
        self._emit_event(event_type, current.id, fields=sorted(changes.keys()))
        logger.info("Requested {} for task {} ({})", event_type, current.id, ", ".join(sorted(changes)))
        return fut

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_task(self, data: Union[Mapping[str, Any], CreateTaskRequest]) -> Future:
        """Validate and issue a new task; the future resolves to its id."""
        request = data if isinstance(data, CreateTaskRequest) else parse_create(data)
        task = request.to_task(self.project_id)
        check_no_self_dependency(task.id, task.dependent_task_ids)
        if task.stage_id is not None:
            check_stage_in_project(task, task.stage_id, self._stages_by_id)

        fut = self._track(self.store.create_task(self.project_id, task), "create_task", task.id)
        self._notify(task.id, task.name, party_from_fields(), task.responsible)
        self._emit_event("task.created", task.id, task_type=task.task_type.value, stage_id=task.stage_id)
        logger.info("Requested creation of task {}: {}", task.id, task.name)
        return fut

    def add_dependent_task(self, existing_task_id: str, data: Mapping[str, Any]) -> Future:
        """Create a new task that depends on *existing_task_id*."""
        self._require_task(existing_task_id)
        payload = dict(data)
        deps = list(payload.get("dependent_task_ids") or [])
        if existing_task_id not in deps:
            deps.append(existing_task_id)
        payload["dependent_task_ids"] = deps
        return self.create_task(payload)

    def update_task(self, task_id: str, data: Union[Mapping[str, Any], UpdateTaskRequest]) -> Future:
        """Validate and issue a partial update."""
        current = self._require_task(task_id)
        request = data if isinstance(data, UpdateTaskRequest) else parse_update(data)
        changes = request.to_changes(current)
        if not changes:
            return _done()
        return self._update(current, changes, "task.updated")

    def set_completed(self, task_id: str, completed: bool = True) -> Future:
        current = self._require_task(task_id)
        if current.is_completed == completed:
            return _done()
        return self._update(current, {"is_completed": completed}, "task.completed" if completed else "task.reopened")

    def delete_task(self, task_id: str) -> Future:
        """Issue a delete; other tasks keep their references to *task_id*."""
        current = self._require_task(task_id)
        dependents = self._graph.dependents_of(task_id)
        if dependents:
            logger.info("Deleting task {} leaves dangling references in {}", task_id, dependents)
        fut = self._track(self.store.delete_task(self.project_id, task_id), "delete_task", task_id)
        self._emit_event("task.deleted", current.id, dependents=dependents)
        logger.info("Requested deletion of task {}", task_id)
        return fut

    def move_task(self, task_id: str, stage_id: str) -> Future:
        """Move a task to another stage by direct edit."""
        current = self._require_task(task_id)
        check_stage_in_project(current, stage_id, self._stages_by_id)
        if current.stage_id == stage_id:
            return _done()
        return self._update(current, {"stage_id": stage_id}, "task.moved")

    def _commit_stage(self, task: Task, stage_id: str) -> Future:
        return self._update(task, {"stage_id": stage_id}, "task.moved")

    # ------------------------------------------------------------------
    # Dependency management
    # ------------------------------------------------------------------

    def add_dependency(self, task_id: str, depends_on_id: str) -> Future:
        """Make *task_id* wait on *depends_on_id*.

        Raises :class:`SelfDependencyError` for a self edge and, when the
        cycle policy is ``reject``, :class:`DependencyCycleError`.
        """
        current = self._require_task(task_id)
        if depends_on_id != task_id and self._graph.get(depends_on_id) is None:
            raise TaskValidationError(f"Task {depends_on_id} is not on the board of project {self.project_id}")
        if depends_on_id in current.dependent_task_ids:
            return _done()
        deps = current.dependent_task_ids + [depends_on_id]
        return self._update(current, {"dependent_task_ids": deps}, "task.dependency_added")

    def remove_dependency(self, task_id: str, depends_on_id: str) -> Future:
        current = self._require_task(task_id)
        if depends_on_id not in current.dependent_task_ids:
            return _done()
        deps = [d for d in current.dependent_task_ids if d != depends_on_id]
        return self._update(current, {"dependent_task_ids": deps}, "task.dependency_removed")

    def get_dependency_graph(self, task_id: Optional[str] = None) -> dict[str, list[str]]:
        """Return adjacency list: ``{task_id: [dependency ids]}``.

        If *task_id* is given, return only the subgraph reachable from it.
        """
        graph = self._graph.adjacency()
        if task_id is None:
            return graph
        visited: set[str] = set()
        queue: deque[str] = deque([task_id])
        sub: dict[str, list[str]] = {}
        while queue:
            nid = queue.popleft()
            if nid in visited:
                continue
            visited.add(nid)
            deps = graph.get(nid, [])
            sub[nid] = deps
            queue.extend(deps)
        return sub

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign_task(self, task_id: str, assignee_id: Optional[str] = None, team_id: Optional[str] = None) -> Future:
        current = self._require_task(task_id)
        party = party_from_fields(assignee_id, team_id)
        if party == current.responsible:
            return _done()
        return self._update(current, {"responsible": party}, "task.assigned")

    def reassign_many(
        self,
        task_ids: Iterable[str],
        assignee_id: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> list[Future]:
        """Reassign several tasks as independent sequential writes.

        Every write has its own outcome; a rejected one leaves the others in
        place.  Each task whose assignee changes gets its own notification.
        """
        party = party_from_fields(assignee_id, team_id)
        targets = [self._require_task(task_id) for task_id in task_ids]
        futures: list[Future] = []
        subjects: list[tuple[str, str, Optional[str]]] = []
        for current in targets:
            if current.responsible == party:
                futures.append(_done())
                continue
            futures.append(self._update(current, {"responsible": party}, "task.assigned", notify=False))
            subjects.append((current.id, current.name, current.responsible.user_id))
        sent = notify_bulk_reassignment(self.notifier, subjects, party.user_id, extra=self._notify_extra())
        logger.info(
            "Requested reassignment of {} tasks in project {} ({} notified)", len(subjects), self.project_id, sent
        )
        return futures

    # ------------------------------------------------------------------
    # Stages and board view
    # ------------------------------------------------------------------

    def create_stage(self, name: str, order: Optional[int] = None, description: Optional[str] = None) -> Future:
        if not name or not name.strip():
            raise TaskValidationError("Stage name must not be blank")
        if order is None:
            order = max((s.order for s in self._stages), default=0) + 1
        stage = Stage(project_id=self.project_id, name=name.strip(), order=order, description=description)
        fut = self._track(self.store.create_stage(self.project_id, stage), "create_stage", None)
        self._emit_event("stage.created", None, stage_id=stage.id, name=stage.name)
        return fut

    def create_default_stages(self) -> list[Future]:
        """Seed the configured default stages; no-op when the board has stages."""
        if self._stages:
            return []
        logger.info("Creating default stages for project {}", self.project_id)
        return [
            self.create_stage(s["name"], order=s["order"], description=s.get("description"))
            for s in self.default_stages
        ]

    def get_board(self) -> dict[str, Any]:
        """Return stages in column order, each with its annotated tasks."""
        columns: dict[str, list[dict[str, Any]]] = {s.id: [] for s in self._stages}
        unstaged: list[dict[str, Any]] = []
        for task in self._tasks:
            item = task.to_dict()
            item.update(self._graph.flags_for(task.id).to_dict())
            bucket = columns.get(task.stage_id) if task.stage_id else None
            (bucket if bucket is not None else unstaged).append(item)
        for items in list(columns.values()) + [unstaged]:
            items.sort(key=lambda d: (d.get("created_at") or "", d["id"]))
        return {
            "project_id": self.project_id,
            "stages": [{**s.to_dict(), "tasks": columns[s.id]} for s in self._stages],
            "unstaged": unstaged,
        }
