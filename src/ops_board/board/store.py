"""Task store adapters.

:class:`TaskStoreAdapter` is the boundary between the board engine and the
document store that owns tasks and stages.  Its contract:

* ``subscribe_tasks`` / ``subscribe_stages`` push the full current collection
  of a project on every change and deliver a terminal error (never a raised
  exception) when reading is not permitted.
* Writes are fire-and-forget from the caller's point of view: each returns a
  :class:`concurrent.futures.Future` that resolves once the store accepted
  or refused the write.  A refusal is a :class:`StoreRejection` set on the
  future, and so is any other failure (an unwritable state file, say);
  nothing is raised synchronously.

Two adapters are bundled: :class:`InMemoryTaskStore` and
:class:`FileTaskStore`, which persists to YAML files under the state
directory with an exclusive file lock.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from ..constants import LOCK_FILE, STAGES_FILE, TASKS_FILE
from ..io_utils import FileLock, _atomic_write_yaml, _load_data_with_error
from .errors import REASON_NOT_FOUND, REASON_PERMISSION_DENIED, StateFileError, StoreRejection
from .events import ErrorCallback, SnapshotStream, Subscription
from .model import Stage, Task

# (operation, project_id, task_id) -> allowed?
Authorizer = Callable[[str, str, Optional[str]], bool]

OP_READ = "read"
OP_CREATE = "create_task"
OP_UPDATE = "update_task"
OP_DELETE = "delete_task"
OP_CREATE_STAGE = "create_stage"

COLLECTION_TASKS = "tasks"
COLLECTION_STAGES = "stages"


class TaskStoreAdapter(ABC):
    """Real-time document collection holding a project's tasks and stages."""

    @abstractmethod
    def subscribe_tasks(
        self,
        project_id: str,
        on_next: Callable[[list[Task]], None],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        raise NotImplementedError

    @abstractmethod
    def subscribe_stages(
        self,
        project_id: str,
        on_next: Callable[[list[Stage]], None],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        raise NotImplementedError

    @abstractmethod
    def create_task(self, project_id: str, task: Task) -> Future:
        """Store a new task; the future resolves to its id."""
        raise NotImplementedError

    @abstractmethod
    def update_task(self, project_id: str, task_id: str, changes: dict[str, Any]) -> Future:
        raise NotImplementedError

    @abstractmethod
    def delete_task(self, project_id: str, task_id: str) -> Future:
        raise NotImplementedError

    @abstractmethod
    def create_stage(self, project_id: str, stage: Stage) -> Future:
        """Store a new stage; the future resolves to its id."""
        raise NotImplementedError


class InMemoryTaskStore(TaskStoreAdapter):
    """Dict-backed adapter with the same push semantics as the remote store.

    Parameters
    ----------
    authorize:
        Optional ``(operation, project_id, task_id) -> bool`` hook; a False
        answer turns the request into a ``permission_denied`` rejection.
    autoflush:
        When False, writes are queued and only applied (and their futures
        resolved) on :meth:`flush`.  Useful to observe in-flight writes.
    """

    def __init__(self, *, authorize: Optional[Authorizer] = None, autoflush: bool = True) -> None:
        self._tasks: dict[str, dict[str, Task]] = defaultdict(dict)
        self._stages: dict[str, dict[str, Stage]] = defaultdict(dict)
        self._task_streams: dict[str, SnapshotStream[list[Task]]] = {}
        self._stage_streams: dict[str, SnapshotStream[list[Stage]]] = {}
        self._authorize = authorize
        self.autoflush = autoflush
        self._pending: list[tuple[Callable[[], Any], Future]] = []
        self.write_log: list[tuple[str, str, Optional[str], dict[str, Any]]] = []

    # -- reads ---------------------------------------------------------------

    def tasks(self, project_id: str) -> list[Task]:
        return [t.copy() for t in self._tasks[project_id].values()]

    def stages(self, project_id: str) -> list[Stage]:
        return sorted(
            (Stage.from_dict(s.to_dict()) for s in self._stages[project_id].values()),
            key=lambda s: s.order,
        )

    def _allowed(self, operation: str, project_id: str, task_id: Optional[str] = None) -> bool:
        if self._authorize is None:
            return True
        return bool(self._authorize(operation, project_id, task_id))

    def _task_stream(self, project_id: str) -> SnapshotStream[list[Task]]:
        stream = self._task_streams.get(project_id)
        if stream is None:
            stream = SnapshotStream(f"tasks:{project_id}")
            self._task_streams[project_id] = stream
            if self._allowed(OP_READ, project_id):
                stream.publish(self.tasks(project_id))
        return stream

    def _stage_stream(self, project_id: str) -> SnapshotStream[list[Stage]]:
        stream = self._stage_streams.get(project_id)
        if stream is None:
            stream = SnapshotStream(f"stages:{project_id}")
            self._stage_streams[project_id] = stream
            if self._allowed(OP_READ, project_id):
                stream.publish(self.stages(project_id))
        return stream

    def subscribe_tasks(
        self,
        project_id: str,
        on_next: Callable[[list[Task]], None],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        stream = self._task_stream(project_id)
        if not stream.closed and not self._allowed(OP_READ, project_id):
            stream.fail(StoreRejection(REASON_PERMISSION_DENIED, operation=OP_READ, project_id=project_id))
        return stream.subscribe(on_next, on_error)

    def subscribe_stages(
        self,
        project_id: str,
        on_next: Callable[[list[Stage]], None],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        stream = self._stage_stream(project_id)
        if not stream.closed and not self._allowed(OP_READ, project_id):
            stream.fail(StoreRejection(REASON_PERMISSION_DENIED, operation=OP_READ, project_id=project_id))
        return stream.subscribe(on_next, on_error)

    def _push_tasks(self, project_id: str) -> None:
        stream = self._task_streams.get(project_id)
        if stream is not None and not stream.closed:
            stream.publish(self.tasks(project_id))

    def _push_stages(self, project_id: str) -> None:
        stream = self._stage_streams.get(project_id)
        if stream is not None and not stream.closed:
            stream.publish(self.stages(project_id))

    # -- write pipeline ------------------------------------------------------

    def _submit(self, project_id: str, collection: str, apply: Callable[[], Any]) -> Future:
        push = self._push_tasks if collection == COLLECTION_TASKS else self._push_stages

        def run() -> Any:
            result = self._transaction(collection, apply)
            push(project_id)
            return result

        if self.autoflush:
            return self._settle(run)
        fut: Future = Future()
        self._pending.append((run, fut))
        return fut

    def _settle(self, run: Callable[[], Any], fut: Optional[Future] = None) -> Future:
        fut = fut if fut is not None else Future()
        try:
            fut.set_result(run())
        except StoreRejection as exc:
            fut.set_exception(exc)
        except Exception as exc:
            logger.error("Task store write failed: {}", exc)
            fut.set_exception(exc)
        return fut

    def flush(self) -> int:
        """Apply queued writes in issue order; returns how many were processed."""
        pending, self._pending = self._pending, []
        for run, fut in pending:
            self._settle(run, fut)
        return len(pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _transaction(self, collection: str, apply: Callable[[], Any]) -> Any:
        """Apply one write to the collections; durable subclasses persist it here."""
        return apply()

    # -- writes --------------------------------------------------------------

    def create_task(self, project_id: str, task: Task) -> Future:
        task = task.copy()

        def apply() -> str:
            if not self._allowed(OP_CREATE, project_id, task.id):
                raise StoreRejection(REASON_PERMISSION_DENIED, operation=OP_CREATE, task_id=task.id, project_id=project_id)
            stored = task.copy()
            stored.project_id = project_id
            self._tasks[project_id][stored.id] = stored
            self.write_log.append((OP_CREATE, project_id, stored.id, stored.to_dict()))
            return stored.id

        return self._submit(project_id, COLLECTION_TASKS, apply)

    def update_task(self, project_id: str, task_id: str, changes: dict[str, Any]) -> Future:
        changes = dict(changes)

        def apply() -> None:
            if not self._allowed(OP_UPDATE, project_id, task_id):
                raise StoreRejection(REASON_PERMISSION_DENIED, operation=OP_UPDATE, task_id=task_id, project_id=project_id)
            task = self._tasks[project_id].get(task_id)
            if task is None:
                raise StoreRejection(REASON_NOT_FOUND, operation=OP_UPDATE, task_id=task_id, project_id=project_id)
            task.apply_patch(changes)
            self.write_log.append((OP_UPDATE, project_id, task_id, changes))

        return self._submit(project_id, COLLECTION_TASKS, apply)

    def delete_task(self, project_id: str, task_id: str) -> Future:
        def apply() -> None:
            if not self._allowed(OP_DELETE, project_id, task_id):
                raise StoreRejection(REASON_PERMISSION_DENIED, operation=OP_DELETE, task_id=task_id, project_id=project_id)
            if self._tasks[project_id].pop(task_id, None) is None:
                raise StoreRejection(REASON_NOT_FOUND, operation=OP_DELETE, task_id=task_id, project_id=project_id)
            self.write_log.append((OP_DELETE, project_id, task_id, {}))

        return self._submit(project_id, COLLECTION_TASKS, apply)

    def create_stage(self, project_id: str, stage: Stage) -> Future:
        stage = Stage.from_dict(stage.to_dict())

        def apply() -> str:
            if not self._allowed(OP_CREATE_STAGE, project_id, None):
                raise StoreRejection(REASON_PERMISSION_DENIED, operation=OP_CREATE_STAGE, project_id=project_id)
            stored = Stage.from_dict(stage.to_dict())
            stored.project_id = project_id
            self._stages[project_id][stored.id] = stored
            self.write_log.append((OP_CREATE_STAGE, project_id, stored.id, stored.to_dict()))
            return stored.id

        return self._submit(project_id, COLLECTION_STAGES, apply)


class FileTaskStore(InMemoryTaskStore):
    """YAML-backed adapter storing every project under one state directory.

    Every write runs as a transaction under the file lock: the files are
    re-read, the single change is applied and the touched file is saved.
    Other stores on the same directory (in this or another process) keep
    their projects.  A write that cannot be saved leaves memory as it was
    and fails its future.

    Parameters
    ----------
    state_dir:
        Path to the ``.ops_board/`` directory.
    """

    def __init__(self, state_dir: Path, *, authorize: Optional[Authorizer] = None) -> None:
        super().__init__(authorize=authorize, autoflush=True)
        self._state_dir = Path(state_dir)
        self._tasks_path = self._state_dir / TASKS_FILE
        self._stages_path = self._state_dir / STAGES_FILE
        self._lock = FileLock(self._state_dir / LOCK_FILE)
        self._load()

    def _read(self, path: Path, key: str, strict: bool) -> Optional[list[dict[str, Any]]]:
        raw, err = _load_data_with_error(path, {})
        if err:
            if strict:
                raise StateFileError(f"Refusing to overwrite unreadable state file {err}")
            logger.warning("Ignoring unreadable state file: {}", err)
            return None
        return [item for item in list(raw.get(key) or []) if isinstance(item, dict)]

    def _reload(self, *, strict: bool) -> None:
        tasks_raw = self._read(self._tasks_path, COLLECTION_TASKS, strict)
        stages_raw = self._read(self._stages_path, COLLECTION_STAGES, strict)
        if tasks_raw is not None:
            tasks: dict[str, dict[str, Task]] = defaultdict(dict)
            for raw in tasks_raw:
                task = Task.from_dict(raw)
                tasks[task.project_id][task.id] = task
            self._tasks = tasks
        if stages_raw is not None:
            stages: dict[str, dict[str, Stage]] = defaultdict(dict)
            for raw in stages_raw:
                stage = Stage.from_dict(raw)
                stages[stage.project_id][stage.id] = stage
            self._stages = stages

    def _load(self) -> None:
        with self._lock:
            self._reload(strict=False)
        logger.debug(
            "FileTaskStore loaded {} tasks and {} stages from {}",
            sum(len(v) for v in self._tasks.values()),
            sum(len(v) for v in self._stages.values()),
            self._state_dir,
        )

    def _save(self, collection: str) -> None:
        if collection == COLLECTION_TASKS:
            tasks = [t.to_dict() for project in self._tasks.values() for t in project.values()]
            _atomic_write_yaml(self._tasks_path, {"version": 1, "tasks": tasks})
        else:
            stages = [s.to_dict() for project in self._stages.values() for s in project.values()]
            _atomic_write_yaml(self._stages_path, {"version": 1, "stages": stages})

    def _transaction(self, collection: str, apply: Callable[[], Any]) -> Any:
        with self._lock:
            self._reload(strict=True)
            tasks = {pid: {tid: t.copy() for tid, t in items.items()} for pid, items in self._tasks.items()}
            stages = {
                pid: {sid: Stage.from_dict(s.to_dict()) for sid, s in items.items()}
                for pid, items in self._stages.items()
            }
            logged = len(self.write_log)
            try:
                result = apply()
                self._save(collection)
            except Exception:
                self._tasks = defaultdict(dict, tasks)
                self._stages = defaultdict(dict, stages)
                del self.write_log[logged:]
                raise
            return result
