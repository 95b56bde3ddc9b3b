"""Drag-and-drop stage transitions.

A drag gesture is ``begin`` → any number of ``hover`` → ``end`` (or
``cancel``).  The controller turns it into at most one stage update:

    IDLE --begin--> DRAGGING --end(target)--> COMMITTING --write done--> IDLE
                        |  \\--end(no target)--> IDLE
                        \\--cancel--> IDLE

Hovering is a pure preview and never writes.  Locked tasks cannot enter
DRAGGING.  A refused write returns the controller to IDLE and is handed to
the error callback; local state is not rolled back because the next store
snapshot is authoritative.
"""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Optional, Protocol, Union

from loguru import logger

from .errors import StageProjectMismatchError, TaskLockedError, TransitionError
from .model import Stage, Task


class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTING = "committing"


class BoardView(Protocol):
    """What the controller needs to know about the current board snapshot."""

    project_id: str

    def get_task(self, task_id: str) -> Optional[Task]: ...

    def is_locked(self, task_id: str) -> bool: ...

    def blocking_tasks(self, task_id: str) -> list[str]: ...

    @property
    def stages_by_id(self) -> Mapping[str, Stage]: ...


CommitFn = Callable[[Task, str], Future]
ErrorFn = Callable[[BaseException], None]


@dataclass(frozen=True)
class StageMove:
    task_id: str
    from_stage_id: Optional[str]
    to_stage_id: str


class StageTransitionController:
    """One-move-at-a-time state machine behind the board's drag and drop.

    Parameters
    ----------
    view:
        Live board view used to resolve tasks, lock state and stages.
    commit:
        Issues the single ``stage_id`` update and returns its future.
    on_error:
        Receives the rejection when a commit fails.
    """

    def __init__(self, view: BoardView, commit: CommitFn, on_error: Optional[ErrorFn] = None) -> None:
        self._view = view
        self._commit = commit
        self._on_error = on_error
        self._state = DragState.IDLE
        self._active: Optional[Task] = None
        self._target: Optional[str] = None
        self._in_flight: Optional[StageMove] = None
        self.last_move: Optional[StageMove] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> DragState:
        return self._state

    @property
    def active_task_id(self) -> Optional[str]:
        if self._active is not None:
            return self._active.id
        return self._in_flight.task_id if self._in_flight else None

    @property
    def pending_stage_id(self) -> Optional[str]:
        return self._target

    # ------------------------------------------------------------------
    # Gesture
    # ------------------------------------------------------------------

    def begin(self, task: Union[Task, str]) -> None:
        """Start dragging *task*.

        Raises :class:`TaskLockedError` when the task is locked and
        :class:`TransitionError` when another move is still active.
        """
        task_id = task if isinstance(task, str) else task.id
        if self._state != DragState.IDLE:
            raise TransitionError(
                f"Cannot start dragging {task_id}: controller is {self._state.value} "
                f"with task {self.active_task_id}"
            )
        current = self._view.get_task(task_id)
        if current is None:
            raise TransitionError(f"Task {task_id} is not on the board of project {self._view.project_id}")
        if self._view.is_locked(task_id):
            raise TaskLockedError(task_id, self._view.blocking_tasks(task_id))
        self._active = current
        self._target = None
        self._state = DragState.DRAGGING
        logger.debug("Drag started for task {} from stage {}", task_id, current.stage_id)

    def hover(self, target: Union[Stage, str, None]) -> bool:
        """Preview dropping the active task on *target*.

        Returns True when a commit is now pending.  ``None`` or an id that is
        not a stage of this board means "outside any stage" and clears the
        pending target.  A :class:`Stage` from another project raises
        :class:`StageProjectMismatchError` and also clears it.
        """
        if self._state != DragState.DRAGGING or self._active is None:
            return False
        task = self._active
        stage_id: Optional[str]
        if isinstance(target, Stage):
            if target.project_id != task.project_id:
                self._target = None
                raise StageProjectMismatchError(task.id, target.id, task.project_id, target.project_id)
            stage_id = target.id
        else:
            stage_id = target

        if stage_id is None or stage_id not in self._view.stages_by_id or stage_id == task.stage_id:
            self._target = None
            return False
        self._target = stage_id
        return True

    def cancel(self) -> None:
        """Abandon the gesture without writing."""
        if self._state != DragState.DRAGGING:
            return
        logger.debug("Drag cancelled for task {}", self.active_task_id)
        self._reset()

    def end(self) -> Optional[Future]:
        """Finish the gesture.

        Issues exactly one stage update when a valid, different stage was
        hovered last and returns its future; otherwise returns ``None``.
        Calling ``end`` with no active drag is a no-op.
        """
        if self._state != DragState.DRAGGING or self._active is None:
            return None
        task_id = self._active.id
        target = self._target
        self._reset()

        # Re-resolve: the snapshot may have changed during the gesture.
        current = self._view.get_task(task_id)
        if target is None or current is None or current.stage_id == target:
            return None
        if target not in self._view.stages_by_id:
            return None

        move = StageMove(task_id=task_id, from_stage_id=current.stage_id, to_stage_id=target)
        self._state = DragState.COMMITTING
        self._in_flight = move
        self.last_move = move
        logger.debug("Committing move of task {}: {} -> {}", task_id, move.from_stage_id, target)
        try:
            fut = self._commit(current, target)
        except Exception:
            self._in_flight = None
            self._state = DragState.IDLE
            raise
        fut.add_done_callback(self._on_commit_done)
        return fut

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        self._active = None
        self._target = None
        self._state = DragState.IDLE

    def _on_commit_done(self, fut: Future) -> None:
        move = self._in_flight
        self._in_flight = None
        self._state = DragState.IDLE
        exc = fut.exception()
        if exc is None:
            return
        logger.warning("Stage move of task {} was rejected: {}", move.task_id if move else "?", exc)
        if self._on_error is not None:
            self._on_error(exc)
