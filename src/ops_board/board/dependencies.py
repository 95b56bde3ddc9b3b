"""Dependency read-model for a project's task set.

:func:`compute_flags` derives, for every task, whether it is locked (some
prerequisite is still open) and whether other tasks depend on it.  The
result is a pure function of the task list passed in and is recomputed on
every snapshot; nothing here is persisted.

Cycles are not rejected by the derivation: two open tasks that wait on each
other simply stay locked.  :func:`find_cycles` and :func:`would_cycle` exist
for callers that want to report or refuse them at edit time.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from loguru import logger

from ..constants import MISSING_DEPENDENCY_LOCKED, MISSING_DEPENDENCY_SATISFIED
from .model import Task


@dataclass(frozen=True)
class TaskFlags:
    is_locked: bool = False
    has_dependents: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {"is_locked": self.is_locked, "has_dependents": self.has_dependents}


def _index(tasks: Iterable[Task]) -> dict[str, Task]:
    return {t.id: t for t in tasks}


def _dependency_open(
    dep_id: str,
    by_id: Mapping[str, Task],
    missing_dependency: str,
) -> bool:
    dep = by_id.get(dep_id)
    if dep is None:
        # Dangling reference (deleted task): fail locked unless configured otherwise.
        return missing_dependency != MISSING_DEPENDENCY_SATISFIED
    return not dep.is_completed


def compute_flags(
    tasks: Iterable[Task],
    *,
    missing_dependency: str = MISSING_DEPENDENCY_LOCKED,
) -> dict[str, TaskFlags]:
    """Return ``{task_id: TaskFlags}`` for every task in *tasks*.

    Runs in O(n·d): one pass builds the id index, one pass resolves each
    task's dependencies, one pass marks referenced ids as having dependents.
    """
    task_list = list(tasks)
    by_id = _index(task_list)

    referenced: set[str] = set()
    for task in task_list:
        referenced.update(task.dependent_task_ids)

    flags: dict[str, TaskFlags] = {}
    for task in task_list:
        locked = not task.is_completed and any(
            _dependency_open(dep_id, by_id, missing_dependency) for dep_id in task.dependent_task_ids
        )
        flags[task.id] = TaskFlags(is_locked=locked, has_dependents=task.id in referenced)
    return flags


class DependencyGraph:
    """Dependency view over one snapshot of a project's tasks.

    Parameters
    ----------
    tasks:
        The full task set of a single project.
    missing_dependency:
        ``"locked"`` (default) treats ids that resolve to no task as open
        prerequisites; ``"satisfied"`` ignores them.
    """

    def __init__(self, tasks: Iterable[Task], *, missing_dependency: str = MISSING_DEPENDENCY_LOCKED) -> None:
        self._tasks = list(tasks)
        self._by_id = _index(self._tasks)
        self._missing_dependency = missing_dependency
        self._flags = compute_flags(self._tasks, missing_dependency=missing_dependency)

    @property
    def flags(self) -> dict[str, TaskFlags]:
        return dict(self._flags)

    def get(self, task_id: str) -> Optional[Task]:
        return self._by_id.get(task_id)

    def flags_for(self, task_id: str) -> TaskFlags:
        return self._flags.get(task_id, TaskFlags())

    def is_locked(self, task_id: str) -> bool:
        return self.flags_for(task_id).is_locked

    def has_dependents(self, task_id: str) -> bool:
        return self.flags_for(task_id).has_dependents

    def blocking_tasks(self, task_id: str) -> list[str]:
        """Ids among the task's dependencies that are still open (or missing)."""
        task = self._by_id.get(task_id)
        if task is None or task.is_completed:
            return []
        return [
            dep_id
            for dep_id in task.dependent_task_ids
            if _dependency_open(dep_id, self._by_id, self._missing_dependency)
        ]

    def dependents_of(self, task_id: str) -> list[str]:
        return [t.id for t in self._tasks if task_id in t.dependent_task_ids]

    def adjacency(self) -> dict[str, list[str]]:
        """Return adjacency list: ``{task_id: [dependency ids]}``."""
        return {t.id: list(t.dependent_task_ids) for t in self._tasks}

    def find_cycles(self) -> list[list[str]]:
        return find_cycles(self._tasks)

    def would_cycle(self, task_id: str, depends_on_id: str) -> bool:
        return would_cycle(self._by_id, task_id, depends_on_id)


def would_cycle(by_id: Mapping[str, Task], task_id: str, new_dep_id: str) -> bool:
    """Return True if adding ``task_id -> new_dep_id`` creates a cycle.

    We check: can we reach task_id starting from new_dep_id's dependencies?
    If so, adding the edge would close a loop.
    """
    visited: set[str] = set()
    queue: deque[str] = deque([new_dep_id])
    while queue:
        current = queue.popleft()
        if current == task_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        node = by_id.get(current)
        if node:
            queue.extend(node.dependent_task_ids)
    return False


def find_cycles(tasks: Iterable[Task]) -> list[list[str]]:
    """Report dependency cycles (each as a list of task ids), iteratively.

    Only edges between tasks present in *tasks* are followed.
    """
    by_id = _index(tasks)
    white, grey, black = 0, 1, 2
    color: dict[str, int] = {tid: white for tid in by_id}
    cycles: list[list[str]] = []

    for root in by_id:
        if color[root] != white:
            continue
        path: list[str] = []
        stack: list[tuple[str, Iterable[str]]] = [(root, iter(by_id[root].dependent_task_ids))]
        color[root] = grey
        path.append(root)
        while stack:
            node, edges = stack[-1]
            advanced = False
            for dep_id in edges:
                if dep_id not in by_id:
                    continue
                if color[dep_id] == grey:
                    cycles.append(path[path.index(dep_id):])
                elif color[dep_id] == white:
                    color[dep_id] = grey
                    path.append(dep_id)
                    stack.append((dep_id, iter(by_id[dep_id].dependent_task_ids)))
                    advanced = True
                    break
            if not advanced:
                color[node] = black
                path.pop()
                stack.pop()

    if cycles:
        logger.warning("Dependency cycle detected among tasks: {}", cycles)
    return cycles
