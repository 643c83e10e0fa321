# application/services/dependency_resolver.py
from typing import Dict, Iterable, List, Optional, Sequence

from domain.models.task_state import Task, TaskStatus
from domain.models.engine_result import (
    EngineResult,
    SelfDependency,
    UnknownDependency,
    DependencyCycle
)

def blocking_tasks(task: Task, all_tasks: Sequence[Task]) -> List[Task]:
    """Direct dependencies of `task` that are not DONE, in `all_tasks` order"""
    if not task.dependencies:
        return []
    return [
        t for t in all_tasks
        if t.id in task.dependencies and t.status != TaskStatus.DONE
    ]

def is_blocked(task: Task, all_tasks: Sequence[Task]) -> bool:
    """A task is blocked when frozen or when any direct dependency is not DONE.

    Only direct dependencies are inspected; dependency ids with no matching
    task are ignored.
    """
    if task.status == TaskStatus.DONE:
        return False
    if task.is_frozen:
        return True
    return bool(blocking_tasks(task, all_tasks))

def find_dependency_cycle(task_id: str, dependencies: Iterable[str],
                          all_tasks: Sequence[Task]) -> Optional[List[str]]:
    """Return the path of a cycle through `task_id` if `dependencies` would create one"""
    graph: Dict[str, Iterable[str]] = {t.id: t.dependencies for t in all_tasks}
    graph[task_id] = frozenset(dependencies)

    visited = set()
    path: List[str] = [task_id]

    def visit(node: str) -> bool:
        for dep in sorted(graph.get(node, ())):
            if dep == task_id:
                path.append(dep)
                return True
            if dep in visited or dep not in graph:
                continue
            visited.add(dep)
            path.append(dep)
            if visit(dep):
                return True
            path.pop()
        return False

    if visit(task_id):
        return path
    return None

def validate_dependencies(task: Task, dependencies: Iterable[str],
                          all_tasks: Sequence[Task]) -> EngineResult[Task]:
    """Validate a proposed dependency set and return the task carrying it"""
    proposed = frozenset(dependencies)

    if task.id in proposed:
        return EngineResult.failure(SelfDependency(
            message=f"Task {task.id} cannot depend on itself"
        ))

    known_ids = {t.id for t in all_tasks}
    missing = tuple(sorted(proposed - known_ids))
    if missing:
        return EngineResult.failure(UnknownDependency(
            message=f"Unknown dependency ids: {', '.join(missing)}",
            missing_task_ids=missing
        ))

    cycle = find_dependency_cycle(task.id, proposed, all_tasks)
    if cycle:
        return EngineResult.failure(DependencyCycle(
            message=f"Dependency cycle: {' -> '.join(cycle)}",
            cycle=tuple(cycle)
        ))

    return EngineResult.success(task.with_dependencies(proposed))
