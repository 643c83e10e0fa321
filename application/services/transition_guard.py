# application/services/transition_guard.py
from typing import Sequence

from domain.models.approval_workflow import Actor
from domain.models.task_state import Task, TaskStatus, StatusSource, FROZEN_STATUSES
from domain.models.engine_result import (
    EngineResult,
    ApprovalRequired,
    ChecklistIncomplete,
    DependencyBlocked,
    Forbidden,
    Frozen,
    SelfDependency
)
from application.services.dependency_resolver import blocking_tasks
from shared.logging import log_transition_rejected

# Statuses that never need their dependencies finished
_UNGATED_STATUSES = frozenset({TaskStatus.TODO}) | FROZEN_STATUSES

def guard_transition(task: Task, requested_status: TaskStatus,
                     all_tasks: Sequence[Task], actor: Actor) -> EngineResult[StatusSource]:
    """Decide whether `actor` may move `task` to `requested_status`.

    On success the result value is the transition source: FORCED for admin
    overrides (freezing, or leaving a frozen state), DERIVED otherwise.
    """
    result = _check(task, requested_status, all_tasks, actor)
    if not result.ok:
        context = None
        if isinstance(result.error, DependencyBlocked):
            context = {"blocking_task_ids": list(result.error.blocking_task_ids)}
        log_transition_rejected(
            task_id=task.id,
            requested_status=requested_status.value,
            error_code=result.error.code,
            actor_id=actor.id,
            additional_context=context
        )
    return result

def _check(task: Task, requested_status: TaskStatus,
           all_tasks: Sequence[Task], actor: Actor) -> EngineResult[StatusSource]:
    if task.id in task.dependencies:
        return EngineResult.failure(SelfDependency(
            message=f"Task {task.id} lists itself as a dependency"
        ))

    if task.is_frozen and not actor.is_admin:
        return EngineResult.failure(Frozen(
            message=f"Task is {task.status.value}; only an admin can change it"
        ))

    if requested_status in FROZEN_STATUSES and not actor.is_admin:
        return EngineResult.failure(Forbidden(
            message=f"Only an admin can set a task to {requested_status.value}"
        ))

    if requested_status not in _UNGATED_STATUSES and not task.is_fully_approved:
        blockers = blocking_tasks(task, all_tasks)
        if blockers:
            return EngineResult.failure(DependencyBlocked(
                message="Waiting on: " + ", ".join(t.title for t in blockers),
                blocking_task_ids=tuple(t.id for t in blockers)
            ))

    if (requested_status == TaskStatus.REVIEW and task.subtasks
            and not task.is_fully_approved
            and not all(s.is_completed for s in task.subtasks)):
        return EngineResult.failure(ChecklistIncomplete(
            message="Every checklist item must be completed before review"
        ))

    if requested_status == TaskStatus.DONE and not task.is_fully_approved:
        return EngineResult.failure(ApprovalRequired(
            message="Start and completion must be approved by both admin and client"
        ))

    if requested_status in FROZEN_STATUSES or task.is_frozen:
        return EngineResult.success(StatusSource.FORCED)
    return EngineResult.success(StatusSource.DERIVED)

def apply_status_change(task: Task, requested_status: TaskStatus, source: StatusSource) -> Task:
    return task.with_status(requested_status, source)

def guard_task_edit(task: Task, actor: Actor) -> EngineResult[Task]:
    """Field edits: admins always, the assignee only while the task is not frozen"""
    if actor.is_admin:
        return EngineResult.success(task)
    if actor.id != task.assignee_id:
        return EngineResult.failure(Forbidden(
            message="Only the assignee or an admin can edit this task"
        ))
    if task.is_frozen:
        return EngineResult.failure(Frozen(
            message=f"Task is {task.status.value}; only an admin can change it"
        ))
    return EngineResult.success(task)
