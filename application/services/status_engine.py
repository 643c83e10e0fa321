# application/services/status_engine.py
from typing import Iterable, List, Sequence, Union
from datetime import date

from domain.models.task_state import Task, TaskStatus, StatusSource
from domain.models.financial_record import FinancialTransaction, TransactionStatus

Entity = Union[Task, FinancialTransaction]

# Task statuses the overdue sweep leaves alone
_OVERDUE_EXEMPT = frozenset({
    TaskStatus.DONE,
    TaskStatus.OVERDUE,
    TaskStatus.ABORTED,
    TaskStatus.ON_HOLD,
    TaskStatus.REVIEW,
})

def derive_status(task: Task) -> TaskStatus:
    """Canonical task status from freeze flag, approvals and checklist.

    Priority: frozen (unchanged) > all four approvals (DONE) > full checklist
    (REVIEW) > partial checklist or already started (IN_PROGRESS) > TODO.
    OVERDUE is kept until the checklist or approvals lift it, and a DONE or
    REVIEW task without a checklist rolls back to REVIEW when approvals are
    no longer complete.
    """
    if task.is_frozen:
        return task.status

    if task.is_fully_approved:
        return TaskStatus.DONE

    completed = sum(1 for s in task.subtasks if s.is_completed)

    if task.subtasks and completed == len(task.subtasks):
        return TaskStatus.REVIEW

    if completed > 0 or task.status == TaskStatus.IN_PROGRESS:
        return TaskStatus.IN_PROGRESS

    if task.status == TaskStatus.OVERDUE:
        return TaskStatus.OVERDUE

    if not task.subtasks and task.status in (TaskStatus.REVIEW, TaskStatus.DONE):
        return TaskStatus.REVIEW

    return TaskStatus.TODO

def rederive(task: Task) -> Task:
    """Return the task with its derived status applied"""
    status = derive_status(task)
    if status == task.status:
        return task
    return task.with_status(status, StatusSource.DERIVED)

def is_overdue(entity: Entity, today: date) -> bool:
    if isinstance(entity, Task):
        return (
            entity.due_date is not None
            and entity.due_date < today
            and entity.status not in _OVERDUE_EXEMPT
        )
    return entity.status == TransactionStatus.PENDING and entity.date < today

def promote_overdue(entity: Entity, today: date) -> Entity:
    """Idempotent time-based demotion to OVERDUE"""
    if not is_overdue(entity, today):
        return entity
    if isinstance(entity, Task):
        return entity.with_status(TaskStatus.OVERDUE, StatusSource.DERIVED)
    return entity.with_status(TransactionStatus.OVERDUE)

def sweep_overdue(entities: Iterable[Entity], today: date) -> List[str]:
    """Ids of tasks and transactions that need promotion to OVERDUE"""
    return [e.id for e in entities if is_overdue(e, today)]

def task_progress(task: Task) -> int:
    if task.progress is not None:
        return min(max(task.progress, 0), 100)

    if task.subtasks:
        completed = sum(1 for s in task.subtasks if s.is_completed)
        return round(completed / len(task.subtasks) * 100)

    if task.status in (TaskStatus.DONE, TaskStatus.REVIEW):
        return 100
    if task.status == TaskStatus.IN_PROGRESS:
        return 50
    return 0

def project_progress(tasks: Sequence[Task]) -> int:
    if not tasks:
        return 0
    return round(sum(task_progress(t) for t in tasks) / len(tasks))
