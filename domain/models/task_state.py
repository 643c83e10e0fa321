# domain/models/task_state.py
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Optional, Tuple
from datetime import date
from enum import Enum

from domain.models.approval_workflow import ApprovalMatrix, StageName

class TaskStatus(Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    OVERDUE = "overdue"
    ON_HOLD = "on_hold"
    ABORTED = "aborted"

FROZEN_STATUSES: FrozenSet[TaskStatus] = frozenset({TaskStatus.ON_HOLD, TaskStatus.ABORTED})

class StatusSource(Enum):
    DERIVED = "derived"
    FORCED = "forced"

@dataclass(frozen=True)
class SubTask:
    id: str
    title: str
    is_completed: bool = False

@dataclass(frozen=True)
class Task:
    """Immutable task snapshot; every change produces a new instance"""
    id: str
    title: str
    category: str = "General"
    assignee_id: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    status: TaskStatus = TaskStatus.TODO
    status_source: StatusSource = StatusSource.DERIVED
    dependencies: FrozenSet[str] = frozenset()
    subtasks: Tuple[SubTask, ...] = ()
    approvals: ApprovalMatrix = field(default_factory=ApprovalMatrix.for_task)
    progress: Optional[int] = None
    version: int = 0

    @property
    def is_frozen(self) -> bool:
        return self.status in FROZEN_STATUSES

    @property
    def is_fully_approved(self) -> bool:
        """All four cells (start/completion x admin/client) approved"""
        return all(
            self.approvals.is_stage_fully_approved(stage)
            for stage in (StageName.START, StageName.COMPLETION)
        )

    def with_status(self, status: TaskStatus, source: StatusSource = StatusSource.DERIVED) -> "Task":
        return replace(self, status=status, status_source=source)

    def with_approvals(self, approvals: ApprovalMatrix) -> "Task":
        return replace(self, approvals=approvals)

    def with_dependencies(self, dependencies) -> "Task":
        return replace(self, dependencies=frozenset(dependencies))

    def with_subtask_completed(self, subtask_id: str, is_completed: bool) -> "Task":
        subtasks = tuple(
            replace(s, is_completed=is_completed) if s.id == subtask_id else s
            for s in self.subtasks
        )
        return replace(self, subtasks=subtasks)
