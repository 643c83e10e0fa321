# domain/models/engine_result.py
from dataclasses import dataclass
from typing import Generic, Optional, Tuple, TypeVar

from domain.models.approval_workflow import StageFullyApproved

T = TypeVar("T")

@dataclass(frozen=True)
class EngineError:
    """Recoverable business-rule violation returned to the caller"""
    code = "engine_error"
    message: str = ""

@dataclass(frozen=True)
class Forbidden(EngineError):
    code = "forbidden"

@dataclass(frozen=True)
class StageLocked(EngineError):
    code = "stage_locked"

@dataclass(frozen=True)
class NotPending(EngineError):
    code = "not_pending"

@dataclass(frozen=True)
class UnknownStage(EngineError):
    code = "unknown_stage"

@dataclass(frozen=True)
class DependencyBlocked(EngineError):
    code = "dependency_blocked"
    blocking_task_ids: Tuple[str, ...] = ()

@dataclass(frozen=True)
class Frozen(EngineError):
    code = "frozen"

@dataclass(frozen=True)
class SelfDependency(EngineError):
    code = "self_dependency"

@dataclass(frozen=True)
class UnknownDependency(EngineError):
    code = "unknown_dependency"
    missing_task_ids: Tuple[str, ...] = ()

@dataclass(frozen=True)
class DependencyCycle(EngineError):
    code = "dependency_cycle"
    cycle: Tuple[str, ...] = ()

@dataclass(frozen=True)
class ApprovalRequired(EngineError):
    code = "approval_required"

@dataclass(frozen=True)
class ChecklistIncomplete(EngineError):
    code = "checklist_incomplete"

@dataclass(frozen=True)
class NotEligible(EngineError):
    code = "not_eligible"

@dataclass(frozen=True)
class AlreadyApplied(EngineError):
    code = "already_applied"

@dataclass(frozen=True)
class EngineResult(Generic[T]):
    """Outcome of an engine decision: a new value or a typed error, plus at most one event"""
    value: Optional[T] = None
    error: Optional[EngineError] = None
    event: Optional[StageFullyApproved] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None,
                event: Optional[StageFullyApproved] = None) -> "EngineResult[T]":
        return cls(value=value, event=event)

    @classmethod
    def failure(cls, error: EngineError) -> "EngineResult[T]":
        return cls(error=error)
