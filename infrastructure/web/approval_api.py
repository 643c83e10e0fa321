# infrastructure/web/approval_api.py
import uuid
from dataclasses import asdict
from fastapi import APIRouter, HTTPException, Depends
from typing import Dict, Any, Optional, List
from datetime import date, datetime, timezone
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator

from application.orchestrators.approval_orchestrator import ApprovalOrchestrator, WorkflowOutcome
from domain.models.approval_workflow import (
    Actor,
    ApprovalDecisionModel,
    ApprovalMatrix,
    ApprovalMatrixModel,
    Role,
    StageName
)
from domain.models.task_state import SubTask, Task, TaskStatus
from domain.models.financial_record import (
    ADDITIONAL_BUDGET_CATEGORY,
    FinancialTransaction,
    Project,
    TransactionStatus,
    TransactionType
)
from domain.models.engine_result import (
    EngineError,
    AlreadyApplied,
    ApprovalRequired,
    ChecklistIncomplete,
    DependencyBlocked,
    DependencyCycle,
    Forbidden,
    Frozen,
    NotEligible,
    NotPending,
    SelfDependency,
    StageLocked,
    UnknownDependency,
    UnknownStage
)
from application.services.status_engine import task_progress
from infrastructure.storage.project_store import ConcurrentModificationError, EntityNotFoundError
from shared.logging import logger

router = APIRouter(prefix="/projects", tags=["approval-workflow"])

# Resolved through app.dependency_overrides in main
async def get_orchestrator() -> ApprovalOrchestrator:
    raise RuntimeError("ApprovalOrchestrator is not configured")

ERROR_STATUS_CODES = {
    Forbidden: 403,
    Frozen: 423,
    StageLocked: 409,
    NotPending: 409,
    DependencyBlocked: 409,
    ApprovalRequired: 409,
    ChecklistIncomplete: 409,
    AlreadyApplied: 409,
    UnknownStage: 422,
    SelfDependency: 422,
    UnknownDependency: 422,
    DependencyCycle: 422,
    NotEligible: 422,
}

class ActorModel(BaseModel):
    actor_id: str = Field(..., min_length=1)
    actor_role: Role

    @field_validator("actor_role", mode="before")
    @classmethod
    def parse_role(cls, value):
        return Role.parse(value)

    def to_actor(self) -> Actor:
        return Actor(id=self.actor_id, role=self.actor_role)

class StatusChangeModel(ActorModel):
    status: TaskStatus

class SubtaskToggleModel(ActorModel):
    is_completed: bool

class DependenciesModel(ActorModel):
    dependencies: List[str] = Field(default_factory=list)

class TransactionStatusModel(ActorModel):
    status: TransactionStatus

class OverdueSweepModel(BaseModel):
    today: Optional[date] = Field(None, description="Defaults to the server's current date")

class CreateProjectModel(ActorModel):
    name: str = Field(..., min_length=1)
    initial_budget: Decimal = Field(..., ge=0)

    def to_project(self, project_id: str) -> Project:
        return Project(
            id=project_id,
            name=self.name,
            initial_budget=self.initial_budget,
            budget=self.initial_budget
        )

class CreateTaskModel(ActorModel):
    title: str = Field(..., min_length=1)
    category: str = "General"
    assignee_id: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    dependencies: List[str] = Field(default_factory=list)
    subtasks: List[str] = Field(default_factory=list, description="Checklist item titles")

    def to_task(self, task_id: str) -> Task:
        return Task(
            id=task_id,
            title=self.title,
            category=self.category,
            assignee_id=self.assignee_id,
            start_date=self.start_date,
            due_date=self.due_date,
            dependencies=frozenset(self.dependencies),
            subtasks=tuple(SubTask(id=str(uuid.uuid4()), title=title) for title in self.subtasks)
        )

class CreateTransactionModel(ActorModel):
    type: TransactionType
    amount: Decimal = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    transaction_date: date
    description: str = ""
    vendor_id: Optional[str] = None

    def to_transaction(self, transaction_id: str) -> FinancialTransaction:
        """Additional budget income gets its approval stage; vendor expenses get a payment stage"""
        if self.type is TransactionType.INCOME and self.category == ADDITIONAL_BUDGET_CATEGORY:
            return FinancialTransaction.additional_budget(
                transaction_id, self.amount, self.transaction_date, self.description
            )

        approvals = ApprovalMatrix(stages={})
        if self.type is TransactionType.EXPENSE and self.vendor_id:
            approvals = ApprovalMatrix.pending(StageName.PAYMENT)

        return FinancialTransaction(
            id=transaction_id,
            type=self.type,
            amount=self.amount,
            category=self.category,
            date=self.transaction_date,
            description=self.description,
            vendor_id=self.vendor_id,
            approvals=approvals
        )

class ProjectResponse(BaseModel):
    project_id: str
    name: str
    initial_budget: Decimal
    budget: Decimal

class TaskResponse(BaseModel):
    task_id: str
    title: str
    status: str
    status_source: str
    dependencies: List[str]
    progress: int
    approvals: ApprovalMatrixModel
    version: int

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            task_id=task.id,
            title=task.title,
            status=task.status.value,
            status_source=task.status_source.value,
            dependencies=sorted(task.dependencies),
            progress=task_progress(task),
            approvals=ApprovalMatrixModel.from_matrix(task.approvals),
            version=task.version
        )

class TransactionResponse(BaseModel):
    transaction_id: str
    type: str
    amount: Decimal
    category: str
    status: str
    approvals: ApprovalMatrixModel
    budget_credited: bool = False
    version: int

    @classmethod
    def from_transaction(cls, transaction: FinancialTransaction,
                         budget_credited: bool = False) -> "TransactionResponse":
        return cls(
            transaction_id=transaction.id,
            type=transaction.type.value,
            amount=transaction.amount,
            category=transaction.category,
            status=transaction.status.value,
            approvals=ApprovalMatrixModel.from_matrix(transaction.approvals),
            budget_credited=budget_credited,
            version=transaction.version
        )

class BudgetSummaryResponse(BaseModel):
    project_id: str
    initial_budget: Decimal
    budget: Decimal
    total_additional_budget: Decimal
    received: Decimal
    pending_income: Decimal
    paid_out: Decimal
    pending_expenses: Decimal
    remaining: Decimal
    vendor_earnings: Dict[str, Dict[str, Any]] = {}

def raise_for_engine_error(error: EngineError):
    detail: Dict[str, Any] = {"code": error.code, "message": error.message}
    if isinstance(error, DependencyBlocked):
        detail["blocking_task_ids"] = list(error.blocking_task_ids)
    elif isinstance(error, DependencyCycle):
        detail["cycle"] = list(error.cycle)
    elif isinstance(error, UnknownDependency):
        detail["missing_task_ids"] = list(error.missing_task_ids)
    raise HTTPException(status_code=ERROR_STATUS_CODES.get(type(error), 400), detail=detail)

async def run_workflow(operation: str, action, **context) -> WorkflowOutcome:
    """Run an orchestrator call, mapping engine and storage errors to HTTP"""
    try:
        outcome = await action
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConcurrentModificationError as e:
        logger.warning("Stale write rejected", operation=operation, error=str(e), **context)
        raise HTTPException(status_code=409, detail={"code": "concurrent_modification", "message": str(e)})
    except Exception as e:
        logger.error(f"Failed to {operation}", error=str(e), **context)
        raise HTTPException(status_code=500, detail=f"Failed to {operation}: {str(e)}")

    if not outcome.success:
        raise_for_engine_error(outcome.error)
    return outcome

def _now() -> datetime:
    return datetime.now(timezone.utc)

@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(
    request: CreateProjectModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    project_id = str(uuid.uuid4())
    outcome = await run_workflow(
        "create project",
        orchestrator.create_project(request.to_project(project_id), request.to_actor()),
        project_id=project_id
    )
    project = outcome.entity
    return ProjectResponse(
        project_id=project.id,
        name=project.name,
        initial_budget=project.initial_budget,
        budget=project.budget
    )

@router.post("/{project_id}/tasks", response_model=TaskResponse, status_code=201)
async def add_task(
    project_id: str,
    request: CreateTaskModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    task_id = str(uuid.uuid4())
    outcome = await run_workflow(
        "add task",
        orchestrator.add_task(project_id, request.to_task(task_id), request.to_actor()),
        project_id=project_id, task_id=task_id
    )
    return TaskResponse.from_task(outcome.entity)

@router.post("/{project_id}/transactions", response_model=TransactionResponse, status_code=201)
async def add_transaction(
    project_id: str,
    request: CreateTransactionModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    transaction_id = str(uuid.uuid4())
    outcome = await run_workflow(
        "record transaction",
        orchestrator.add_transaction(project_id, request.to_transaction(transaction_id), request.to_actor()),
        project_id=project_id, transaction_id=transaction_id
    )
    return TransactionResponse.from_transaction(outcome.entity)

@router.post("/{project_id}/tasks/{task_id}/approvals", response_model=TaskResponse)
async def decide_task_approval(
    project_id: str,
    task_id: str,
    decision: ApprovalDecisionModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    """Approve, reject or revoke a start/completion approval on a task"""
    outcome = await run_workflow(
        "apply task approval",
        orchestrator.decide_task_approval(
            project_id, task_id, decision.stage, decision.party, decision.action,
            Actor(id=decision.actor_id, role=decision.actor_role), _now()
        ),
        project_id=project_id, task_id=task_id
    )
    return TaskResponse.from_task(outcome.entity)

@router.post("/{project_id}/tasks/{task_id}/status", response_model=TaskResponse)
async def change_task_status(
    project_id: str,
    task_id: str,
    request: StatusChangeModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    outcome = await run_workflow(
        "change task status",
        orchestrator.change_task_status(project_id, task_id, request.status, request.to_actor()),
        project_id=project_id, task_id=task_id
    )
    return TaskResponse.from_task(outcome.entity)

@router.post("/{project_id}/tasks/{task_id}/subtasks/{subtask_id}", response_model=TaskResponse)
async def toggle_subtask(
    project_id: str,
    task_id: str,
    subtask_id: str,
    request: SubtaskToggleModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    outcome = await run_workflow(
        "update subtask",
        orchestrator.toggle_subtask(project_id, task_id, subtask_id,
                                    request.is_completed, request.to_actor()),
        project_id=project_id, task_id=task_id
    )
    return TaskResponse.from_task(outcome.entity)

@router.put("/{project_id}/tasks/{task_id}/dependencies", response_model=TaskResponse)
async def update_dependencies(
    project_id: str,
    task_id: str,
    request: DependenciesModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    outcome = await run_workflow(
        "update dependencies",
        orchestrator.update_dependencies(project_id, task_id, request.dependencies, request.to_actor()),
        project_id=project_id, task_id=task_id
    )
    return TaskResponse.from_task(outcome.entity)

@router.get("/{project_id}/tasks/{task_id}/blocking")
async def get_blocking_tasks(
    project_id: str,
    task_id: str,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    """List the direct dependencies still holding a task back"""
    try:
        blockers = await orchestrator.get_blocking_tasks(project_id, task_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "task_id": task_id,
        "blocked": bool(blockers),
        "blocking_tasks": [
            {"task_id": t.id, "title": t.title, "status": t.status.value}
            for t in blockers
        ]
    }

@router.post("/{project_id}/transactions/{transaction_id}/approvals", response_model=TransactionResponse)
async def decide_transaction_approval(
    project_id: str,
    transaction_id: str,
    decision: ApprovalDecisionModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    """Approve, reject or revoke a payment or additional-budget approval"""
    outcome = await run_workflow(
        "apply transaction approval",
        orchestrator.decide_transaction_approval(
            project_id, transaction_id, decision.stage, decision.party, decision.action,
            Actor(id=decision.actor_id, role=decision.actor_role), _now()
        ),
        project_id=project_id, transaction_id=transaction_id
    )
    return TransactionResponse.from_transaction(outcome.entity, outcome.budget_credited)

@router.post("/{project_id}/transactions/{transaction_id}/status", response_model=TransactionResponse)
async def set_transaction_status(
    project_id: str,
    transaction_id: str,
    request: TransactionStatusModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    outcome = await run_workflow(
        "set transaction status",
        orchestrator.set_transaction_status(project_id, transaction_id, request.status, request.to_actor()),
        project_id=project_id, transaction_id=transaction_id
    )
    return TransactionResponse.from_transaction(outcome.entity)

@router.get("/{project_id}/budget", response_model=BudgetSummaryResponse)
async def get_budget_summary(
    project_id: str,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    try:
        summary = await orchestrator.get_budget_summary(project_id)
        earnings = await orchestrator.get_vendor_earnings(project_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return BudgetSummaryResponse(
        **asdict(summary),
        vendor_earnings={vendor_id: asdict(e) for vendor_id, e in earnings.items()}
    )

@router.get("/{project_id}/approvals/pending")
async def get_pending_approvals(
    project_id: str,
    actor_id: str,
    actor_role: str,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    """Approval cells waiting on the caller's party"""
    try:
        role = Role.parse(actor_role)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        pending = await orchestrator.get_pending_approvals(project_id, Actor(id=actor_id, role=role))
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "project_id": project_id,
        "pending": [
            {
                "entity_kind": p.entity_kind,
                "entity_id": p.entity_id,
                "label": p.label,
                "stage": p.stage.value
            }
            for p in pending
        ]
    }

@router.get("/{project_id}/progress")
async def get_progress(
    project_id: str,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    try:
        progress = await orchestrator.get_progress(project_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"project_id": project_id, "progress": progress}

@router.post("/{project_id}/overdue-sweep")
async def run_overdue_sweep(
    project_id: str,
    request: OverdueSweepModel,
    orchestrator: ApprovalOrchestrator = Depends(get_orchestrator)
):
    today = request.today or date.today()
    try:
        promoted = await orchestrator.run_overdue_sweep(project_id, today)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"project_id": project_id, "today": today.isoformat(), "promoted_ids": promoted}
