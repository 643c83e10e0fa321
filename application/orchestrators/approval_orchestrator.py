# application/orchestrators/approval_orchestrator.py
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional
from datetime import date, datetime

from domain.models.approval_workflow import (
    Actor,
    ApprovalAction,
    Party,
    StageFullyApproved,
    StageName
)
from domain.models.task_state import Task, TaskStatus
from domain.models.financial_record import (
    BudgetSummary,
    FinancialTransaction,
    Project,
    TransactionStatus,
    VendorEarnings
)
from domain.models.engine_result import EngineError, Forbidden, Frozen
from application.services.approval_engine import PendingApproval, apply_approval, pending_approvals_for
from application.services.budget_reconciliation import (
    reconcile_budget,
    set_transaction_status,
    summarize_budget,
    vendor_earnings
)
from application.services.dependency_resolver import blocking_tasks, validate_dependencies
from application.services.status_engine import derive_status, project_progress, promote_overdue, rederive, sweep_overdue
from application.services.transition_guard import apply_status_change, guard_task_edit, guard_transition
from infrastructure.storage.project_store import (
    ConcurrentModificationError,
    EntityNotFoundError,
    ProjectStore
)
from shared.logging import logger, log_overdue_sweep

@dataclass(frozen=True)
class WorkflowOutcome:
    """Result of one persisted workflow action"""
    success: bool
    entity: Any = None
    error: Optional[EngineError] = None
    event: Optional[StageFullyApproved] = None
    budget_credited: bool = False

class ApprovalOrchestrator:
    """Read-modify-write caller around the pure approval engine.

    Every action re-reads the aggregate, runs the engine decision against that
    fresh state and writes with the version it read, so stale decisions fail
    with ConcurrentModificationError instead of being applied.
    """

    def __init__(self, store: ProjectStore):
        self.store = store

        # Effect run when a transaction stage becomes fully approved
        self.transaction_stage_effects = {
            StageName.ADDITIONAL_BUDGET: self._credit_additional_budget,
        }

    async def create_project(self, project: Project, actor: Actor) -> WorkflowOutcome:
        if not actor.is_admin:
            return WorkflowOutcome(success=False, error=Forbidden(
                message="Only an admin can create a project"
            ))

        await self.store.create_project(project)
        return WorkflowOutcome(success=True, entity=project)

    async def add_task(self, project_id: str, task: Task, actor: Actor) -> WorkflowOutcome:
        """Add a task to a project; its dependencies must name existing tasks"""
        if not actor.is_admin:
            return WorkflowOutcome(success=False, error=Forbidden(
                message="Only an admin can add tasks"
            ))

        project = await self._load(project_id)
        result = validate_dependencies(task, task.dependencies, project.tasks + (task,))
        if not result.ok:
            return WorkflowOutcome(success=False, error=result.error)

        saved = await self.store.add_task(project_id, result.value)
        return WorkflowOutcome(success=True, entity=saved)

    async def add_transaction(self, project_id: str, transaction: FinancialTransaction,
                              actor: Actor) -> WorkflowOutcome:
        if not actor.is_admin:
            return WorkflowOutcome(success=False, error=Forbidden(
                message="Only an admin can record transactions"
            ))

        await self._load(project_id)
        saved = await self.store.add_transaction(project_id, transaction)
        return WorkflowOutcome(success=True, entity=saved)

    async def decide_task_approval(self, project_id: str, task_id: str, stage: StageName,
                                   party: Party, action: ApprovalAction, actor: Actor,
                                   at: datetime) -> WorkflowOutcome:
        """Approve, reject or revoke a task cell, then re-derive the task status"""
        project = await self._load(project_id)
        task = self._task(project, task_id)

        if task.is_frozen and not actor.is_admin:
            return WorkflowOutcome(success=False, error=Frozen(
                message=f"Task is {task.status.value}; only an admin can change it"
            ))

        result = apply_approval(task.approvals, stage, party, action, actor, at, entity_id=task.id)
        if not result.ok:
            return WorkflowOutcome(success=False, error=result.error)

        updated = rederive(task.with_approvals(result.value))
        saved = await self.store.save_task(project_id, updated)

        if saved.status != task.status:
            logger.info("Task status derived from approvals",
                       project_id=project_id,
                       task_id=task_id,
                       from_status=task.status.value,
                       to_status=saved.status.value)

        return WorkflowOutcome(success=True, entity=saved, event=result.event)

    async def change_task_status(self, project_id: str, task_id: str,
                                 requested_status: TaskStatus, actor: Actor) -> WorkflowOutcome:
        project = await self._load(project_id)
        task = self._task(project, task_id)

        edit = guard_task_edit(task, actor)
        if not edit.ok:
            return WorkflowOutcome(success=False, error=edit.error)

        result = guard_transition(task, requested_status, project.tasks, actor)
        if not result.ok:
            return WorkflowOutcome(success=False, error=result.error)

        saved = await self.store.save_task(project_id, apply_status_change(task, requested_status, result.value))
        return WorkflowOutcome(success=True, entity=saved)

    async def toggle_subtask(self, project_id: str, task_id: str, subtask_id: str,
                             is_completed: bool, actor: Actor) -> WorkflowOutcome:
        """Check or uncheck a checklist item; the derived status must pass the guard"""
        project = await self._load(project_id)
        task = self._task(project, task_id)

        edit = guard_task_edit(task, actor)
        if not edit.ok:
            return WorkflowOutcome(success=False, error=edit.error)

        if not any(s.id == subtask_id for s in task.subtasks):
            raise EntityNotFoundError("subtask", subtask_id)

        updated = task.with_subtask_completed(subtask_id, is_completed)
        derived = derive_status(updated)
        if derived != task.status:
            result = guard_transition(updated, derived, project.tasks, actor)
            if not result.ok:
                return WorkflowOutcome(success=False, error=result.error)
            updated = apply_status_change(updated, derived, result.value)

        saved = await self.store.save_task(project_id, updated)
        return WorkflowOutcome(success=True, entity=saved)

    async def update_dependencies(self, project_id: str, task_id: str,
                                  dependencies: Iterable[str], actor: Actor) -> WorkflowOutcome:
        project = await self._load(project_id)
        task = self._task(project, task_id)

        edit = guard_task_edit(task, actor)
        if not edit.ok:
            return WorkflowOutcome(success=False, error=edit.error)

        result = validate_dependencies(task, dependencies, project.tasks)
        if not result.ok:
            return WorkflowOutcome(success=False, error=result.error)

        saved = await self.store.save_task(project_id, result.value)
        return WorkflowOutcome(success=True, entity=saved)

    async def decide_transaction_approval(self, project_id: str, transaction_id: str,
                                          stage: StageName, party: Party, action: ApprovalAction,
                                          actor: Actor, at: datetime) -> WorkflowOutcome:
        project = await self._load(project_id)
        transaction = self._transaction(project, transaction_id)

        result = apply_approval(transaction.approvals, stage, party, action, actor, at,
                                entity_id=transaction.id)
        if not result.ok:
            return WorkflowOutcome(success=False, error=result.error)

        approved = transaction.with_approvals(result.value)
        effect = self.transaction_stage_effects.get(result.event.stage) if result.event else None
        if effect:
            return await effect(project, approved, result.event)

        saved = await self.store.save_transaction(project_id, approved)
        return WorkflowOutcome(success=True, entity=saved, event=result.event)

    async def _credit_additional_budget(self, project: Project, approved: FinancialTransaction,
                                        event: StageFullyApproved) -> WorkflowOutcome:
        """Persist the final approval and the budget credit in one atomic write"""
        reconciled = reconcile_budget(project, approved)
        if not reconciled.ok:
            saved = await self.store.save_transaction(project.id, approved)
            return WorkflowOutcome(success=True, entity=saved, event=event)

        credited = reconciled.value.transaction(approved.id)
        applied = await self.store.apply_budget_credit(project.id, credited)
        if not applied:
            saved = await self.store.save_transaction(project.id, approved)
            return WorkflowOutcome(success=True, entity=saved, event=event)

        return WorkflowOutcome(
            success=True,
            entity=replace(credited, version=credited.version + 1),
            event=event,
            budget_credited=True
        )

    async def set_transaction_status(self, project_id: str, transaction_id: str,
                                     status: TransactionStatus, actor: Actor) -> WorkflowOutcome:
        project = await self._load(project_id)
        transaction = self._transaction(project, transaction_id)

        result = set_transaction_status(transaction, status, actor)
        if not result.ok:
            return WorkflowOutcome(success=False, error=result.error)

        saved = await self.store.save_transaction(project_id, result.value)
        return WorkflowOutcome(success=True, entity=saved)

    async def run_overdue_sweep(self, project_id: str, today: date) -> List[str]:
        """Promote overdue tasks and transactions; entities changed meanwhile are left for the next run"""
        project = await self._load(project_id)
        entities = {e.id: e for e in list(project.tasks) + list(project.transactions)}

        promoted = []
        for entity_id in sweep_overdue(entities.values(), today):
            entity = promote_overdue(entities[entity_id], today)
            try:
                if isinstance(entity, Task):
                    await self.store.save_task(project_id, entity)
                else:
                    await self.store.save_transaction(project_id, entity)
                promoted.append(entity_id)
            except ConcurrentModificationError as e:
                logger.warning("Overdue promotion skipped", project_id=project_id,
                              entity_id=entity_id, error=str(e))

        log_overdue_sweep(today=today.isoformat(), promoted_ids=promoted, project_id=project_id)
        return promoted

    async def get_budget_summary(self, project_id: str) -> BudgetSummary:
        return summarize_budget(await self._load(project_id))

    async def get_vendor_earnings(self, project_id: str) -> Dict[str, VendorEarnings]:
        return vendor_earnings(await self._load(project_id))

    async def get_blocking_tasks(self, project_id: str, task_id: str) -> List[Task]:
        project = await self._load(project_id)
        return blocking_tasks(self._task(project, task_id), project.tasks)

    async def get_pending_approvals(self, project_id: str, actor: Actor) -> List[PendingApproval]:
        return pending_approvals_for(actor, await self._load(project_id))

    async def get_progress(self, project_id: str) -> int:
        project = await self._load(project_id)
        return project_progress(project.tasks)

    async def _load(self, project_id: str) -> Project:
        project = await self.store.load_project(project_id)
        if project is None:
            raise EntityNotFoundError("project", project_id)
        return project

    def _task(self, project: Project, task_id: str) -> Task:
        task = project.task(task_id)
        if task is None:
            raise EntityNotFoundError("task", task_id)
        return task

    def _transaction(self, project: Project, transaction_id: str) -> FinancialTransaction:
        transaction = project.transaction(transaction_id)
        if transaction is None:
            raise EntityNotFoundError("transaction", transaction_id)
        return transaction
