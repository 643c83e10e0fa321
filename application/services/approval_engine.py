# application/services/approval_engine.py
from dataclasses import dataclass
from typing import List, Optional
from datetime import datetime

from domain.models.approval_workflow import (
    Actor,
    ApprovalAction,
    ApprovalCell,
    ApprovalMatrix,
    ApprovalStatus,
    Party,
    StageFullyApproved,
    StageName
)
from domain.models.engine_result import (
    EngineResult,
    Forbidden,
    NotPending,
    StageLocked,
    UnknownStage
)
from domain.models.financial_record import Project
from shared.logging import log_approval_decision

_DECISIONS = {
    ApprovalAction.APPROVE: ApprovalStatus.APPROVED,
    ApprovalAction.REJECT: ApprovalStatus.REJECTED,
}

def apply_approval(matrix: ApprovalMatrix, stage: StageName, party: Party,
                   action: ApprovalAction, actor: Actor, at: datetime,
                   entity_id: Optional[str] = None) -> EngineResult[ApprovalMatrix]:
    """Apply approve/reject/revoke to one (stage, party) cell.

    Rules:
    - approve/reject: only the party the cell represents, and only from PENDING.
      An admin never acts on the client cell.
    - revoke: admin only, and never once both cells of the stage are APPROVED.

    The lock is checked against `matrix` as given, so callers must pass the
    state read immediately before applying. Emits StageFullyApproved when the
    stage becomes fully approved in this operation.
    """
    result = _decide(matrix, stage, party, action, actor, at, entity_id)

    log_approval_decision(
        entity_id=entity_id or "",
        stage=stage.value,
        party=party.value,
        action=action.value,
        actor_id=actor.id,
        accepted=result.ok,
        error_code=result.error.code if result.error else None,
        stage_fully_approved=result.event is not None
    )
    return result

def _decide(matrix: ApprovalMatrix, stage: StageName, party: Party,
            action: ApprovalAction, actor: Actor, at: datetime,
            entity_id: Optional[str]) -> EngineResult[ApprovalMatrix]:
    if not matrix.has_stage(stage):
        return EngineResult.failure(UnknownStage(
            message=f"Stage '{stage.value}' does not exist on this entity"
        ))

    current = matrix.stage(stage)

    if action is ApprovalAction.REVOKE:
        if not actor.is_admin:
            return EngineResult.failure(Forbidden(
                message="Only an admin may revoke an approval"
            ))
        if current.is_fully_approved:
            return EngineResult.failure(StageLocked(
                message="Cannot revoke once both parties have approved"
            ))
        cell = ApprovalCell(status=ApprovalStatus.PENDING, updated_by=actor.id, timestamp=at)
        return EngineResult.success(matrix.with_stage(stage, current.with_cell(party, cell)))

    if actor.party is not party:
        return EngineResult.failure(Forbidden(
            message=f"Role '{actor.role.value}' cannot act on the {party.value} approval"
        ))

    if not current.cell(party).is_pending:
        return EngineResult.failure(NotPending(
            message=f"The {party.value} {stage.value} approval is already "
                    f"{current.cell(party).status.value}"
        ))

    cell = ApprovalCell(status=_DECISIONS[action], updated_by=actor.id, timestamp=at)
    updated = current.with_cell(party, cell)

    event = None
    if updated.is_fully_approved and not current.is_fully_approved:
        event = StageFullyApproved(stage=stage, entity_id=entity_id)

    return EngineResult.success(matrix.with_stage(stage, updated), event=event)

@dataclass(frozen=True)
class PendingApproval:
    """A cell awaiting the actor's decision"""
    entity_kind: str
    entity_id: str
    label: str
    stage: StageName

def pending_approvals_for(actor: Actor, project: Project) -> List[PendingApproval]:
    """Cells on tasks and transactions still waiting on the actor's party"""
    party = actor.party
    if party is None:
        return []

    pending: List[PendingApproval] = []
    for task in project.tasks:
        for name, stage in task.approvals.stages.items():
            if stage.cell(party).is_pending:
                pending.append(PendingApproval("task", task.id, task.title, name))

    for transaction in project.transactions:
        for name, stage in transaction.approvals.stages.items():
            if stage.cell(party).is_pending:
                pending.append(PendingApproval(
                    "transaction", transaction.id,
                    transaction.description or transaction.category, name
                ))
    return pending
