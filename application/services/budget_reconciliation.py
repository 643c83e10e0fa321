# application/services/budget_reconciliation.py
from dataclasses import replace
from typing import Dict
from decimal import Decimal

from domain.models.approval_workflow import Actor
from domain.models.financial_record import (
    BudgetSummary,
    FinancialTransaction,
    Project,
    TransactionStatus,
    TransactionType,
    VendorEarnings
)
from domain.models.engine_result import (
    EngineResult,
    AlreadyApplied,
    ApprovalRequired,
    Forbidden,
    NotEligible
)
from shared.logging import logger, log_budget_reconciled

ZERO = Decimal("0")

def reconcile_budget(project: Project, transaction: FinancialTransaction) -> EngineResult[Project]:
    """Credit an approved additional-budget income to the project exactly once.

    The transaction's PAID status is the idempotence marker: a second call for
    the same transaction returns AlreadyApplied and leaves the project as is.
    """
    if not transaction.is_additional_budget:
        return EngineResult.failure(NotEligible(
            message=f"Transaction {transaction.id} is not additional-budget income"
        ))

    if not transaction.is_budget_approved:
        return EngineResult.failure(ApprovalRequired(
            message="Additional budget needs both admin and client approval"
        ))

    current = project.transaction(transaction.id) or transaction
    if current.status == TransactionStatus.PAID or transaction.status == TransactionStatus.PAID:
        log_budget_reconciled(project.id, transaction.id, transaction.amount, project.budget, False)
        return EngineResult.failure(AlreadyApplied(
            message=f"Budget already credited for transaction {transaction.id}"
        ))

    paid = transaction.with_status(TransactionStatus.PAID)
    if project.transaction(transaction.id) is None:
        transactions = project.transactions + (paid,)
    else:
        transactions = tuple(paid if t.id == paid.id else t for t in project.transactions)

    updated = replace(project, budget=project.budget + transaction.amount, transactions=transactions)
    log_budget_reconciled(project.id, transaction.id, transaction.amount, updated.budget, True)
    return EngineResult.success(updated)

def summarize_budget(project: Project) -> BudgetSummary:
    """Committed budget vs cash flow, recomputed from the transactions"""
    additional = sum(
        (t.amount for t in project.transactions if t.is_additional_budget and t.is_budget_approved),
        ZERO
    )
    income = [t for t in project.transactions
              if t.type is TransactionType.INCOME and not t.is_additional_budget]
    expenses = [t for t in project.transactions if t.type is TransactionType.EXPENSE]

    received = sum((t.amount for t in income if t.status == TransactionStatus.PAID), ZERO)
    pending_income = sum((t.amount for t in income if t.is_outstanding), ZERO)
    paid_out = sum((t.amount for t in expenses if t.status == TransactionStatus.PAID), ZERO)
    pending_expenses = sum((t.amount for t in expenses if t.is_outstanding), ZERO)

    budget = project.initial_budget + additional
    return BudgetSummary(
        project_id=project.id,
        initial_budget=project.initial_budget,
        budget=budget,
        total_additional_budget=additional,
        received=received,
        pending_income=pending_income,
        paid_out=paid_out,
        pending_expenses=pending_expenses,
        remaining=budget - (paid_out + pending_expenses)
    )

def vendor_earnings(project: Project) -> Dict[str, VendorEarnings]:
    """Per-vendor task count and expense totals for the project.

    An expense counts as settled once PAID or once both parties confirmed the
    payment; everything else still outstanding counts as pending.
    """
    vendor_ids = {t.assignee_id for t in project.tasks if t.assignee_id}
    vendor_ids |= {t.vendor_id for t in project.transactions if t.vendor_id}

    earnings: Dict[str, VendorEarnings] = {}
    for vendor_id in sorted(vendor_ids):
        records = [t for t in project.transactions
                   if t.vendor_id == vendor_id and t.type is TransactionType.EXPENSE]
        settled = [t for t in records if _is_settled(t)]
        settled_ids = {t.id for t in settled}
        earnings[vendor_id] = VendorEarnings(
            vendor_id=vendor_id,
            task_count=sum(1 for t in project.tasks if t.assignee_id == vendor_id),
            settled_amount=sum((t.amount for t in settled), ZERO),
            pending_amount=sum((t.amount for t in records if t.id not in settled_ids and t.is_outstanding), ZERO)
        )
    return earnings

def _is_settled(transaction: FinancialTransaction) -> bool:
    if transaction.status == TransactionStatus.PAID:
        return True
    stage = transaction.payment_approval
    return stage is not None and stage.is_fully_approved

def set_transaction_status(transaction: FinancialTransaction, status: TransactionStatus,
                           actor: Actor) -> EngineResult[FinancialTransaction]:
    """Explicit settlement change by an admin"""
    if not actor.is_admin:
        return EngineResult.failure(Forbidden(
            message="Only an admin can change a transaction's status"
        ))

    if transaction.is_additional_budget and status == TransactionStatus.PAID:
        return EngineResult.failure(ApprovalRequired(
            message="Additional budget is settled through dual approval, not directly"
        ))

    if transaction.is_additional_budget and transaction.status == TransactionStatus.PAID:
        return EngineResult.failure(AlreadyApplied(
            message="A credited additional budget cannot be reopened"
        ))

    logger.info("Transaction status set",
               transaction_id=transaction.id,
               from_status=transaction.status.value,
               to_status=status.value,
               actor_id=actor.id)
    return EngineResult.success(transaction.with_status(status))
