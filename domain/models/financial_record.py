# domain/models/financial_record.py
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple
from datetime import date
from decimal import Decimal
from enum import Enum

from domain.models.approval_workflow import ApprovalMatrix, DualPartyApprovalStage, StageName
from domain.models.task_state import Task

ADDITIONAL_BUDGET_CATEGORY = "Additional Budget"

class TransactionType(Enum):
    INCOME = "income"
    EXPENSE = "expense"

class TransactionStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"

@dataclass(frozen=True)
class FinancialTransaction:
    """Immutable income/expense entry with optional dual-party approval stages"""
    id: str
    type: TransactionType
    amount: Decimal
    category: str
    date: date
    status: TransactionStatus = TransactionStatus.PENDING
    description: str = ""
    vendor_id: Optional[str] = None
    approvals: ApprovalMatrix = field(default_factory=lambda: ApprovalMatrix(stages={}))
    version: int = 0

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError(f"Transaction amount must be non-negative, got {self.amount}")

    @classmethod
    def additional_budget(cls, id: str, amount: Decimal, date: date, description: str = "") -> "FinancialTransaction":
        return cls(
            id=id,
            type=TransactionType.INCOME,
            amount=amount,
            category=ADDITIONAL_BUDGET_CATEGORY,
            date=date,
            description=description,
            approvals=ApprovalMatrix.pending(StageName.ADDITIONAL_BUDGET)
        )

    @property
    def is_additional_budget(self) -> bool:
        return self.type is TransactionType.INCOME and self.category == ADDITIONAL_BUDGET_CATEGORY

    @property
    def payment_approval(self) -> Optional[DualPartyApprovalStage]:
        return self.approvals.stages.get(StageName.PAYMENT)

    @property
    def budget_approval(self) -> Optional[DualPartyApprovalStage]:
        return self.approvals.stages.get(StageName.ADDITIONAL_BUDGET)

    @property
    def is_budget_approved(self) -> bool:
        return self.approvals.is_stage_fully_approved(StageName.ADDITIONAL_BUDGET)

    @property
    def is_outstanding(self) -> bool:
        return self.status in (TransactionStatus.PENDING, TransactionStatus.OVERDUE)

    def with_status(self, status: TransactionStatus) -> "FinancialTransaction":
        return replace(self, status=status)

    def with_approvals(self, approvals: ApprovalMatrix) -> "FinancialTransaction":
        return replace(self, approvals=approvals)

@dataclass(frozen=True)
class Project:
    """Project aggregate: running budget plus the tasks and transactions it owns"""
    id: str
    name: str
    initial_budget: Decimal
    budget: Decimal
    tasks: Tuple[Task, ...] = ()
    transactions: Tuple[FinancialTransaction, ...] = ()
    version: int = 0

    def task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self.tasks if t.id == task_id), None)

    def transaction(self, transaction_id: str) -> Optional[FinancialTransaction]:
        return next((t for t in self.transactions if t.id == transaction_id), None)

    def with_task(self, task: Task) -> "Project":
        return replace(self, tasks=tuple(task if t.id == task.id else t for t in self.tasks))

    def with_transaction(self, transaction: FinancialTransaction) -> "Project":
        return replace(self, transactions=tuple(
            transaction if t.id == transaction.id else t for t in self.transactions
        ))

@dataclass(frozen=True)
class BudgetSummary:
    """Committed budget and cash-flow figures computed on read"""
    project_id: str
    initial_budget: Decimal
    budget: Decimal
    total_additional_budget: Decimal
    received: Decimal
    pending_income: Decimal
    paid_out: Decimal
    pending_expenses: Decimal
    remaining: Decimal

@dataclass(frozen=True)
class VendorEarnings:
    vendor_id: str
    task_count: int
    settled_amount: Decimal
    pending_amount: Decimal
