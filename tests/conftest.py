# tests/conftest.py
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from domain.models.approval_workflow import (
    Actor,
    ApprovalCell,
    ApprovalMatrix,
    ApprovalStatus,
    DualPartyApprovalStage,
    Role,
    StageName
)
from domain.models.task_state import SubTask, Task, TaskStatus
from domain.models.financial_record import (
    FinancialTransaction,
    Project,
    TransactionType
)

@pytest.fixture
def admin():
    return Actor(id="admin-1", role=Role.ADMIN)

@pytest.fixture
def client_actor():
    return Actor(id="client-1", role=Role.CLIENT)

@pytest.fixture
def vendor():
    return Actor(id="vendor-1", role=Role.VENDOR)

@pytest.fixture
def designer():
    return Actor(id="designer-1", role=Role.DESIGNER)

@pytest.fixture
def now():
    return datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)

@pytest.fixture
def today():
    return date(2024, 3, 1)

@pytest.fixture
def approved_stage():
    """Factory for a stage with both parties approved"""
    def build(at=None):
        return DualPartyApprovalStage(
            admin=ApprovalCell(ApprovalStatus.APPROVED, "admin-1", at),
            client=ApprovalCell(ApprovalStatus.APPROVED, "client-1", at)
        )
    return build

@pytest.fixture
def fully_approved_matrix(approved_stage):
    return ApprovalMatrix(stages={
        StageName.START: approved_stage(),
        StageName.COMPLETION: approved_stage(),
    })

@pytest.fixture
def make_task():
    """Factory for tasks with sensible defaults"""
    def build(task_id="t1", status=TaskStatus.TODO, dependencies=(), subtasks=None, **kwargs):
        if subtasks is not None:
            subtasks = tuple(
                SubTask(id=f"{task_id}-s{i}", title=f"Step {i}", is_completed=done)
                for i, done in enumerate(subtasks)
            )
        return Task(
            id=task_id,
            title=kwargs.pop("title", f"Task {task_id}"),
            status=status,
            dependencies=frozenset(dependencies),
            subtasks=subtasks or (),
            **kwargs
        )
    return build

@pytest.fixture
def make_transaction():
    def build(transaction_id="f1", type=TransactionType.EXPENSE, amount="1000",
              category="Civil", when=date(2024, 3, 1), **kwargs):
        return FinancialTransaction(
            id=transaction_id,
            type=type,
            amount=Decimal(amount),
            category=category,
            date=when,
            **kwargs
        )
    return build

@pytest.fixture
def make_project():
    def build(tasks=(), transactions=(), initial_budget="100000", budget=None, **kwargs):
        return Project(
            id=kwargs.pop("project_id", "p1"),
            name=kwargs.pop("name", "Villa Interiors"),
            initial_budget=Decimal(initial_budget),
            budget=Decimal(budget if budget is not None else initial_budget),
            tasks=tuple(tasks),
            transactions=tuple(transactions),
            **kwargs
        )
    return build
