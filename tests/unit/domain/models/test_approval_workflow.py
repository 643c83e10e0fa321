# tests/unit/domain/models/test_approval_workflow.py
import pytest
from dataclasses import FrozenInstanceError
from datetime import date
from decimal import Decimal

from domain.models.approval_workflow import (
    Actor,
    ApprovalCell,
    ApprovalDecisionModel,
    ApprovalMatrix,
    ApprovalMatrixModel,
    ApprovalStatus,
    DualPartyApprovalStage,
    Party,
    Role,
    StageName
)
from domain.models.task_state import Task, TaskStatus
from domain.models.financial_record import (
    ADDITIONAL_BUDGET_CATEGORY,
    FinancialTransaction,
    TransactionType
)

class TestRoles:
    """Closed role set and party mapping"""

    def test_parse_known_roles(self):
        assert Role.parse("admin") is Role.ADMIN
        assert Role.parse(" Client ") is Role.CLIENT
        assert Role.parse("VENDOR") is Role.VENDOR
        assert Role.parse(Role.DESIGNER) is Role.DESIGNER

    def test_parse_rejects_unknown_role(self):
        with pytest.raises(ValueError, match="Unknown role"):
            Role.parse("superuser")

    def test_decision_model_parses_role_tag(self):
        decision = ApprovalDecisionModel(actor_id="a", actor_role="ADMIN", stage="start",
                                         party="admin", action="approve")

        assert decision.actor_role is Role.ADMIN

    def test_only_admin_and_client_map_to_parties(self):
        assert Party.for_role(Role.ADMIN) is Party.ADMIN
        assert Party.for_role(Role.CLIENT) is Party.CLIENT
        assert Party.for_role(Role.DESIGNER) is None
        assert Party.for_role(Role.VENDOR) is None

    def test_actor_helpers(self):
        assert Actor("a", Role.ADMIN).is_admin
        assert not Actor("c", Role.CLIENT).is_admin
        assert Actor("c", Role.CLIENT).party is Party.CLIENT

class TestApprovalMatrix:
    """Shared dual-party approval shape"""

    def test_task_matrix_defaults_to_pending(self):
        matrix = ApprovalMatrix.for_task()

        assert set(matrix.stages) == {StageName.START, StageName.COMPLETION}
        for stage in matrix.stages.values():
            assert stage.admin.status is ApprovalStatus.PENDING
            assert stage.client.status is ApprovalStatus.PENDING
        assert not matrix.is_fully_approved

    def test_stage_fully_approved_needs_both_cells(self):
        half = DualPartyApprovalStage(admin=ApprovalCell(ApprovalStatus.APPROVED))
        both = half.with_cell(Party.CLIENT, ApprovalCell(ApprovalStatus.APPROVED))

        assert not half.is_fully_approved
        assert both.is_fully_approved

    def test_with_stage_does_not_mutate_original(self, approved_stage):
        matrix = ApprovalMatrix.for_task()
        updated = matrix.with_stage(StageName.START, approved_stage())

        assert not matrix.is_stage_fully_approved(StageName.START)
        assert updated.is_stage_fully_approved(StageName.START)

    def test_cells_are_immutable(self):
        cell = ApprovalCell()
        with pytest.raises(FrozenInstanceError):
            cell.status = ApprovalStatus.APPROVED

    def test_matrix_model_serialization(self, approved_stage):
        matrix = ApprovalMatrix.for_task().with_stage(StageName.START, approved_stage())
        model = ApprovalMatrixModel.from_matrix(matrix)

        assert model.stages["start"].fully_approved is True
        assert model.stages["start"].admin.status is ApprovalStatus.APPROVED
        assert model.stages["completion"].fully_approved is False

class TestTaskModel:

    def test_task_is_immutable(self):
        task = Task(id="t1", title="Tiling")
        with pytest.raises(FrozenInstanceError):
            task.status = TaskStatus.DONE

    def test_frozen_statuses(self):
        assert Task(id="t1", title="x", status=TaskStatus.ON_HOLD).is_frozen
        assert Task(id="t1", title="x", status=TaskStatus.ABORTED).is_frozen
        assert not Task(id="t1", title="x", status=TaskStatus.OVERDUE).is_frozen

    def test_fully_approved_requires_all_four_cells(self, fully_approved_matrix, approved_stage):
        partial = ApprovalMatrix.for_task().with_stage(StageName.START, approved_stage())

        assert Task(id="t1", title="x", approvals=fully_approved_matrix).is_fully_approved
        assert not Task(id="t1", title="x", approvals=partial).is_fully_approved

class TestFinancialTransaction:

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            FinancialTransaction(
                id="f1", type=TransactionType.EXPENSE, amount=Decimal("-1"),
                category="Civil", date=date(2024, 1, 1)
            )

    def test_additional_budget_factory(self):
        transaction = FinancialTransaction.additional_budget("f1", Decimal("50000"), date(2024, 1, 1))

        assert transaction.is_additional_budget
        assert transaction.category == ADDITIONAL_BUDGET_CATEGORY
        assert transaction.budget_approval is not None
        assert transaction.payment_approval is None
        assert not transaction.is_budget_approved

    def test_expense_in_budget_category_is_not_additional_budget(self):
        transaction = FinancialTransaction(
            id="f1", type=TransactionType.EXPENSE, amount=Decimal("10"),
            category=ADDITIONAL_BUDGET_CATEGORY, date=date(2024, 1, 1)
        )
        assert not transaction.is_additional_budget
