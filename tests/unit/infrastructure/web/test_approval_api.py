# tests/unit/infrastructure/web/test_approval_api.py
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from domain.models.approval_workflow import ApprovalAction, Party, Role, StageName
from domain.models.task_state import TaskStatus
from domain.models.financial_record import BudgetSummary, TransactionStatus, VendorEarnings
from domain.models.engine_result import ChecklistIncomplete, DependencyBlocked, Forbidden, StageLocked, UnknownDependency
from application.orchestrators.approval_orchestrator import WorkflowOutcome
from application.services.approval_engine import PendingApproval
from infrastructure.storage.project_store import ConcurrentModificationError, EntityNotFoundError
from infrastructure.web.approval_api import get_orchestrator, router

@pytest.fixture
def orchestrator():
    return AsyncMock()

@pytest.fixture
def client(orchestrator):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return TestClient(app)

def _decision(**overrides):
    body = {
        "actor_id": "client-1",
        "actor_role": "client",
        "stage": "start",
        "party": "client",
        "action": "approve"
    }
    body.update(overrides)
    return body

class TestTaskEndpoints:
    """Task approval and status routes"""

    def test_approval_returns_task(self, client, orchestrator, make_task):
        orchestrator.decide_task_approval.return_value = WorkflowOutcome(
            success=True, entity=make_task("t1", status=TaskStatus.IN_PROGRESS, version=2)
        )

        response = client.post("/projects/p1/tasks/t1/approvals", json=_decision())

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "in_progress"
        assert body["version"] == 2
        assert body["approvals"]["stages"]["start"]["fully_approved"] is False

        args = orchestrator.decide_task_approval.await_args.args
        assert args[:5] == ("p1", "t1", StageName.START, Party.CLIENT, ApprovalAction.APPROVE)
        assert args[5].role is Role.CLIENT

    def test_locked_stage_maps_to_conflict(self, client, orchestrator):
        orchestrator.decide_task_approval.return_value = WorkflowOutcome(
            success=False, error=StageLocked(message="locked")
        )

        response = client.post("/projects/p1/tasks/t1/approvals",
                               json=_decision(actor_id="admin-1", actor_role="admin", action="revoke"))

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "stage_locked"

    def test_unknown_role_rejected(self, client, orchestrator):
        response = client.post("/projects/p1/tasks/t1/approvals", json=_decision(actor_role="owner"))

        assert response.status_code == 422
        orchestrator.decide_task_approval.assert_not_awaited()

    def test_role_tag_is_case_insensitive(self, client, orchestrator, make_task):
        orchestrator.decide_task_approval.return_value = WorkflowOutcome(success=True, entity=make_task("t1"))

        response = client.post("/projects/p1/tasks/t1/approvals", json=_decision(actor_role=" Client "))

        assert response.status_code == 200
        assert orchestrator.decide_task_approval.await_args.args[5].role is Role.CLIENT

    def test_incomplete_checklist_maps_to_conflict(self, client, orchestrator):
        orchestrator.change_task_status.return_value = WorkflowOutcome(
            success=False, error=ChecklistIncomplete(message="checklist open")
        )

        response = client.post("/projects/p1/tasks/T/status",
                               json={"actor_id": "vendor-1", "actor_role": "vendor", "status": "review"})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "checklist_incomplete"

    def test_blocked_status_change_lists_blockers(self, client, orchestrator):
        orchestrator.change_task_status.return_value = WorkflowOutcome(
            success=False,
            error=DependencyBlocked(message="Waiting on: Plumbing", blocking_task_ids=("B",))
        )

        response = client.post("/projects/p1/tasks/T/status",
                               json={"actor_id": "admin-1", "actor_role": "admin", "status": "in_progress"})

        assert response.status_code == 409
        assert response.json()["detail"]["blocking_task_ids"] == ["B"]

    def test_forbidden_maps_to_403(self, client, orchestrator):
        orchestrator.change_task_status.return_value = WorkflowOutcome(
            success=False, error=Forbidden(message="admin only")
        )

        response = client.post("/projects/p1/tasks/T/status",
                               json={"actor_id": "client-1", "actor_role": "client", "status": "on_hold"})

        assert response.status_code == 403

    def test_missing_task_maps_to_404(self, client, orchestrator):
        orchestrator.toggle_subtask.side_effect = EntityNotFoundError("task", "T")

        response = client.post("/projects/p1/tasks/T/subtasks/s1",
                               json={"actor_id": "admin-1", "actor_role": "admin", "is_completed": True})

        assert response.status_code == 404

    def test_stale_write_maps_to_conflict(self, client, orchestrator):
        orchestrator.update_dependencies.side_effect = ConcurrentModificationError("task", "T", 3)

        response = client.put("/projects/p1/tasks/T/dependencies",
                               json={"actor_id": "admin-1", "actor_role": "admin", "dependencies": ["A"]})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "concurrent_modification"

    def test_blocking_tasks(self, client, orchestrator, make_task):
        orchestrator.get_blocking_tasks.return_value = [
            make_task("B", status=TaskStatus.IN_PROGRESS, title="Plumbing")
        ]

        response = client.get("/projects/p1/tasks/T/blocking")

        assert response.json() == {
            "task_id": "T",
            "blocked": True,
            "blocking_tasks": [{"task_id": "B", "title": "Plumbing", "status": "in_progress"}]
        }

class TestTransactionEndpoints:

    def test_budget_approval_reports_credit(self, client, orchestrator, make_transaction):
        orchestrator.decide_transaction_approval.return_value = WorkflowOutcome(
            success=True,
            entity=make_transaction("extra", status=TransactionStatus.PAID),
            budget_credited=True
        )

        response = client.post(
            "/projects/p1/transactions/extra/approvals",
            json=_decision(actor_id="admin-1", actor_role="admin", party="admin", stage="additional_budget")
        )

        assert response.status_code == 200
        assert response.json()["budget_credited"] is True
        assert response.json()["status"] == "paid"

    def test_budget_summary(self, client, orchestrator):
        orchestrator.get_budget_summary.return_value = BudgetSummary(
            project_id="p1",
            initial_budget=Decimal("100000"),
            budget=Decimal("150000"),
            total_additional_budget=Decimal("50000"),
            received=Decimal("0"),
            pending_income=Decimal("0"),
            paid_out=Decimal("15000"),
            pending_expenses=Decimal("5000"),
            remaining=Decimal("130000")
        )
        orchestrator.get_vendor_earnings.return_value = {
            "v1": VendorEarnings("v1", 2, Decimal("15000"), Decimal("5000"))
        }

        response = client.get("/projects/p1/budget")

        body = response.json()
        assert Decimal(str(body["budget"])) == Decimal("150000")
        assert Decimal(str(body["remaining"])) == Decimal("130000")
        assert body["vendor_earnings"]["v1"]["task_count"] == 2

class TestCreationEndpoints:
    """Server-assigned ids for new projects, tasks and transactions"""

    def test_create_project(self, client, orchestrator):
        orchestrator.create_project.side_effect = lambda project, actor: WorkflowOutcome(
            success=True, entity=project
        )

        response = client.post("/projects", json={
            "actor_id": "admin-1", "actor_role": "admin", "name": "Villa Interiors", "initial_budget": "100000"
        })

        assert response.status_code == 201
        body = response.json()
        assert body["name"] == "Villa Interiors"
        assert Decimal(str(body["budget"])) == Decimal("100000")
        project, actor = orchestrator.create_project.await_args.args
        assert body["project_id"] == project.id
        assert actor.role is Role.ADMIN

    def test_create_project_forbidden(self, client, orchestrator):
        orchestrator.create_project.return_value = WorkflowOutcome(
            success=False, error=Forbidden(message="admin only")
        )

        response = client.post("/projects", json={
            "actor_id": "client-1", "actor_role": "client", "name": "Villa", "initial_budget": "10"
        })

        assert response.status_code == 403

    def test_add_task_builds_checklist(self, client, orchestrator):
        orchestrator.add_task.side_effect = lambda project_id, task, actor: WorkflowOutcome(
            success=True, entity=task
        )

        response = client.post("/projects/p1/tasks", json={
            "actor_id": "admin-1", "actor_role": "admin", "title": "Tiling",
            "dependencies": ["A"], "subtasks": ["Order tiles", "Lay tiles"]
        })

        assert response.status_code == 201
        assert response.json()["dependencies"] == ["A"]
        project_id, task, _ = orchestrator.add_task.await_args.args
        assert project_id == "p1"
        assert [s.title for s in task.subtasks] == ["Order tiles", "Lay tiles"]
        assert not any(s.is_completed for s in task.subtasks)

    def test_add_task_unknown_dependency(self, client, orchestrator):
        orchestrator.add_task.return_value = WorkflowOutcome(
            success=False, error=UnknownDependency(message="Unknown", missing_task_ids=("ghost",))
        )

        response = client.post("/projects/p1/tasks",
                               json={"actor_id": "admin-1", "actor_role": "admin", "title": "Tiling"})

        assert response.status_code == 422
        assert response.json()["detail"]["missing_task_ids"] == ["ghost"]

    def test_additional_budget_gets_approval_stage(self, client, orchestrator):
        orchestrator.add_transaction.side_effect = lambda project_id, transaction, actor: WorkflowOutcome(
            success=True, entity=transaction
        )

        response = client.post("/projects/p1/transactions", json={
            "actor_id": "admin-1", "actor_role": "admin", "type": "income", "amount": "50000",
            "category": "Additional Budget", "transaction_date": "2024-03-01"
        })

        assert response.status_code == 201
        assert list(response.json()["approvals"]["stages"]) == ["additional_budget"]

    def test_vendor_expense_gets_payment_stage(self, client, orchestrator):
        orchestrator.add_transaction.side_effect = lambda project_id, transaction, actor: WorkflowOutcome(
            success=True, entity=transaction
        )

        response = client.post("/projects/p1/transactions", json={
            "actor_id": "admin-1", "actor_role": "admin", "type": "expense", "amount": "1200",
            "category": "Civil", "transaction_date": "2024-03-01", "vendor_id": "v1"
        })

        assert list(response.json()["approvals"]["stages"]) == ["payment"]
        transaction = orchestrator.add_transaction.await_args.args[1]
        assert transaction.vendor_id == "v1"
        assert transaction.date == date(2024, 3, 1)

class TestProjectEndpoints:

    def test_progress(self, client, orchestrator):
        orchestrator.get_progress.return_value = 75

        response = client.get("/projects/p1/progress")

        assert response.json() == {"project_id": "p1", "progress": 75}

    def test_progress_unknown_project(self, client, orchestrator):
        orchestrator.get_progress.side_effect = EntityNotFoundError("project", "p9")

        assert client.get("/projects/p9/progress").status_code == 404

    def test_pending_approvals_rejects_unknown_role(self, client, orchestrator):
        response = client.get("/projects/p1/approvals/pending",
                              params={"actor_id": "x", "actor_role": "owner"})

        assert response.status_code == 422
        orchestrator.get_pending_approvals.assert_not_awaited()

    def test_pending_approvals(self, client, orchestrator):
        orchestrator.get_pending_approvals.return_value = [
            PendingApproval("task", "t1", "Tiling", StageName.COMPLETION)
        ]

        response = client.get("/projects/p1/approvals/pending",
                              params={"actor_id": "client-1", "actor_role": "client"})

        assert response.json()["pending"] == [
            {"entity_kind": "task", "entity_id": "t1", "label": "Tiling", "stage": "completion"}
        ]
        actor = orchestrator.get_pending_approvals.await_args.args[1]
        assert actor.role is Role.CLIENT

    def test_overdue_sweep_with_explicit_date(self, client, orchestrator):
        orchestrator.run_overdue_sweep.return_value = ["t1", "f1"]

        response = client.post("/projects/p1/overdue-sweep", json={"today": "2024-03-01"})

        assert response.json()["promoted_ids"] == ["t1", "f1"]
        orchestrator.run_overdue_sweep.assert_awaited_once_with("p1", date(2024, 3, 1))
