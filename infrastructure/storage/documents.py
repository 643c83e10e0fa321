# infrastructure/storage/documents.py
"""JSONB document mapping for tasks, transactions and approval matrices"""
from typing import Any, Dict, Optional
from datetime import date, datetime
from decimal import Decimal

from domain.models.approval_workflow import (
    ApprovalCell,
    ApprovalMatrix,
    ApprovalStatus,
    DualPartyApprovalStage,
    StageName
)
from domain.models.task_state import SubTask, Task, TaskStatus, StatusSource
from domain.models.financial_record import FinancialTransaction, TransactionStatus, TransactionType

def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None

def _date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None

def _datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None

def matrix_to_document(matrix: ApprovalMatrix) -> Dict[str, Any]:
    return {
        name.value: {
            party: {
                "status": cell.status.value,
                "updatedBy": cell.updated_by,
                "timestamp": _iso(cell.timestamp)
            }
            for party, cell in (("admin", stage.admin), ("client", stage.client))
        }
        for name, stage in matrix.stages.items()
    }

def matrix_from_document(document: Optional[Dict[str, Any]]) -> ApprovalMatrix:
    stages = {}
    for name, stage in (document or {}).items():
        cells = {}
        for party in ("admin", "client"):
            raw = stage.get(party) or {}
            cells[party] = ApprovalCell(
                status=ApprovalStatus(raw.get("status", ApprovalStatus.PENDING.value)),
                updated_by=raw.get("updatedBy"),
                timestamp=_datetime(raw.get("timestamp"))
            )
        stages[StageName(name)] = DualPartyApprovalStage(**cells)
    return ApprovalMatrix(stages=stages)

def task_to_document(task: Task) -> Dict[str, Any]:
    return {
        "title": task.title,
        "category": task.category,
        "assigneeId": task.assignee_id,
        "startDate": _iso(task.start_date),
        "dueDate": _iso(task.due_date),
        "status": task.status.value,
        "statusSource": task.status_source.value,
        "dependencies": sorted(task.dependencies),
        "subtasks": [
            {"id": s.id, "title": s.title, "isCompleted": s.is_completed}
            for s in task.subtasks
        ],
        "approvals": matrix_to_document(task.approvals),
        "progress": task.progress
    }

def task_from_document(task_id: str, document: Dict[str, Any], version: int = 0) -> Task:
    approvals = document.get("approvals")
    return Task(
        id=task_id,
        title=document["title"],
        category=document.get("category", "General"),
        assignee_id=document.get("assigneeId"),
        start_date=_date(document.get("startDate")),
        due_date=_date(document.get("dueDate")),
        status=TaskStatus(document.get("status", TaskStatus.TODO.value)),
        status_source=StatusSource(document.get("statusSource", StatusSource.DERIVED.value)),
        dependencies=frozenset(document.get("dependencies", [])),
        subtasks=tuple(
            SubTask(id=s["id"], title=s["title"], is_completed=bool(s.get("isCompleted")))
            for s in document.get("subtasks", [])
        ),
        approvals=matrix_from_document(approvals) if approvals else ApprovalMatrix.for_task(),
        progress=document.get("progress"),
        version=version
    )

def transaction_to_document(transaction: FinancialTransaction) -> Dict[str, Any]:
    return {
        "type": transaction.type.value,
        # Decimal amounts travel as strings to keep precision
        "amount": str(transaction.amount),
        "category": transaction.category,
        "date": _iso(transaction.date),
        "status": transaction.status.value,
        "description": transaction.description,
        "vendorId": transaction.vendor_id,
        "approvals": matrix_to_document(transaction.approvals)
    }

def transaction_from_document(transaction_id: str, document: Dict[str, Any],
                              version: int = 0) -> FinancialTransaction:
    return FinancialTransaction(
        id=transaction_id,
        type=TransactionType(document["type"]),
        amount=Decimal(str(document["amount"])),
        category=document.get("category", ""),
        date=_date(document["date"]),
        status=TransactionStatus(document.get("status", TransactionStatus.PENDING.value)),
        description=document.get("description", ""),
        vendor_id=document.get("vendorId"),
        approvals=matrix_from_document(document.get("approvals")),
        version=version
    )
