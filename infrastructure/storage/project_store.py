# infrastructure/storage/project_store.py
import json
from dataclasses import replace
from typing import List, Optional
from decimal import Decimal
import asyncpg

from domain.models.task_state import Task
from domain.models.financial_record import FinancialTransaction, Project
from infrastructure.storage.documents import (
    task_from_document,
    task_to_document,
    transaction_from_document,
    transaction_to_document
)
from shared.logging import logger

class EntityNotFoundError(Exception):
    """Raised when a project, task or transaction does not exist"""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")

class ConcurrentModificationError(Exception):
    """Raised when a versioned write finds the row changed since it was read.

    Recoverable: the caller should re-read the entity and re-run the decision.
    """

    def __init__(self, kind: str, entity_id: str, expected_version: int):
        self.kind = kind
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent modification of {kind} {entity_id}: "
            f"expected version {expected_version}"
        )

def _rows_affected(status: str) -> int:
    return int(status.split()[-1])

class ProjectStore:
    """PostgreSQL document store with optimistic versioning per entity"""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.connection_pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database connection pool and create tables"""
        self.connection_pool = await asyncpg.create_pool(
            self.database_url,
            min_size=5,
            max_size=20,
            command_timeout=60
        )
        await self._create_tables()
        await self._create_indexes()

    async def _create_tables(self):
        async with self.connection_pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    project_id VARCHAR(64) PRIMARY KEY,
                    name TEXT NOT NULL,
                    initial_budget NUMERIC(14, 2) NOT NULL,
                    budget NUMERIC(14, 2) NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS project_tasks (
                    task_id VARCHAR(64) PRIMARY KEY,
                    project_id VARCHAR(64) REFERENCES projects(project_id) ON DELETE CASCADE,
                    document JSONB NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS project_transactions (
                    transaction_id VARCHAR(64) PRIMARY KEY,
                    project_id VARCHAR(64) REFERENCES projects(project_id) ON DELETE CASCADE,
                    document JSONB NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # One row per credited transaction; the primary key is the idempotence gate
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS budget_credits (
                    transaction_id VARCHAR(64) PRIMARY KEY,
                    project_id VARCHAR(64) REFERENCES projects(project_id) ON DELETE CASCADE,
                    amount NUMERIC(14, 2) NOT NULL,
                    credited_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    async def _create_indexes(self):
        async with self.connection_pool.acquire() as conn:
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_project ON project_tasks(project_id)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_project ON project_transactions(project_id)")

    async def create_project(self, project: Project) -> None:
        async with self.connection_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("""
                    INSERT INTO projects (project_id, name, initial_budget, budget)
                    VALUES ($1, $2, $3, $4)
                """, project.id, project.name, project.initial_budget, project.budget)

                for task in project.tasks:
                    await self._insert_task(conn, project.id, task)
                for transaction in project.transactions:
                    await self._insert_transaction(conn, project.id, transaction)

        logger.info("Project created",
                   project_id=project.id,
                   tasks=len(project.tasks),
                   transactions=len(project.transactions))

    async def load_project(self, project_id: str) -> Optional[Project]:
        """Read the full aggregate: project row, tasks and transactions"""
        async with self.connection_pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM projects WHERE project_id = $1
            """, project_id)

            if not row:
                return None

            task_rows = await conn.fetch("""
                SELECT task_id, document, version FROM project_tasks
                WHERE project_id = $1 ORDER BY task_id
            """, project_id)

            transaction_rows = await conn.fetch("""
                SELECT transaction_id, document, version FROM project_transactions
                WHERE project_id = $1 ORDER BY transaction_id
            """, project_id)

        return Project(
            id=row["project_id"],
            name=row["name"],
            initial_budget=Decimal(row["initial_budget"]),
            budget=Decimal(row["budget"]),
            tasks=tuple(
                task_from_document(r["task_id"], json.loads(r["document"]), r["version"])
                for r in task_rows
            ),
            transactions=tuple(
                transaction_from_document(r["transaction_id"], json.loads(r["document"]), r["version"])
                for r in transaction_rows
            ),
            version=row["version"]
        )

    async def list_project_ids(self) -> List[str]:
        async with self.connection_pool.acquire() as conn:
            rows = await conn.fetch("SELECT project_id FROM projects ORDER BY project_id")
        return [r["project_id"] for r in rows]

    async def add_task(self, project_id: str, task: Task) -> Task:
        async with self.connection_pool.acquire() as conn:
            await self._insert_task(conn, project_id, task)
        logger.info("Task added", project_id=project_id, task_id=task.id)
        return replace(task, version=0)

    async def save_task(self, project_id: str, task: Task) -> Task:
        """Write `task` if its row still has `task.version`; returns the bumped task"""
        async with self.connection_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE project_tasks
                SET document = $3, version = version + 1, updated_at = CURRENT_TIMESTAMP
                WHERE task_id = $1 AND project_id = $2 AND version = $4
            """, task.id, project_id, json.dumps(task_to_document(task)), task.version)

        if _rows_affected(result) == 0:
            raise ConcurrentModificationError("task", task.id, task.version)

        logger.info("Task saved",
                   project_id=project_id,
                   task_id=task.id,
                   status=task.status.value,
                   version=task.version + 1)
        return replace(task, version=task.version + 1)

    async def add_transaction(self, project_id: str, transaction: FinancialTransaction) -> FinancialTransaction:
        async with self.connection_pool.acquire() as conn:
            await self._insert_transaction(conn, project_id, transaction)
        logger.info("Transaction added", project_id=project_id, transaction_id=transaction.id)
        return replace(transaction, version=0)

    async def save_transaction(self, project_id: str,
                               transaction: FinancialTransaction) -> FinancialTransaction:
        async with self.connection_pool.acquire() as conn:
            await self._update_transaction(conn, project_id, transaction)

        logger.info("Transaction saved",
                   project_id=project_id,
                   transaction_id=transaction.id,
                   status=transaction.status.value,
                   version=transaction.version + 1)
        return replace(transaction, version=transaction.version + 1)

    async def apply_budget_credit(self, project_id: str, credited: FinancialTransaction) -> bool:
        """Atomically credit `credited.amount` to the project budget once.

        `credited` is the transaction as returned by reconciliation (status
        PAID, version as read). Returns False when the credit was already
        recorded; raises ConcurrentModificationError if the transaction row
        changed since it was read, rolling the credit back.
        """
        async with self.connection_pool.acquire() as conn:
            async with conn.transaction():
                inserted = await conn.fetchval("""
                    INSERT INTO budget_credits (transaction_id, project_id, amount)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (transaction_id) DO NOTHING
                    RETURNING transaction_id
                """, credited.id, project_id, credited.amount)

                if inserted is None:
                    logger.warning("Budget credit already recorded",
                                  project_id=project_id,
                                  transaction_id=credited.id)
                    return False

                await conn.execute("""
                    UPDATE projects
                    SET budget = budget + $2, version = version + 1, updated_at = CURRENT_TIMESTAMP
                    WHERE project_id = $1
                """, project_id, credited.amount)

                await self._update_transaction(conn, project_id, credited)

        logger.info("Budget credit recorded",
                   project_id=project_id,
                   transaction_id=credited.id,
                   amount=str(credited.amount))
        return True

    async def _insert_task(self, conn, project_id: str, task: Task):
        await conn.execute("""
            INSERT INTO project_tasks (task_id, project_id, document)
            VALUES ($1, $2, $3)
        """, task.id, project_id, json.dumps(task_to_document(task)))

    async def _insert_transaction(self, conn, project_id: str, transaction: FinancialTransaction):
        await conn.execute("""
            INSERT INTO project_transactions (transaction_id, project_id, document)
            VALUES ($1, $2, $3)
        """, transaction.id, project_id, json.dumps(transaction_to_document(transaction)))

    async def _update_transaction(self, conn, project_id: str, transaction: FinancialTransaction):
        result = await conn.execute("""
            UPDATE project_transactions
            SET document = $3, version = version + 1, updated_at = CURRENT_TIMESTAMP
            WHERE transaction_id = $1 AND project_id = $2 AND version = $4
        """, transaction.id, project_id,
            json.dumps(transaction_to_document(transaction)), transaction.version)

        if _rows_affected(result) == 0:
            raise ConcurrentModificationError("transaction", transaction.id, transaction.version)

    async def close(self):
        """Close database connection pool"""
        if self.connection_pool:
            await self.connection_pool.close()
