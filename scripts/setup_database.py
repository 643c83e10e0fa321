# scripts/setup_database.py
"""
Database setup script for the approval workflow service
Creates the project store tables, adds integrity constraints and verifies them
"""

import asyncio
import os
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import asyncpg
from infrastructure.storage.project_store import ProjectStore
from shared.logging import logger, setup_logging

EXPECTED_TABLES = {
    'projects',
    'project_tasks',
    'project_transactions',
    'budget_credits'
}

async def create_database_if_not_exists(admin_url: str, database_name: str):
    """Create database if it doesn't exist"""
    try:
        admin_conn = await asyncpg.connect(admin_url)

        db_exists = await admin_conn.fetchval(
            "SELECT 1 FROM pg_database WHERE datname = $1", database_name
        )

        if not db_exists:
            await admin_conn.execute(f'CREATE DATABASE "{database_name}"')
            logger.info(f"Created database: {database_name}")
        else:
            logger.info(f"Database already exists: {database_name}")

        await admin_conn.close()

    except Exception as e:
        logger.error(f"Failed to create database: {e}")
        raise

async def add_constraints(database_url: str):
    """Add integrity constraints the application relies on"""

    conn = await asyncpg.connect(database_url)

    try:
        logger.info("Adding data constraints...")

        await conn.execute("""
            ALTER TABLE projects DROP CONSTRAINT IF EXISTS chk_budget_non_negative;
            ALTER TABLE projects
            ADD CONSTRAINT chk_budget_non_negative
            CHECK (initial_budget >= 0 AND budget >= initial_budget)
        """)

        await conn.execute("""
            ALTER TABLE budget_credits DROP CONSTRAINT IF EXISTS chk_credit_non_negative;
            ALTER TABLE budget_credits
            ADD CONSTRAINT chk_credit_non_negative
            CHECK (amount >= 0)
        """)

        logger.info("✓ Added data constraints")

    finally:
        await conn.close()

async def verify_setup(database_url: str):
    """Verify the database setup is working correctly"""

    conn = await asyncpg.connect(database_url)

    try:
        logger.info("Verifying database setup...")

        tables = await conn.fetch("""
            SELECT table_name FROM information_schema.tables
            WHERE table_schema = 'public'
            ORDER BY table_name
        """)

        found_tables = {row['table_name'] for row in tables}

        if not EXPECTED_TABLES.issubset(found_tables):
            missing = EXPECTED_TABLES - found_tables
            raise Exception(f"Missing tables: {missing}")

        logger.info(f"✓ All {len(EXPECTED_TABLES)} tables found")

        # The credit table must reject a second row for the same transaction
        test_project_id = 'test-setup-verification'
        async with conn.transaction():
            await conn.execute("""
                INSERT INTO projects (project_id, name, initial_budget, budget)
                VALUES ($1, 'setup check', 0, 0)
            """, test_project_id)

            first = await conn.fetchval("""
                INSERT INTO budget_credits (transaction_id, project_id, amount)
                VALUES ($1, $1, 0) ON CONFLICT (transaction_id) DO NOTHING
                RETURNING transaction_id
            """, test_project_id)
            second = await conn.fetchval("""
                INSERT INTO budget_credits (transaction_id, project_id, amount)
                VALUES ($1, $1, 0) ON CONFLICT (transaction_id) DO NOTHING
                RETURNING transaction_id
            """, test_project_id)

            await conn.execute("DELETE FROM projects WHERE project_id = $1", test_project_id)

        if first is None or second is not None:
            raise Exception("budget_credits does not enforce one credit per transaction")

        logger.info("✓ Budget credit idempotence gate working")
        logger.info("Database verification completed successfully!")

    except Exception as e:
        logger.error(f"Database verification failed: {e}")
        raise
    finally:
        await conn.close()

async def main():
    """Main setup function"""

    setup_logging(level="INFO", json_logs=False)

    logger.info("Starting approval workflow database setup")

    database_url = os.getenv("DATABASE_URL")

    if not database_url:
        # Default local development setup
        host = os.getenv("DB_HOST", "localhost")
        port = os.getenv("DB_PORT", "5432")
        user = os.getenv("DB_USER", "postgres")
        password = os.getenv("DB_PASSWORD", "postgres")
        database = os.getenv("DB_NAME", "approval_workflow")

        database_url = f"postgresql://{user}:{password}@{host}:{port}/{database}"
        admin_url = f"postgresql://{user}:{password}@{host}:{port}/postgres"

        logger.info(f"Using database: {host}:{port}/{database}")

        try:
            await create_database_if_not_exists(admin_url, database)
        except Exception as e:
            logger.warning(f"Could not create database (may already exist): {e}")

    try:
        store = ProjectStore(database_url)
        await store.initialize()
        await store.close()
        logger.info("✓ Created project store tables and indexes")

        await add_constraints(database_url)
        await verify_setup(database_url)

        logger.info("🎉 Database setup completed successfully!")

    except Exception as e:
        logger.error(f"Database setup failed: {e}")
        sys.exit(1)

if __name__ == "__main__":
    asyncio.run(main())
