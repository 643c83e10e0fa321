# main.py
import os
import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

from fastapi import FastAPI

# Internal imports
from infrastructure.storage.project_store import ProjectStore
from application.orchestrators.approval_orchestrator import ApprovalOrchestrator
from infrastructure.web.approval_api import router as approval_router, get_orchestrator
from shared.logging import logger, setup_logging

# Global application state
app_state = {}

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""

    # Startup
    logger.info("Starting approval workflow service")

    # Setup logging
    setup_logging(
        level=os.getenv("LOG_LEVEL", "INFO"),
        json_logs=os.getenv("JSON_LOGS", "true").lower() == "true"
    )

    database_url = os.getenv("DATABASE_URL", "postgresql://localhost:5432/approval_workflow")
    sweep_interval = int(os.getenv("OVERDUE_SWEEP_INTERVAL_SECONDS", "3600"))

    try:
        store = ProjectStore(database_url)
        await store.initialize()
        app_state["store"] = store

        orchestrator = ApprovalOrchestrator(store)
        app_state["orchestrator"] = orchestrator

        logger.info("Application initialized successfully")

        app_state["sweeper"] = asyncio.create_task(sweep_overdue_entities(sweep_interval))

    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down approval workflow service")

    if "sweeper" in app_state:
        app_state["sweeper"].cancel()

    if "store" in app_state:
        await app_state["store"].close()

app = FastAPI(
    title="Approval Workflow Service",
    description="Dual-party approval workflow for project tasks and financial transactions",
    version="1.0.0",
    lifespan=lifespan
)

app.dependency_overrides[get_orchestrator] = lambda: app_state["orchestrator"]

@app.get("/health")
async def health_check():
    """System health check"""

    try:
        async with app_state["store"].connection_pool.acquire() as conn:
            await conn.fetchval("SELECT 1")

        return {
            "status": "healthy",
            "database": "connected",
            "version": "1.0.0",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

app.include_router(approval_router)

# Background tasks
async def sweep_overdue_entities(interval_seconds: int):
    """Promote overdue tasks and transactions across all projects"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            store = app_state["store"]
            orchestrator = app_state["orchestrator"]
            today = date.today()

            for project_id in await store.list_project_ids():
                promoted = await orchestrator.run_overdue_sweep(project_id, today)
                if promoted:
                    logger.info("Promoted overdue items", project_id=project_id, count=len(promoted))

        except Exception as e:
            logger.error("Failed to sweep overdue items", error=str(e))

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "0.0.0.0")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.getenv("RELOAD", "false").lower() == "true"
    )
