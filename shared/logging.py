# shared/logging.py
import structlog
import logging
import sys
from typing import Any, Dict, List, Optional

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Get logger instance
logger = structlog.get_logger()

# Configure standard library logging
logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=logging.INFO,
)

def setup_logging(level: str = "INFO", json_logs: bool = True):
    """Setup logging configuration"""
    log_level = getattr(logging, level.upper())
    logging.getLogger().setLevel(log_level)
    
    if not json_logs:
        # Use human-readable format for development
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.dev.ConsoleRenderer()
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

def log_approval_decision(
    entity_id: str,
    stage: str,
    party: str,
    action: str,
    actor_id: str,
    accepted: bool,
    error_code: Optional[str] = None,
    stage_fully_approved: bool = False
):
    """Log an approve/reject/revoke decision on an approval cell"""
    extra_data = {
        "entity_id": entity_id,
        "stage": stage,
        "party": party,
        "action": action,
        "actor_id": actor_id,
        "accepted": accepted
    }

    if error_code:
        extra_data["error_code"] = error_code
        logger.warning("Approval decision rejected", **extra_data)
    else:
        extra_data["stage_fully_approved"] = stage_fully_approved
        logger.info("Approval decision applied", **extra_data)

def log_transition_rejected(
    task_id: str,
    requested_status: str,
    error_code: str,
    actor_id: Optional[str] = None,
    additional_context: Optional[Dict[str, Any]] = None
):
    """Log a status transition refused by the guard"""
    extra_data = {
        "task_id": task_id,
        "requested_status": requested_status,
        "error_code": error_code,
        "actor_id": actor_id
    }

    if additional_context:
        extra_data.update(additional_context)

    logger.warning("Status transition rejected", **extra_data)

def log_budget_reconciled(
    project_id: str,
    transaction_id: str,
    amount: Any,
    new_budget: Any,
    applied: bool
):
    """Log an additional-budget credit attempt"""
    logger.info("Budget reconciliation",
               project_id=project_id,
               transaction_id=transaction_id,
               amount=str(amount),
               new_budget=str(new_budget),
               applied=applied)

def log_overdue_sweep(
    today: str,
    promoted_ids: List[str],
    project_id: Optional[str] = None
):
    """Log the result of an overdue sweep"""
    logger.info("Overdue sweep",
               project_id=project_id,
               today=today,
               promoted_count=len(promoted_ids),
               promoted_ids=promoted_ids)
