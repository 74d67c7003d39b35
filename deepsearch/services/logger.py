"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from deepsearch.config import settings

# Configure loguru
LOG_DIR = Path(settings.log_dir)
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Remove default handler
logger.remove()

# Add console handler with color
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

# Add file handler
logger.add(
    LOG_DIR / "deepsearch_{time:YYYY-MM-DD}.log",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    level="DEBUG",
    rotation="00:00",  # New file at midnight
    retention="7 days",
    compression="zip",
)

# Reduce noise from framework/network libraries
for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log an LLM API call."""
    call_data = {
        "timestamp": _now(),
        "model": model,
        "caller": caller,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "duration_ms": duration_ms,
        "status": status,
        "error": error,
    }
    if error:
        logger.error(f"LLM_CALL_FAILED: {call_data}")
    else:
        logger.info(f"LLM_CALL: {call_data}")


def log_search_call(
    provider: str,
    query: str,
    result_count: int = 0,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log a web search call."""
    call_data = {
        "timestamp": _now(),
        "provider": provider,
        "query": query[:120],
        "result_count": result_count,
        "duration_ms": duration_ms,
        "error": error,
    }
    if error:
        logger.warning(f"SEARCH_CALL_FAILED: {call_data}")
    else:
        logger.info(f"SEARCH_CALL: {call_data}")


def log_research_step(
    run_id: str,
    step: int,
    status: str,
    data: Optional[dict] = None,
) -> None:
    """Log a research step transition."""
    step_data = {
        "timestamp": _now(),
        "run_id": run_id,
        "step": step,
        "status": status,
        "data": data,
    }
    if status == "error":
        logger.warning(f"RESEARCH_STEP: {step_data}")
    else:
        logger.info(f"RESEARCH_STEP: {step_data}")


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log a database operation."""
    op_data = {
        "timestamp": _now(),
        "operation": operation,
        "table": table,
        "status": status,
        "details": details,
        "error": error,
    }
    if error:
        logger.error(f"DB_OPERATION_FAILED: {op_data}")
    else:
        logger.debug(f"DB_OPERATION: {op_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs: Any,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
