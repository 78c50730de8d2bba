"""
Observability and Logging Service
"""

import logging
import sys

import structlog
from typing import Optional

from reelforge.config.settings import settings


logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=getattr(logging, settings.log_level, logging.INFO),
)

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
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

# Get logger
logger = structlog.get_logger("reelforge")


def log_failure_classification(
    error_code: str,
    classification: str,
    retryable: bool,
    job_id: Optional[str] = None,
) -> None:
    """
    Log failure classification event

    Args:
        error_code: Error code (e.g., "PROVIDER_RATE_LIMIT", "FFMPEG_ERROR")
        classification: Error classification ("retryable" or "non_retryable")
        retryable: Whether error is retryable
        job_id: Optional job ID for context
    """
    log_data = {
        "error_code": error_code,
        "classification": classification,
        "retryable": retryable,
    }
    if job_id:
        log_data["job_id"] = job_id

    logger.error("failure_classified", **log_data)


def log_correlation_divergence(
    job_id: str,
    project_id: str,
    reason: str,
    run_ref: Optional[str] = None,
) -> None:
    """
    Log a completed job that could not be matched to a scene

    The job keeps its result; no scene is touched.
    """
    logger.warning(
        "correlation_divergence",
        job_id=job_id,
        project_id=project_id,
        run_ref=run_ref,
        reason=reason,
    )


def log_retry_scheduled(
    project_id: str,
    scene_id: str,
    previous_job_id: Optional[str],
    retries: int,
    cap: int,
) -> None:
    logger.info(
        "retry_scheduled",
        project_id=project_id,
        scene_id=scene_id,
        previous_job_id=previous_job_id,
        retries=retries,
        cap=cap,
    )


def log_compose_completed(
    project_id: str,
    job_id: str,
    clip_count: int,
    duration_ms: int,
    total_cost: float,
    total_generation_ms: int,
) -> None:
    """
    Log final composition and the project rollup written with it
    """
    logger.info(
        "compose_completed",
        project_id=project_id,
        job_id=job_id,
        clip_count=clip_count,
        duration_ms=duration_ms,
        total_cost=total_cost,
        total_generation_ms=total_generation_ms,
    )
