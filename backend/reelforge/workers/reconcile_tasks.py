"""
RQ task definitions for background reconciliation passes.

Run a worker with: rq worker --with-scheduler reconcile
"""

import asyncio
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from reelforge.config.settings import settings
from reelforge.models import SessionLocal
from reelforge.models.project import ProjectStatus
from reelforge.services.observability import logger
from reelforge.services.reconciler import build_engine
from reelforge.workers.queue import enqueue_after


def run_reconcile_pass(project_id: str) -> Dict[str, Any]:
    """
    One reconciliation pass; re-enqueues itself while the project is rendering
    """
    logger.info("reconcile_worker_start", project_id=project_id)
    db = SessionLocal()
    try:
        engine = build_engine()
        report = asyncio.run(engine.reconcile(db, project_id))
    except Exception as exc:
        logger.error("reconcile_worker_failed", project_id=project_id, error=str(exc))
        raise
    finally:
        db.close()

    if report.status == ProjectStatus.RENDERING.value:
        enqueue_after(run_reconcile_pass, settings.reconcile_interval_s, project_id)

    logger.info(
        "reconcile_worker_done",
        project_id=project_id,
        status=report.status,
        completed=report.progress.completed,
        total=report.progress.total,
    )
    return report.to_dict()


def schedule_reconcile_pass(project_id: str) -> Optional[str]:
    """
    Queue a background pass when background reconciliation is enabled

    Status polling drives the same passes, so a missing Redis only costs
    background progress.
    """
    if not settings.background_reconcile:
        return None

    try:
        rq_job = enqueue_after(run_reconcile_pass, 0, project_id)
    except RedisError as e:
        logger.warning("reconcile_enqueue_failed", project_id=project_id, error=str(e))
        return None

    logger.info("reconcile_queued", project_id=project_id, rq_job_id=rq_job.id)
    return rq_job.id
