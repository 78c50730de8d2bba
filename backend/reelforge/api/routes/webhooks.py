"""
Webhook API Routes - Provider completion callbacks
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from reelforge.api.dependencies import get_engine
from reelforge.config.constants import WEBHOOK_ID_HEADER
from reelforge.core.replicate_adapter import parse_replicate_webhook
from reelforge.models import get_db
from reelforge.services.errors import NotFoundError, PreconditionError
from reelforge.services.observability import logger
from reelforge.services.reconciler import ReconciliationEngine


router = APIRouter()


@router.post("/webhooks/replicate")
async def replicate_webhook(
    request: Request,
    db: Session = Depends(get_db),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Apply a Replicate prediction callback.

    Deliveries are at-least-once and unordered; anything structurally valid
    is acknowledged so the provider stops retrying. Only a body without a
    prediction id is rejected.
    """
    try:
        payload = await request.json()
        snapshot = parse_replicate_webhook(payload)
    except ValueError as e:
        logger.warning("webhook_rejected", error=str(e))
        raise PreconditionError(str(e), code="INVALID_WEBHOOK") from e

    event_id = request.headers.get(WEBHOOK_ID_HEADER)
    logger.info(
        "webhook_received",
        run_ref=snapshot.run_ref,
        state=snapshot.state.value,
        event_id=event_id,
    )

    try:
        result = await engine.apply_completion(db, snapshot, event_id=event_id)
    except NotFoundError:
        logger.warning("webhook_unknown_run", run_ref=snapshot.run_ref)
        return {"received": True, "applied": False}

    return {
        "received": True,
        "applied": result.applied,
        "job_id": result.job_id,
        "job_status": result.job_status,
        "scene_id": result.scene_id,
        "divergence": result.divergence,
    }
