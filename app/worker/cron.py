"""Cron: fail abandoned generations and settle refunds still due."""

from datetime import datetime, timedelta

from app.core.config import get_settings
from app.core.logging import get_logger
from app.services import generations as generations_service
from app.services.generation_state import FAILED, GenerationStateMachine, settle_refund

log = get_logger(__name__)

ABANDONED_MESSAGE = "Generation abandoned before completion"


async def run_reconcile_generations(now: datetime | None = None) -> dict[str, int]:
    """
    Stale pending/processing records (no update for timeout + grace) are failed, which refunds them.
    Failed records whose refund could not be credited at the time are settled.
    Returns counts for logging.
    """
    settings = get_settings()
    older_than = timedelta(seconds=settings.synthesis_timeout_seconds + settings.reconcile_grace_seconds)
    machine = GenerationStateMachine()
    failed = 0
    stale = await generations_service.find_stale(older_than, now=now)
    for record in stale:
        if await machine.advance(record.id, record.status, FAILED, error_message=ABANDONED_MESSAGE):
            failed += 1
    settled = 0
    for record in await generations_service.find_unsettled_refunds():
        if await settle_refund(record):
            settled += 1
    if stale or settled:
        log.info("reconcile_generations", stale=len(stale), failed=failed, refunds_settled=settled)
    return {"stale": len(stale), "failed": failed, "refunds_settled": settled}
