"""
Generation status machine.

    pending    -> processing | failed
    processing -> completed  | failed

completed and failed are terminal. Every transition is a compare-and-set on
the stored status, and the effect bound to the target state (track
registration on completed, refund on failed) runs only in the caller whose
compare-and-set matched. Re-observing a terminal state therefore never
repeats an effect. pending -> failed is only taken by the reconciler for
records orphaned before synthesis started.
"""

from datetime import datetime, timedelta

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Or, Set
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.exceptions import InvalidTransitionError, PersistenceFailure
from app.core.logging import get_logger
from app.models.generation import GenerationRecord
from app.models.token_transaction import TokenTransaction
from app.services import ledger
from app.services.session_tracks import SessionTrack, SessionTrackCache

log = get_logger(__name__)

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({PROCESSING, FAILED}),
    PROCESSING: frozenset({COMPLETED, FAILED}),
    COMPLETED: frozenset(),
    FAILED: frozenset(),
}
IN_FLIGHT = (PENDING, PROCESSING)

DEFAULT_FAILURE_MESSAGE = "Music generation failed"


def can_transition(source: str, target: str) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


def refund_key(generation_id: PydanticObjectId) -> str:
    return f"refund:{generation_id}"


class GenerationStateMachine:
    """Drives GenerationRecord status; ``tracks`` receives completed tracks for the submitting session."""

    def __init__(self, tracks: SessionTrackCache | None = None) -> None:
        self.tracks = tracks
        self._effects = {
            COMPLETED: self._on_completed,
            FAILED: self._on_failed,
        }

    async def advance(
        self,
        generation_id: PydanticObjectId,
        source: str,
        target: str,
        audio_url: str | None = None,
        error_message: str | None = None,
    ) -> GenerationRecord | None:
        """
        Move the record from ``source`` to ``target``.
        Returns the updated record, or None if the stored status was no longer ``source``
        (another caller already moved it); in that case no effect runs.
        """
        if not can_transition(source, target):
            raise InvalidTransitionError(source, target)
        now = datetime.utcnow()
        fields = {
            GenerationRecord.status: target,
            GenerationRecord.updated_at: now,
        }
        if target == COMPLETED:
            fields[GenerationRecord.completed_at] = now
            if self.tracks is not None:
                fields[GenerationRecord.title] = self.tracks.next_title()
        elif target == FAILED:
            fields[GenerationRecord.error_message] = error_message or DEFAULT_FAILURE_MESSAGE
            fields[GenerationRecord.refund_due] = True
        try:
            record = await GenerationRecord.find_one(
                GenerationRecord.id == generation_id,
                GenerationRecord.status == source,
            ).update(Set(fields), response_type=UpdateResponse.NEW_DOCUMENT)
        except PyMongoError as e:
            raise PersistenceFailure(f"Could not update generation: {e}") from e
        if record is None:
            log.info("generation_transition_skipped", generation_id=str(generation_id), source=source, target=target)
            return None
        log.info("generation_transition", generation_id=str(generation_id), source=source, target=target)
        effect = self._effects.get(target)
        if effect is not None:
            await effect(record, audio_url)
        return record

    async def _on_completed(self, record: GenerationRecord, audio_url: str | None) -> None:
        log.info("generation_completed", generation_id=str(record.id), user_id=str(record.user_id))
        if self.tracks is None or not audio_url:
            return
        track = SessionTrack(
            id=str(record.id),
            title=record.title or self.tracks.next_title(),
            audio_url=audio_url,
            generation=record,
        )
        if self.tracks.add(track):
            self.tracks.select(track.id)

    async def _on_failed(self, record: GenerationRecord, audio_url: str | None) -> None:
        log.info(
            "generation_failed",
            generation_id=str(record.id),
            user_id=str(record.user_id),
            error=record.error_message,
        )
        await settle_refund(record)


async def settle_refund(record: GenerationRecord) -> TokenTransaction | None:
    """
    Credit back the reserved tokens of a failed generation and clear refund_due.

    The refund is claimed on the record first, so when the run and the reconciler
    race only one of them credits; the other returns None. A claim left behind by
    a crashed process expires after RECONCILE_GRACE_SECONDS. Returns the refund
    entry written by this call, or None if nothing was credited here.
    """
    if record.status != FAILED or not record.refund_due:
        return None
    if not await _claim_refund(record.id):
        log.info("refund_claim_taken", generation_id=str(record.id))
        return None
    try:
        # a previous holder may have credited and then died before clearing the flag
        entry = await ledger.find_by_idempotency_key(record.user_id, refund_key(record.id))
        credited = entry is None
        if credited:
            entry = await ledger.credit(
                record.user_id,
                record.tokens_reserved,
                "refund",
                generation_id=record.id,
                idempotency_key=refund_key(record.id),
            )
    except Exception:
        await _release_refund_claim(record.id)
        raise
    try:
        await GenerationRecord.find_one(GenerationRecord.id == record.id).update(
            Set({GenerationRecord.refund_due: False, GenerationRecord.refund_claimed_at: None})
        )
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not mark refund settled: {e}") from e
    record.refund_due = False
    record.refund_claimed_at = None
    if not credited:
        log.info("refund_already_credited", generation_id=str(record.id), user_id=str(record.user_id))
        return None
    log.info("refund_settled", generation_id=str(record.id), user_id=str(record.user_id), amount=record.tokens_reserved)
    from app.core.audit import log_event
    try:
        await log_event(
            str(record.user_id),
            "generation_refunded",
            "generation",
            str(record.id),
            {"tokens": record.tokens_reserved, "error": record.error_message},
        )
    except PyMongoError:
        # the refund itself is applied; only the audit trail is missing
        log.exception("refund_audit_failed", generation_id=str(record.id))
    return entry


async def _claim_refund(generation_id: PydanticObjectId) -> bool:
    now = datetime.utcnow()
    expired = now - timedelta(seconds=get_settings().reconcile_grace_seconds)
    try:
        claimed = await GenerationRecord.find_one(
            GenerationRecord.id == generation_id,
            GenerationRecord.refund_due == True,  # noqa: E712
            Or(
                GenerationRecord.refund_claimed_at == None,  # noqa: E711
                GenerationRecord.refund_claimed_at < expired,
            ),
        ).update(Set({GenerationRecord.refund_claimed_at: now}), response_type=UpdateResponse.NEW_DOCUMENT)
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not claim refund: {e}") from e
    return claimed is not None


async def _release_refund_claim(generation_id: PydanticObjectId) -> None:
    try:
        await GenerationRecord.find_one(GenerationRecord.id == generation_id).update(
            Set({GenerationRecord.refund_claimed_at: None})
        )
    except PyMongoError:
        # the claim expires on its own; the reconciler retries after that
        log.exception("refund_claim_release_failed", generation_id=str(generation_id))
