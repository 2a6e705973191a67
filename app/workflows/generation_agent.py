"""Generation flow: reserve tokens, create the record, then drive synthesis to a terminal state in the background."""

import asyncio
from typing import TypedDict

from beanie import PydanticObjectId
from langgraph.graph import END, START, StateGraph
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.exceptions import NotFoundError, PersistenceFailure, SynthesisFailure, SynthesisTimeout
from app.core.logging import get_logger
from app.models.generation import GenerationRecord
from app.models.user_account import UserAccount
from app.services import generations as generations_service
from app.services import ledger
from app.services.generation_state import (
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    GenerationStateMachine,
    refund_key,
)
from app.services.pricing import calculate_tokens, validate_generation_request
from app.services.session_tracks import SessionTrackCache
from app.synthesis.base import SynthesisProvider, get_synthesis_provider

log = get_logger(__name__)

# generation id -> background task; holds a strong reference until the run finishes
_inflight: dict[str, asyncio.Task] = {}


class GenerationState(TypedDict):
    generation_id: str
    prompt: str
    model: str
    duration_seconds: int
    audio_url: str
    error: str
    status: str


def build_generation_graph(
    machine: GenerationStateMachine,
    provider: SynthesisProvider,
    timeout: float,
):
    async def _start(state: GenerationState) -> dict:
        record = await machine.advance(PydanticObjectId(state["generation_id"]), PENDING, PROCESSING)
        if record is None:
            return {"status": ""}
        return {"status": PROCESSING}

    async def _synthesize(state: GenerationState) -> dict:
        try:
            result = await asyncio.wait_for(
                provider.generate(state["prompt"], state["model"], state["duration_seconds"]),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return {"error": SynthesisTimeout(timeout).message}
        except SynthesisFailure as e:
            return {"error": e.message}
        except Exception as e:
            log.exception("synthesis_error", generation_id=state["generation_id"], provider=provider.name)
            return {"error": f"Music generation failed: {e}"}
        return {"audio_url": result.audio_url}

    async def _complete(state: GenerationState) -> dict:
        record = await machine.advance(
            PydanticObjectId(state["generation_id"]),
            PROCESSING,
            COMPLETED,
            audio_url=state["audio_url"],
        )
        return {"status": record.status if record else state["status"]}

    async def _fail(state: GenerationState) -> dict:
        record = await machine.advance(
            PydanticObjectId(state["generation_id"]),
            PROCESSING,
            FAILED,
            error_message=state["error"],
        )
        return {"status": record.status if record else state["status"]}

    def _after_start(state: GenerationState) -> str:
        return "synthesize" if state["status"] == PROCESSING else END

    def _after_synthesize(state: GenerationState) -> str:
        return "complete" if state["audio_url"] else "fail"

    builder = StateGraph(GenerationState)
    builder.add_node("start", _start)
    builder.add_node("synthesize", _synthesize)
    builder.add_node("complete", _complete)
    builder.add_node("fail", _fail)
    builder.add_edge(START, "start")
    builder.add_conditional_edges("start", _after_start, {"synthesize": "synthesize", END: END})
    builder.add_conditional_edges("synthesize", _after_synthesize, {"complete": "complete", "fail": "fail"})
    builder.add_edge("complete", END)
    builder.add_edge("fail", END)
    return builder.compile()


async def run_generation(
    record: GenerationRecord,
    tracks: SessionTrackCache | None = None,
    provider: SynthesisProvider | None = None,
    timeout: float | None = None,
) -> dict:
    """Drive a pending record to completed or failed; returns the final graph state."""
    owned = provider is None
    provider = provider or get_synthesis_provider()
    timeout = get_settings().synthesis_timeout_seconds if timeout is None else timeout
    graph = build_generation_graph(GenerationStateMachine(tracks), provider, timeout)
    initial: GenerationState = {
        "generation_id": str(record.id),
        "prompt": record.prompt,
        "model": record.model,
        "duration_seconds": record.duration_seconds,
        "audio_url": "",
        "error": "",
        "status": record.status,
    }
    try:
        result = await graph.ainvoke(initial)
    finally:
        if owned:
            await provider.aclose()
    return dict(result)


async def submit_generation(
    user_id: PydanticObjectId,
    prompt: str,
    model: str | None,
    duration_seconds: int,
    tracks: SessionTrackCache | None = None,
    provider: SynthesisProvider | None = None,
    timeout: float | None = None,
) -> GenerationRecord:
    """
    Validate, reserve tokens, create the pending record, and start the run.
    Returns as soon as the record exists; the run continues even if the caller goes away.
    InvalidRequestError and InsufficientBalanceError leave no record and no transaction behind.
    """
    if model is None:
        try:
            account = await UserAccount.get(user_id)
        except PyMongoError as e:
            raise PersistenceFailure(f"Could not read account: {e}") from e
        if not account:
            raise NotFoundError("User not found")
        model = account.default_model
    prompt = validate_generation_request(prompt, model, duration_seconds)
    cost = calculate_tokens(model, duration_seconds)

    generation_id = PydanticObjectId()
    await ledger.reserve(user_id, cost, generation_id=generation_id)
    try:
        record = await generations_service.create_generation(
            generation_id, user_id, prompt, model, duration_seconds, cost
        )
    except (Exception, asyncio.CancelledError):
        # covers a caller cancelled mid-write: there is no record for the reconciler to find
        log.warning("generation_create_failed_refunding", generation_id=str(generation_id), user_id=str(user_id))
        await asyncio.shield(
            ledger.credit(user_id, cost, "refund", generation_id=generation_id, idempotency_key=refund_key(generation_id))
        )
        raise
    log.info(
        "generation_submitted",
        generation_id=str(generation_id),
        user_id=str(user_id),
        model=model,
        duration_seconds=duration_seconds,
        tokens=cost,
    )
    _start_background(record, tracks, provider, timeout)
    return record


def _start_background(
    record: GenerationRecord,
    tracks: SessionTrackCache | None,
    provider: SynthesisProvider | None,
    timeout: float | None,
) -> asyncio.Task:
    key = str(record.id)
    task = asyncio.create_task(run_generation(record, tracks, provider, timeout), name=f"generation:{key}")
    _inflight[key] = task

    def _done(t: asyncio.Task) -> None:
        _inflight.pop(key, None)
        if t.cancelled():
            log.warning("generation_run_cancelled", generation_id=key)
            return
        exc = t.exception()
        if exc is not None:
            # record is left for the reconciler (stale run or refund still due)
            log.error("generation_run_failed", generation_id=key, error=str(exc), error_type=type(exc).__name__)

    task.add_done_callback(_done)
    return task


async def wait_for_generation(user_id: PydanticObjectId, generation_id: PydanticObjectId) -> GenerationRecord:
    """Wait for an in-flight run (without cancelling it if the waiter is cancelled) and return the stored record."""
    task = _inflight.get(str(generation_id))
    if task is not None:
        await asyncio.shield(task)
    return await generations_service.get_generation(user_id, generation_id)