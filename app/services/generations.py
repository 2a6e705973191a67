"""Generation records: creation, history, dashboard stats."""

import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from beanie.operators import In, Or, RegEx
from pymongo.errors import PyMongoError

from app.core.exceptions import NotFoundError, PersistenceFailure
from app.models.generation import GenerationRecord
from app.services.generation_state import FAILED, IN_FLIGHT
from app.services.pricing import MODELS, MODEL_DISPLAY_NAMES, format_duration

RECENT_LIMIT = 10


async def create_generation(
    generation_id: PydanticObjectId,
    user_id: PydanticObjectId,
    prompt: str,
    model: str,
    duration_seconds: int,
    tokens_reserved: int,
) -> GenerationRecord:
    record = GenerationRecord(
        id=generation_id,
        user_id=user_id,
        prompt=prompt,
        model=model,
        duration_seconds=duration_seconds,
        tokens_reserved=tokens_reserved,
        status="pending",
    )
    try:
        await record.insert()
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not create generation: {e}") from e
    return record


async def get_generation(user_id: PydanticObjectId, generation_id: PydanticObjectId) -> GenerationRecord:
    try:
        record = await GenerationRecord.find_one(
            GenerationRecord.id == generation_id,
            GenerationRecord.user_id == user_id,
        )
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not read generation: {e}") from e
    if not record:
        raise NotFoundError("Generation not found")
    return record


async def list_generations(
    user_id: PydanticObjectId,
    limit: int = 20,
    offset: int = 0,
    status: str | None = None,
    q: str | None = None,
) -> tuple[list[GenerationRecord], int]:
    """Newest first; ``q`` matches prompt or title, case-insensitive. Returns (page, total)."""
    filters = [GenerationRecord.user_id == user_id]
    if status:
        filters.append(GenerationRecord.status == status)
    if q and q.strip():
        pattern = re.escape(q.strip())
        filters.append(
            Or(
                RegEx(GenerationRecord.prompt, pattern, options="i"),
                RegEx(GenerationRecord.title, pattern, options="i"),
            )
        )
    try:
        query = GenerationRecord.find(*filters)
        total = await query.count()
        items = await (
            GenerationRecord.find(*filters)
            .sort(-GenerationRecord.created_at)
            .skip(offset)
            .limit(limit)
            .to_list()
        )
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not list generations: {e}") from e
    return items, total


def favorite_model(models: list[str]) -> str:
    """Most frequent model; ties go to the earlier tier, and V3_5 when there is no history."""
    if not models:
        return MODELS[0]
    counts = Counter(models)
    return max(MODELS, key=lambda m: (counts.get(m, 0), -MODELS.index(m)))


async def dashboard_stats(user_id: PydanticObjectId, now: datetime | None = None) -> dict[str, Any]:
    """Current calendar month (UTC) usage plus the most recent generations."""
    now = now or datetime.utcnow()
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    try:
        monthly = await GenerationRecord.find(
            GenerationRecord.user_id == user_id,
            GenerationRecord.created_at >= start_of_month,
        ).to_list()
        recent = (
            await GenerationRecord.find(GenerationRecord.user_id == user_id)
            .sort(-GenerationRecord.created_at)
            .limit(RECENT_LIMIT)
            .to_list()
        )
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not load dashboard: {e}") from e

    completed = [g for g in monthly if g.completed_at]
    avg_seconds = 0
    if completed:
        total = sum((g.completed_at - g.created_at).total_seconds() for g in completed)
        avg_seconds = round(total / len(completed))
    return {
        "monthly_generations": len(monthly),
        "monthly_tokens": sum(g.tokens_reserved for g in monthly),
        "avg_generation_seconds": avg_seconds,
        "favorite_model": favorite_model([g.model for g in monthly]),
        "recent": [serialize_generation(g) for g in recent],
    }


async def find_stale(older_than: timedelta, now: datetime | None = None, limit: int = 100) -> list[GenerationRecord]:
    """pending/processing records not touched for ``older_than``."""
    cutoff = (now or datetime.utcnow()) - older_than
    try:
        return await GenerationRecord.find(
            In(GenerationRecord.status, list(IN_FLIGHT)),
            GenerationRecord.updated_at < cutoff,
        ).limit(limit).to_list()
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not scan generations: {e}") from e


async def find_unsettled_refunds(limit: int = 100) -> list[GenerationRecord]:
    try:
        return await GenerationRecord.find(
            GenerationRecord.status == FAILED,
            GenerationRecord.refund_due == True,  # noqa: E712
        ).limit(limit).to_list()
    except PyMongoError as e:
        raise PersistenceFailure(f"Could not scan refunds: {e}") from e


def serialize_generation(g: GenerationRecord) -> dict[str, Any]:
    return {
        "id": str(g.id),
        "title": g.title or "Untitled",
        "prompt": g.prompt,
        "model": g.model,
        "model_name": MODEL_DISPLAY_NAMES[g.model],
        "duration_seconds": g.duration_seconds,
        "duration": format_duration(g.duration_seconds),
        "tokens_used": g.tokens_reserved,
        "status": g.status,
        "error_message": g.error_message,
        "created_at": g.created_at.isoformat(),
        "completed_at": g.completed_at.isoformat() if g.completed_at else None,
    }
