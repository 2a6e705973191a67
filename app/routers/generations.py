from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.core.pagination import Page, paginate
from app.deps import get_current_user, get_session_tracks, parse_object_id
from app.models.generation import GenerationModel, GenerationStatus
from app.models.user_account import UserAccount
from app.services import generations as generations_service
from app.services.pricing import calculate_tokens, get_pricing
from app.services.session_tracks import SessionTrackCache
from app.workflows.generation_agent import submit_generation

router = APIRouter()


class GenerationCreate(BaseModel):
    prompt: str
    model: GenerationModel | None = None  # account default when omitted
    duration_seconds: int = Field(60)


@router.post("", status_code=202)
async def generation_create(
    body: GenerationCreate,
    user: UserAccount = Depends(get_current_user),
    tracks: SessionTrackCache = Depends(get_session_tracks),
):
    """Reserve tokens and start a generation; poll GET /{id} for the outcome."""
    record = await submit_generation(user.id, body.prompt, body.model, body.duration_seconds, tracks=tracks)
    return generations_service.serialize_generation(record)


@router.get("")
async def generations_list(
    user: UserAccount = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    status: GenerationStatus | None = None,
    q: str | None = Query(None, max_length=200),
):
    """Generation history (newest first), filtered by status and prompt/title text."""
    limit, offset = paginate(limit, offset)
    items, total = await generations_service.list_generations(user.id, limit, offset, status=status, q=q)
    return Page[dict](
        items=[generations_service.serialize_generation(g) for g in items],
        limit=limit,
        offset=offset,
        total=total,
    )


@router.get("/pricing")
async def generations_pricing():
    """Per-model token rates and duration limits."""
    return {"models": get_pricing()}


@router.get("/quote")
async def generation_quote(model: GenerationModel, duration_seconds: int = Query(..., ge=1)):
    return {"model": model, "duration_seconds": duration_seconds, "tokens": calculate_tokens(model, duration_seconds)}


@router.get("/stats")
async def generations_stats(user: UserAccount = Depends(get_current_user)):
    """Dashboard: this month's usage, favorite model, recent generations."""
    stats = await generations_service.dashboard_stats(user.id)
    stats["token_balance"] = user.token_balance
    return stats


@router.get("/{generation_id}")
async def generation_get(generation_id: str, user: UserAccount = Depends(get_current_user)):
    record = await generations_service.get_generation(user.id, parse_object_id(generation_id, "generation id"))
    return generations_service.serialize_generation(record)
