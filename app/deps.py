"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Depends, Header

from app.core.exceptions import BadRequestError, UnauthorizedError
from app.models.user_account import UserAccount
from app.services.session_tracks import SessionTrackCache, sessions

DEFAULT_SESSION_ID = "default"


def parse_object_id(value: str, what: str = "id") -> PydanticObjectId:
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError) as e:
        raise BadRequestError(f"Invalid {what}") from e


async def get_current_user(x_user_id: str | None = Header(None, alias="X-User-Id")) -> UserAccount:
    """Dependency: account for the identity forwarded by the auth layer."""
    if not x_user_id:
        raise UnauthorizedError("Not authenticated")
    try:
        user_id = PydanticObjectId(x_user_id)
    except (InvalidId, TypeError) as e:
        raise UnauthorizedError("Invalid user id") from e
    user = await UserAccount.get(user_id)
    if not user:
        raise UnauthorizedError("User not found")
    return user


def session_key(user: UserAccount, x_session_id: str | None) -> str:
    return f"{user.id}:{(x_session_id or '').strip() or DEFAULT_SESSION_ID}"


async def get_session_tracks(
    user: UserAccount = Depends(get_current_user),
    x_session_id: str | None = Header(None, alias="X-Session-Id"),
) -> SessionTrackCache:
    """Dependency: the caller's in-memory track cache for this session."""
    return sessions.get_or_create(session_key(user, x_session_id))
