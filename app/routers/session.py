from fastapi import APIRouter, Depends, Header

from app.deps import get_current_user, get_session_tracks, session_key
from app.models.user_account import UserAccount
from app.services.session_tracks import SessionTrack, SessionTrackCache, sessions

router = APIRouter()


def _track_out(t: SessionTrack, active_id: str | None) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "audio_url": t.audio_url,
        "prompt": t.generation.prompt,
        "model": t.generation.model,
        "active": t.id == active_id,
    }


@router.get("/tracks")
async def session_tracks(tracks: SessionTrackCache = Depends(get_session_tracks)):
    """Tracks generated in this session (most recent first). Not kept after the session ends."""
    active = tracks.active
    active_id = active.id if active else None
    return {
        "tracks": [_track_out(t, active_id) for t in tracks.list()],
        "active_id": active_id,
    }


@router.post("/tracks/{track_id}/select")
async def session_track_select(track_id: str, tracks: SessionTrackCache = Depends(get_session_tracks)):
    track = tracks.select(track_id)
    return _track_out(track, track.id)


@router.delete("")
async def session_end(
    user: UserAccount = Depends(get_current_user),
    x_session_id: str | None = Header(None, alias="X-Session-Id"),
):
    """End the session; its tracks are discarded."""
    dropped = sessions.end(session_key(user, x_session_id))
    return {"status": "ended", "tracks_dropped": dropped}
