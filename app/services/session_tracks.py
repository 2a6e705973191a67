"""
Playable tracks for the current session.

Process memory only: nothing here is written to the record store and nothing
survives a restart. Audio is not retained by the product.
"""

from dataclasses import dataclass

from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.models.generation import GenerationRecord

log = get_logger(__name__)


@dataclass
class SessionTrack:
    id: str  # generation id
    title: str
    audio_url: str
    generation: GenerationRecord


class SessionTrackCache:
    """Completed tracks, most recent first, with one active selection. No capacity bound, no TTL."""

    def __init__(self) -> None:
        self._tracks: list[SessionTrack] = []
        self._active_id: str | None = None

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, track_id: str) -> bool:
        return self.get(track_id) is not None

    def add(self, track: SessionTrack) -> bool:
        """Prepend track; returns False if its id is already present."""
        if track.id in self:
            return False
        self._tracks.insert(0, track)
        return True

    def get(self, track_id: str) -> SessionTrack | None:
        for t in self._tracks:
            if t.id == track_id:
                return t
        return None

    def select(self, track_id: str) -> SessionTrack:
        track = self.get(track_id)
        if track is None:
            raise NotFoundError("Track not in this session")
        self._active_id = track_id
        return track

    @property
    def active(self) -> SessionTrack | None:
        if self._active_id is None:
            return None
        return self.get(self._active_id)

    def list(self) -> list[SessionTrack]:
        return list(self._tracks)

    def next_title(self) -> str:
        return f"Generation {len(self._tracks) + 1}"

    def clear(self) -> None:
        self._tracks.clear()
        self._active_id = None


class SessionRegistry:
    """session id -> SessionTrackCache for this process."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionTrackCache] = {}

    def get_or_create(self, session_id: str) -> SessionTrackCache:
        cache = self._sessions.get(session_id)
        if cache is None:
            cache = SessionTrackCache()
            self._sessions[session_id] = cache
        return cache

    def end(self, session_id: str) -> int:
        """Drop the session; returns how many tracks were discarded."""
        cache = self._sessions.pop(session_id, None)
        if cache is None:
            return 0
        dropped = len(cache)
        cache.clear()
        log.info("session_ended", session_id=session_id, tracks_dropped=dropped)
        return dropped

    def __len__(self) -> int:
        return len(self._sessions)


sessions = SessionRegistry()
