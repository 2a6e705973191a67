"""In-memory session track cache."""

from types import SimpleNamespace

import pytest
from bson import ObjectId

from app.core.exceptions import NotFoundError
from app.services.session_tracks import SessionRegistry, SessionTrack, SessionTrackCache


def _track(title: str) -> SessionTrack:
    gen = SimpleNamespace(id=ObjectId(), prompt="ambient pads", model="V3_5", status="completed")
    return SessionTrack(id=str(gen.id), title=title, audio_url="https://cdn.example.com/a.mp3", generation=gen)


def test_add_prepends_most_recent_first():
    cache = SessionTrackCache()
    first, second = _track("Generation 1"), _track("Generation 2")
    assert cache.add(first)
    assert cache.add(second)
    assert [t.title for t in cache.list()] == ["Generation 2", "Generation 1"]
    assert cache.next_title() == "Generation 3"


def test_add_same_id_is_noop():
    cache = SessionTrackCache()
    t = _track("Generation 1")
    assert cache.add(t)
    assert not cache.add(t)
    assert len(cache) == 1


def test_select_sets_active():
    cache = SessionTrackCache()
    a, b = _track("a"), _track("b")
    cache.add(a)
    cache.add(b)
    assert cache.active is None
    cache.select(a.id)
    assert cache.active is a
    with pytest.raises(NotFoundError):
        cache.select("missing")
    assert cache.active is a


def test_clear_drops_everything():
    cache = SessionTrackCache()
    t = _track("a")
    cache.add(t)
    cache.select(t.id)
    cache.clear()
    assert len(cache) == 0
    assert cache.active is None


def test_registry_scopes_and_ends_sessions():
    registry = SessionRegistry()
    one = registry.get_or_create("u1:tab-a")
    assert registry.get_or_create("u1:tab-a") is one
    assert registry.get_or_create("u1:tab-b") is not one
    one.add(_track("a"))
    assert registry.end("u1:tab-a") == 1
    assert registry.end("u1:tab-a") == 0
    assert len(registry.get_or_create("u1:tab-a")) == 0
