"""Synthesis provider adapters."""

import httpx
import pytest

from app.core.exceptions import SynthesisFailure
from app.synthesis.http import HttpSynthesisProvider
from app.synthesis.mock import MockSynthesisProvider

pytestmark = pytest.mark.asyncio


def _transport(statuses: list[dict], submit_status: int = 200):
    seen = {"polls": 0, "submitted": None}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/generations":
            seen["submitted"] = request.read()
            return httpx.Response(submit_status, json={"id": "job-1"})
        if request.method == "GET" and request.url.path == "/generations/job-1":
            body = statuses[min(seen["polls"], len(statuses) - 1)]
            seen["polls"] += 1
            return httpx.Response(200, json=body)
        return httpx.Response(404)

    return httpx.MockTransport(handler), seen


async def test_http_provider_polls_until_completed():
    transport, seen = _transport([
        {"status": "queued"},
        {"status": "running"},
        {"status": "completed", "audio_url": "https://cdn.example.com/job-1.mp3"},
    ])
    provider = HttpSynthesisProvider(base_url="http://synth.test", api_key="k", poll_interval=0, transport=transport)
    try:
        result = await provider.generate("chill hop", "V4", 120)
    finally:
        await provider.aclose()
    assert result.audio_url == "https://cdn.example.com/job-1.mp3"
    assert result.provider == "http"
    assert seen["polls"] == 3
    assert b'"duration_seconds":120' in seen["submitted"].replace(b" ", b"")


async def test_http_provider_reports_failure():
    transport, _ = _transport([{"status": "failed", "error": "prompt rejected"}])
    provider = HttpSynthesisProvider(base_url="http://synth.test", poll_interval=0, transport=transport)
    with pytest.raises(SynthesisFailure, match="prompt rejected"):
        await provider.generate("chill hop", "V4", 120)
    await provider.aclose()


async def test_http_provider_server_error():
    transport, _ = _transport([], submit_status=500)
    provider = HttpSynthesisProvider(base_url="http://synth.test", poll_interval=0, transport=transport)
    with pytest.raises(SynthesisFailure, match="HTTP 500"):
        await provider.generate("chill hop", "V4", 120)
    await provider.aclose()


async def test_mock_provider_returns_sample():
    provider = MockSynthesisProvider(stage_seconds=0, audio_url="https://cdn.example.com/sample.mp3")
    result = await provider.generate("anything", "V3_5", 30)
    assert result.audio_url == "https://cdn.example.com/sample.mp3"
    assert result.provider == "mock"
