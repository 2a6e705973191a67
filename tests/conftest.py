import asyncio
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# In-memory MongoDB; instant mock synthesis
os.environ.setdefault("MONGODB_DB_NAME", "tunecraft_test")
os.environ.setdefault("SYNTHESIS_BACKEND", "mock")
os.environ.setdefault("MOCK_SYNTHESIS_STAGE_SECONDS", "0")

from app.core.exceptions import SynthesisFailure  # noqa: E402
from app.synthesis.base import SynthesisProvider, SynthesisResult  # noqa: E402


class FakeSynthesisProvider(SynthesisProvider):
    name = "fake"

    def __init__(self, audio_url: str = "https://cdn.example.com/track.mp3", error: str | None = None, delay: float = 0.0):
        self.audio_url = audio_url
        self.error = error
        self.delay = delay
        self.calls = 0

    async def generate(self, prompt: str, model: str, duration_seconds: int) -> SynthesisResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise SynthesisFailure(self.error)
        return SynthesisResult(audio_url=self.audio_url, provider=self.name)


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncMongoMockClient, None]:
    from app.db.init import init_db
    mongo = AsyncMongoMockClient()
    await init_db(mongo["tunecraft_test"])
    yield mongo


@pytest.fixture
def fake_provider():
    return FakeSynthesisProvider


@pytest_asyncio.fixture
async def make_account(db):
    from app.models.user_account import UserAccount
    created = 0

    async def _make(balance: int = 100, default_model: str = "V3_5") -> UserAccount:
        nonlocal created
        created += 1
        account = UserAccount(
            email=f"listener{created}@example.com",
            full_name=f"Listener {created}",
            token_balance=balance,
            default_model=default_model,
        )
        await account.insert()
        return account

    return _make


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
