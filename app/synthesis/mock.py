"""Demo provider: staged delays, then a fixed sample track."""

import asyncio

from app.core.config import get_settings
from app.core.logging import get_logger
from app.synthesis.base import SynthesisProvider, SynthesisResult

log = get_logger(__name__)

STAGES = ("processing", "generating", "finalizing")


class MockSynthesisProvider(SynthesisProvider):
    name = "mock"

    def __init__(self, stage_seconds: float | None = None, audio_url: str | None = None) -> None:
        settings = get_settings()
        self.stage_seconds = settings.mock_synthesis_stage_seconds if stage_seconds is None else stage_seconds
        self.audio_url = audio_url or settings.mock_audio_url

    async def generate(self, prompt: str, model: str, duration_seconds: int) -> SynthesisResult:
        for stage in STAGES:
            log.debug("mock_synthesis_stage", stage=stage, model=model)
            await asyncio.sleep(self.stage_seconds)
        return SynthesisResult(audio_url=self.audio_url, provider=self.name)
