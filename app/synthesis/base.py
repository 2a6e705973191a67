from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.core.config import get_settings


@dataclass
class SynthesisResult:
    audio_url: str  # transient artifact handle; never persisted
    provider: str


class SynthesisProvider(ABC):
    name = "base"

    @abstractmethod
    async def generate(self, prompt: str, model: str, duration_seconds: int) -> SynthesisResult:
        """Produce one track; raise SynthesisFailure on a service-side error."""
        ...

    async def aclose(self) -> None:
        return None


def get_synthesis_provider() -> SynthesisProvider:
    settings = get_settings()
    if settings.synthesis_backend == "http":
        from app.synthesis.http import HttpSynthesisProvider
        return HttpSynthesisProvider()
    from app.synthesis.mock import MockSynthesisProvider
    return MockSynthesisProvider()
