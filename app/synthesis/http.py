"""Remote synthesis service: submit a job, then poll until it reports a terminal status."""

import asyncio

import httpx

from app.core.config import get_settings
from app.core.exceptions import SynthesisFailure
from app.core.logging import get_logger
from app.synthesis.base import SynthesisProvider, SynthesisResult

log = get_logger(__name__)


class HttpSynthesisProvider(SynthesisProvider):
    name = "http"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        poll_interval: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        headers = {"Accept": "application/json"}
        key = settings.synthesis_api_key if api_key is None else api_key
        if key:
            headers["Authorization"] = f"Bearer {key}"
        self.poll_interval = settings.synthesis_poll_interval_seconds if poll_interval is None else poll_interval
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.synthesis_base_url,
            headers=headers,
            timeout=httpx.Timeout(30.0),
            transport=transport,
        )

    async def generate(self, prompt: str, model: str, duration_seconds: int) -> SynthesisResult:
        job_id = await self._submit(prompt, model, duration_seconds)
        log.info("synthesis_job_submitted", job_id=job_id, model=model)
        while True:
            data = await self._request("GET", f"/generations/{job_id}")
            status = data.get("status")
            if status == "completed":
                audio_url = data.get("audio_url")
                if not audio_url:
                    raise SynthesisFailure("Synthesis service returned no audio")
                return SynthesisResult(audio_url=audio_url, provider=self.name)
            if status == "failed":
                raise SynthesisFailure(data.get("error") or "Music generation failed")
            await asyncio.sleep(self.poll_interval)

    async def _submit(self, prompt: str, model: str, duration_seconds: int) -> str:
        data = await self._request(
            "POST",
            "/generations",
            json={"prompt": prompt, "model": model, "duration_seconds": duration_seconds},
        )
        job_id = data.get("id")
        if not job_id:
            raise SynthesisFailure("Synthesis service did not return a job id")
        return str(job_id)

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            resp = await self._client.request(method, url, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise SynthesisFailure(f"Synthesis service error: HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise SynthesisFailure(f"Synthesis service unreachable: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()
