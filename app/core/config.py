from functools import lru_cache
from typing import Any, List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    if v is None or v == "":
        return _DEFAULT_CORS.copy()
    if isinstance(v, list):
        return [x for x in v if isinstance(x, str) and x.strip()]
    s = str(v).strip()
    if not s:
        return _DEFAULT_CORS.copy()
    if s.startswith("["):
        import json
        try:
            out = json.loads(s)
        except ValueError:
            return _DEFAULT_CORS.copy()
        return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
    return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="tunecraft", alias="MONGODB_DB_NAME")

    # Redis (ARQ worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Synthesis service
    synthesis_backend: Literal["mock", "http"] = Field(default="mock", alias="SYNTHESIS_BACKEND")
    synthesis_base_url: str = Field(default="http://localhost:9000", alias="SYNTHESIS_BASE_URL")
    synthesis_api_key: str = Field(default="", alias="SYNTHESIS_API_KEY")
    synthesis_timeout_seconds: float = Field(default=120.0, alias="SYNTHESIS_TIMEOUT_SECONDS")
    synthesis_poll_interval_seconds: float = Field(default=2.0, alias="SYNTHESIS_POLL_INTERVAL_SECONDS")

    # Mock synthesis (demo artifact after staged delays)
    mock_synthesis_stage_seconds: float = Field(default=2.0, alias="MOCK_SYNTHESIS_STAGE_SECONDS")
    mock_audio_url: str = Field(
        default="https://www.soundhelix.com/examples/mp3/SoundHelix-Song-1.mp3",
        alias="MOCK_AUDIO_URL",
    )

    # Reconciliation: stale pending/processing generations are failed after timeout + grace
    reconcile_grace_seconds: int = Field(default=300, alias="RECONCILE_GRACE_SECONDS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
