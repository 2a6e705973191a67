"""Token cost per model tier and request validation."""

from typing import get_args

from app.core.exceptions import InvalidRequestError
from app.models.generation import GenerationModel

# Declaration order is tier order; also the tie-break for "favorite model".
MODELS: tuple[str, ...] = get_args(GenerationModel)

TOKENS_PER_MINUTE = {
    "V3_5": 10,
    "V4": 15,
    "V4_5": 25,
}

MAX_DURATION_SECONDS = {
    "V3_5": 240,
    "V4": 300,
    "V4_5": 480,
}

MODEL_DISPLAY_NAMES = {
    "V3_5": "V3.5 (Balanced)",
    "V4": "V4 (High Quality)",
    "V4_5": "V4.5 (Advanced)",
}


def calculate_tokens(model: str, duration_seconds: int) -> int:
    """Tokens for a track: duration rounded up to whole minutes times the tier rate."""
    if model not in TOKENS_PER_MINUTE:
        raise ValueError(f"Unsupported model: {model}")
    minutes = -(-duration_seconds // 60)
    return TOKENS_PER_MINUTE[model] * minutes


def max_duration(model: str) -> int:
    if model not in MAX_DURATION_SECONDS:
        raise ValueError(f"Unsupported model: {model}")
    return MAX_DURATION_SECONDS[model]


def validate_generation_request(prompt: str | None, model: str, duration_seconds: int) -> str:
    """Return the trimmed prompt; raise InvalidRequestError on empty prompt, unknown model or bad duration."""
    prompt = (prompt or "").strip()
    if not prompt:
        raise InvalidRequestError("Please enter a prompt")
    if model not in TOKENS_PER_MINUTE:
        raise InvalidRequestError(f"Unsupported model: {model}", details={"models": list(MODELS)})
    limit = MAX_DURATION_SECONDS[model]
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
        raise InvalidRequestError("Duration must be a whole number of seconds")
    if duration_seconds < 1 or duration_seconds > limit:
        raise InvalidRequestError(
            f"Duration must be between 1 and {limit} seconds for {model}",
            details={"model": model, "max_duration_seconds": limit},
        )
    return prompt


def format_duration(seconds: int) -> str:
    minutes, rest = divmod(seconds, 60)
    if minutes == 0:
        return f"{seconds}s"
    if rest == 0:
        return f"{minutes}m"
    return f"{minutes}m {rest}s"


def get_pricing() -> list[dict]:
    return [
        {
            "model": m,
            "name": MODEL_DISPLAY_NAMES[m],
            "tokens_per_minute": TOKENS_PER_MINUTE[m],
            "max_duration_seconds": MAX_DURATION_SECONDS[m],
        }
        for m in MODELS
    ]
