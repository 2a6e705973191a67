from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidRequestError(BadRequestError):
    """Empty prompt, unknown model or out-of-bound duration. Raised before any side effect."""

    def __init__(self, message: str = "Invalid request", details: dict[str, Any] | None = None):
        super().__init__(message, details=details)
        self.code = "INVALID_REQUEST"


class InsufficientBalanceError(AppError):
    def __init__(self, required: int, balance: int | None = None):
        details: dict[str, Any] = {"required": required, "top_up": "/v1/packages"}
        if balance is not None:
            details["balance"] = balance
        super().__init__(
            "Insufficient tokens. Please purchase more tokens.",
            code="INSUFFICIENT_BALANCE",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details=details,
        )
        self.required = required
        self.balance = balance


class SynthesisFailure(AppError):
    def __init__(self, message: str = "Music generation failed"):
        super().__init__(message, code="SYNTHESIS_FAILURE", status_code=status.HTTP_502_BAD_GATEWAY)


class SynthesisTimeout(SynthesisFailure):
    def __init__(self, timeout_seconds: float):
        super().__init__(f"Music generation timed out after {timeout_seconds:g}s")
        self.code = "SYNTHESIS_TIMEOUT"
        self.status_code = status.HTTP_504_GATEWAY_TIMEOUT
        self.timeout_seconds = timeout_seconds


class PersistenceFailure(AppError):
    def __init__(self, message: str = "Record store unavailable"):
        super().__init__(message, code="PERSISTENCE_FAILURE", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class InvalidTransitionError(AppError):
    def __init__(self, source: str, target: str):
        super().__init__(
            f"Cannot move generation from {source} to {target}",
            code="INVALID_TRANSITION",
            status_code=status.HTTP_409_CONFLICT,
            details={"from": source, "to": target},
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
