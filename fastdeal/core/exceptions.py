from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

from fastdeal.core.logging import get_logger


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


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class ValidationError(AppError):
    """Bad input shape or values. Never retried."""

    def __init__(self, message: str = "Validation error", details: dict[str, Any] | None = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InvalidTransitionError(AppError):
    """A payment status change the state machine does not allow."""

    def __init__(self, message: str, current: str | None = None, target: str | None = None):
        super().__init__(
            message,
            code="INVALID_TRANSITION",
            status_code=status.HTTP_409_CONFLICT,
            details={"current": current, "target": target},
        )
        self.current = current
        self.target = target


class GatewayError(AppError):
    """Provider call failed. `retryable` is True when the outcome is unknown (transport error, 5xx)."""

    code_name = "GATEWAY_ERROR"

    def __init__(
        self,
        message: str,
        provider: str,
        retryable: bool = False,
        response: Any = None,
    ):
        super().__init__(
            message,
            code=self.code_name,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"provider": provider, "retryable": retryable},
        )
        self.provider = provider
        self.retryable = retryable
        self.response = response


class GatewayAuthError(GatewayError):
    code_name = "GATEWAY_AUTH_ERROR"


class GatewayInitiationError(GatewayError):
    code_name = "GATEWAY_INITIATION_ERROR"


class GatewayStatusError(GatewayError):
    code_name = "GATEWAY_STATUS_ERROR"


def _envelope(request: Request, status_code: int, message: str, code: str, details: dict[str, Any]) -> ORJSONResponse:
    body: dict[str, Any] = {"error": {"message": message, "code": code, "details": details}}
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    return ORJSONResponse(status_code=status_code, content=body)


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    return _envelope(request, exc.status_code, exc.message, exc.code, exc.details)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    if isinstance(exc, GatewayError):
        get_logger(__name__).warning(
            "gateway_error", code=exc.code, provider=exc.provider, retryable=exc.retryable, path=request.url.path
        )
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    return _envelope(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        "VALIDATION_ERROR",
        {"errors": jsonable_encoder(exc.errors())},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    get_logger(__name__).exception(
        "unhandled_exception", method=request.method, path=request.url.path, exc_info=exc
    )
    return _envelope(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "INTERNAL_ERROR", {})
