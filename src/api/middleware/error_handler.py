"""Global error handling middleware for consistent error responses."""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

PROFILE_UNAVAILABLE_MESSAGE = "Profile service unavailable. Please try again."


class APIError(Exception):
    """Base exception for API errors.

    Services raise subclasses; the middleware below renders them as
    ``ErrorResponse`` JSON with the subclass's status code and error kind.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "api_error"

    def __init__(self, message: str, error_type: str | None = None) -> None:
        self.message = message
        if error_type:
            self.error_type = error_type
        super().__init__(message)


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"

    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(message)


class ValidationError(APIError):
    """The request was understood but rejected (bad input, refused sign-up)."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "validation_error"

    def __init__(self, message: str = "Validation error") -> None:
        super().__init__(message)


class AuthenticationError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "authentication_error"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ConflictError(APIError):
    """A unique value is already taken; the user can pick another."""

    status_code = status.HTTP_409_CONFLICT
    error_type = "username_taken"

    def __init__(self, message: str = "Username is already taken", error_type: str | None = None) -> None:
        super().__init__(message, error_type)


class ServiceUnavailableError(APIError):
    """Identity or profile backend unreachable or misconfigured. Retryable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_type = "service_unavailable"
    retry_after_seconds = 5

    def __init__(self, message: str = "Authentication service unavailable. Please try again.") -> None:
        super().__init__(message)


class ProvisioningFailedError(APIError):
    """An identity exists but its profile row could not be created."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = "provisioning_failed"

    def __init__(self, message: str = "Failed to create user profile") -> None:
        super().__init__(message)


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    request_id: str | None = None,
) -> JSONResponse:
    """Render an ``ErrorResponse`` body with the given status code."""
    body = ErrorResponse(error=error_type, message=message, request_id=request_id)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Turn exceptions escaping the routes into ``ErrorResponse`` JSON.

    Outages carry ``Retry-After``; unexpected errors are logged with their
    traceback and answered with a generic message.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        return await call_next(request)

    except ServiceUnavailableError as e:
        logger.warning("Backend unavailable: %s", e.message, extra={"request_id": request_id})
        response = create_error_response(e.error_type, e.message, e.status_code, request_id)
        response.headers["Retry-After"] = str(e.retry_after_seconds)
        return response

    except APIError as e:
        logger.warning(
            "API error: %s - %s",
            e.error_type,
            e.message,
            extra={"request_id": request_id, "status_code": e.status_code},
        )
        return create_error_response(e.error_type, e.message, e.status_code, request_id)

    except HTTPException as e:
        logger.warning("HTTP exception: %s - %s", e.status_code, e.detail, extra={"request_id": request_id})
        return create_error_response("http_error", str(e.detail), e.status_code, request_id)

    except Exception as e:
        logger.error(
            "Unhandled exception: %s\n%s",
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            "internal_error",
            "An unexpected error occurred",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id,
        )
