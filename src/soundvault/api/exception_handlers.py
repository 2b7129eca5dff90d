"""Custom exception handlers for FastAPI application.

This module registers global exception handlers that convert domain exceptions
and validation errors into proper HTTP responses with appropriate status codes.

Hey future me - the UI keys off {"error": "remote_not_configured"} (409) to show the
"set up your remote" prompt instead of a generic error toast. Keep that shape stable.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from soundvault.domain.exceptions import (
    ConfigurationError,
    DomainException,
    EntityNotFoundException,
    ExternalServiceError,
    RemoteUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _sanitize_validation_errors(errors: Any) -> list[dict[str, Any]]:
    """Make pydantic error dicts JSON-safe (raw bodies arrive as bytes)."""

    def _sanitize_value(value: Any) -> Any:
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        if isinstance(value, dict):
            return {k: _sanitize_value(v) for k, v in value.items()}
        if isinstance(value, list | tuple):
            return [_sanitize_value(item) for item in value]
        if isinstance(value, Exception):
            return str(value)
        return value

    return [_sanitize_value(error) for error in errors]


# Hey future me, this registers GLOBAL exception handlers for the entire app! Starlette picks the
# handler of the closest class in the exception's MRO, so RemoteUnavailableError (a
# ConfigurationError) gets its own 409 and never falls through to the 503 one.
def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers for domain and validation exceptions.

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(EntityNotFoundException)
    async def entity_not_found_exception_handler(
        request: Request, exc: EntityNotFoundException
    ) -> JSONResponse:
        """Handle entity not found exceptions with 404 Not Found."""
        logger.info(
            f"Entity not found at {request.url.path}: {exc.entity_type} {exc.entity_id}"
        )
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": exc.message},
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        """Handle domain validation errors with 422 Unprocessable Entity."""
        logger.warning(f"Validation error at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request body/query validation errors with 422."""
        errors = _sanitize_validation_errors(exc.errors())
        logger.warning(f"Request validation failed at {request.url.path}: {errors}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": errors},
        )

    @app.exception_handler(RemoteUnavailableError)
    async def remote_unavailable_handler(
        request: Request, exc: RemoteUnavailableError
    ) -> JSONResponse:
        """Remote not configured (or unreachable) → 409 with a stable error code."""
        logger.info(f"Remote unavailable at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"error": "remote_not_configured", "detail": exc.message},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        """Handle configuration errors with 503 Service Unavailable."""
        logger.error(f"Configuration error at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": exc.message},
        )

    @app.exception_handler(ExternalServiceError)
    async def external_service_error_handler(
        request: Request, exc: ExternalServiceError
    ) -> JSONResponse:
        """Remote store rejected the operation → 502 Bad Gateway."""
        logger.error(f"Remote operation failed at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": exc.message},
        )

    @app.exception_handler(DomainException)
    async def domain_exception_handler(
        request: Request, exc: DomainException
    ) -> JSONResponse:
        """Worker pool timeouts/crashes and anything else domain-level → 500."""
        logger.error(f"Domain error at {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": exc.message},
        )

    # Hey future me - "database is locked" under a heavy import. Tell the client to retry
    # instead of a bare 500.
    @app.exception_handler(OperationalError)
    async def database_busy_handler(
        request: Request, exc: OperationalError
    ) -> JSONResponse:
        """Handle SQLite busy/locked errors with 503 and Retry-After."""
        logger.warning(f"Database busy at {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Database is busy, please retry"},
            headers={"Retry-After": "2"},
        )
