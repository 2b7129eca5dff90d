"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing
    # str(exception). Don't raise this directly - use a specific subclass so callers can catch
    # precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationError(DomainException):
    """Input validation failed.

    HTTP Status: 422

    Example:
        raise ValidationError("Unknown setting: theme")
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    HTTP Status: 503 (Service Unavailable)
    """

    pass


class RemoteUnavailableError(ConfigurationError):
    """Remote store is not configured (no URL or no API key) or not reachable.

    Hey future me - this is the "not configured" signal! Every sync entry point checks for
    it BEFORE trying anything, so an offline/unconfigured install doesn't burn retries on
    operations that can never succeed. The UI shows it as an actionable state ("add your
    storage key"), not as a generic error.

    HTTP Status: 409
    """

    def __init__(self, message: str = "Remote storage is not configured") -> None:
        super().__init__(message)


class ExternalServiceError(DomainException):
    """External service returned an error.

    HTTP Status: 502 (Bad Gateway)
    """

    pass


class RemoteOperationError(ExternalServiceError):
    """A remote store call (upload/download/list/delete) failed.

    The message ends up as last_error on the sync queue item and drives backoff.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MetadataTimeoutError(DomainException, TimeoutError):
    """A worker pool task did not answer within its time bound."""

    def __init__(self, task_id: str, timeout: float) -> None:
        super().__init__(f"Worker task {task_id} timed out after {timeout:.0f}s")
        self.task_id = task_id
        self.timeout = timeout


class WorkerCrashedError(DomainException):
    """A worker pool unit died while tasks were pending."""

    def __init__(self, message: str = "Worker pool crashed") -> None:
        super().__init__(message)


__all__ = [
    "DomainException",
    "EntityNotFoundException",
    "ValidationError",
    "ConfigurationError",
    "RemoteUnavailableError",
    "ExternalServiceError",
    "RemoteOperationError",
    "MetadataTimeoutError",
    "WorkerCrashedError",
]
