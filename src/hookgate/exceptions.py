"""Hookgate exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from HookgateError for easy catching.

Inbound errors (credentials, rate limits, request shape) are surfaced to the
caller. Delivery errors are raised and caught inside the delivery engine only;
they never reach the producer of an event.
"""

from __future__ import annotations


class HookgateError(Exception):
    """Base exception for all Hookgate errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "hookgate_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HookgateError):
    """Invalid input provided.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class MalformedRequestError(ValidationError):
    """Request body is missing required fields or has the wrong shape."""

    code: str = "malformed_request"


class NotFoundError(HookgateError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "webhook").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(HookgateError):
    """Storage operation failed.

    Raised when a database operation fails.
    """

    code: str = "storage_error"


class ConfigurationError(HookgateError):
    """Configuration error.

    Raised when required configuration is missing or invalid.
    """

    code: str = "configuration_error"


class RateLimitError(HookgateError):
    """Rate limit exceeded.

    Attributes:
        retry_after: Seconds until the client can retry.
    """

    code: str = "rate_limit_exceeded"

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after {retry_after}s")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "retry_after": self.retry_after,
                "message": self.message,
            }
        }


class AuthenticationError(HookgateError):
    """Authentication failed.

    Raised when authentication credentials are invalid or missing.
    The ``reason`` attribute distinguishes failure kinds for logging.
    """

    code: str = "authentication_error"
    reason: str = "missing_credential"


class InvalidCredentialError(AuthenticationError):
    """No stored credential matches the presented API key."""

    reason: str = "invalid_credential"

    def __init__(self, message: str = "Invalid API key") -> None:
        super().__init__(message)


class CredentialExpiredError(AuthenticationError):
    """The presented API key matched a credential whose expiry has passed."""

    reason: str = "credential_expired"

    def __init__(self, message: str = "API key expired") -> None:
        super().__init__(message)


class AuthorizationError(HookgateError):
    """Authorization failed.

    Raised when user lacks permission to perform an action.
    """

    code: str = "authorization_error"


class DeliveryError(HookgateError):
    """A single webhook delivery attempt failed.

    Attributes:
        status_code: HTTP status received, if any.
    """

    code: str = "delivery_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DeliveryTimeoutError(DeliveryError):
    """The endpoint did not answer within the per-attempt timeout."""

    code: str = "delivery_timeout"


class DeliveryHTTPError(DeliveryError):
    """The endpoint answered with a non-2xx status."""

    code: str = "delivery_http_failure"

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}", status_code=status_code)


class DeliveryNetworkError(DeliveryError):
    """The request could not be sent or the connection broke."""

    code: str = "delivery_network_error"
