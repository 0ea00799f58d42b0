"""Hookgate: API key authentication and signed webhook fan-out.

Inbound requests are authenticated against hashed API keys under a
per-key rate limit. Application events are fanned out to registered
webhooks with HMAC-SHA256 signatures, bounded retries with exponential
backoff, a delivery audit log and automatic disabling of endpoints that
keep failing.

Quick Start:
    from hookgate.service import HookgateService

    async with HookgateService.create() as hookgate:
        webhook, secret = await hookgate.create_webhook(
            user_id="user_123",
            url="https://example.com/hooks",
            events=["goal.achieved"],
        )
        summary = await hookgate.dispatch(
            "goal.achieved",
            {"user_id": "user_123", "goal_type": "demos"},
            user_id="user_123",
        )

Components:
    - ApiKeyAuthenticator: SHA-256 key lookup with expiry checks
    - InMemoryRateLimiter / RedisRateLimiter: fixed-window limits per key
    - WebhookDeliverer: signed POST with 3 attempts (1s, 2s backoff)
    - WebhookDispatcher: concurrent fan-out with a circuit breaker
    - DeliveryAuditor: one log entry per webhook per event
"""

__version__ = "0.1.0"

# Authentication
from .auth import (
    ApiKeyAuthenticator,
    AuthenticatedKey,
    InMemoryRateLimiter,
    RateLimiter,
    RedisRateLimiter,
    extract_api_key,
    hash_api_key,
    issue_api_key,
)

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    CredentialExpiredError,
    DeliveryError,
    HookgateError,
    InvalidCredentialError,
    MalformedRequestError,
    NotFoundError,
    RateLimitError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_context,
    unbind_context,
)

# Models
from .models import (
    WEBHOOK_EVENTS,
    Credential,
    DeliveryLogEntry,
    DeliveryResult,
    DispatchSummary,
    Subscription,
    WebhookEvent,
)

# Webhooks
from .webhooks import (
    DeliveryAuditor,
    WebhookDeliverer,
    WebhookDispatcher,
    compute_signature,
    dispatch_webhook_event,
    verify_signature,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "Settings",
    "settings",
    # Exceptions
    "HookgateError",
    "ValidationError",
    "MalformedRequestError",
    "NotFoundError",
    "StorageError",
    "RateLimitError",
    "ConfigurationError",
    "AuthenticationError",
    "InvalidCredentialError",
    "CredentialExpiredError",
    "AuthorizationError",
    "DeliveryError",
    # Logging
    "configure_logging",
    "get_logger",
    "log_context",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Authentication
    "ApiKeyAuthenticator",
    "AuthenticatedKey",
    "InMemoryRateLimiter",
    "RateLimiter",
    "RedisRateLimiter",
    "extract_api_key",
    "hash_api_key",
    "issue_api_key",
    # Models
    "WEBHOOK_EVENTS",
    "Credential",
    "DeliveryLogEntry",
    "DeliveryResult",
    "DispatchSummary",
    "Subscription",
    "WebhookEvent",
    # Webhooks
    "DeliveryAuditor",
    "WebhookDeliverer",
    "WebhookDispatcher",
    "compute_signature",
    "dispatch_webhook_event",
    "verify_signature",
]
