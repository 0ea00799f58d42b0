"""Data models for Hookgate.

Credentials:
    - Credential: An issued API key, stored by digest only

Webhooks:
    - Subscription: A registered (url, secret, events) endpoint
    - WebhookEvent: An ephemeral event to fan out
    - DeliveryResult: Final outcome for one webhook
    - DeliveryLogEntry: Append-only audit record
    - DispatchSummary: Outcome of one dispatch call
"""

from .base import epoch_millis, generate_id, utc_now
from .credential import Credential
from .webhook import (
    ALL_EVENT_TYPES,
    WEBHOOK_EVENTS,
    DeliveryLogEntry,
    DeliveryResult,
    DispatchSummary,
    Subscription,
    SubscriptionStatus,
    WebhookEvent,
)

__all__ = [
    # Helpers
    "epoch_millis",
    "generate_id",
    "utc_now",
    # Credentials
    "Credential",
    # Webhooks
    "ALL_EVENT_TYPES",
    "WEBHOOK_EVENTS",
    "DeliveryLogEntry",
    "DeliveryResult",
    "DispatchSummary",
    "Subscription",
    "SubscriptionStatus",
    "WebhookEvent",
]
