"""Webhook delivery for Hookgate.

Signs payloads with HMAC-SHA256, delivers them with bounded exponential
backoff retry, audits the final outcome and disables webhooks that keep
failing.

Example:
    ```python
    from hookgate.webhooks import WebhookDispatcher

    dispatcher = WebhookDispatcher(storage)
    summary = await dispatcher.dispatch("goal.achieved", {"goal_type": "demos"})
    ```
"""

from .audit import DeliveryAuditor
from .delivery import (
    EVENT_HEADER,
    ID_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    WebhookDeliverer,
    WebhookDispatcher,
    compute_signature,
    dispatch_webhook_event,
    serialize_payload,
    verify_signature,
)

__all__ = [
    "EVENT_HEADER",
    "ID_HEADER",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "DeliveryAuditor",
    "WebhookDeliverer",
    "WebhookDispatcher",
    "compute_signature",
    "dispatch_webhook_event",
    "serialize_payload",
    "verify_signature",
]
