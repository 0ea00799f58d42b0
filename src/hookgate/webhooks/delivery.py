"""Webhook delivery with HMAC signatures and exponential backoff retry.

Implements:
- HMAC-SHA256 signatures over the exact bytes sent on the wire
- A bounded retry loop (3 attempts, 1s then 2s backoff) per webhook
- Concurrent fan-out where one webhook's failure never affects another
- Automatic disabling of webhooks after consecutive failures
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hookgate.exceptions import (
    DeliveryError,
    DeliveryHTTPError,
    DeliveryNetworkError,
    DeliveryTimeoutError,
    MalformedRequestError,
    StorageError,
)
from hookgate.logging import get_logger, log_context
from hookgate.models import (
    DeliveryLogEntry,
    DeliveryResult,
    DispatchSummary,
    Subscription,
    WebhookEvent,
    epoch_millis,
)

from .audit import DeliveryAuditor

if TYPE_CHECKING:
    from hookgate.config import Settings
    from hookgate.storage import Storage

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
ID_HEADER = "X-Webhook-Id"

SleepFn = Callable[[float], Awaitable[None]]


def serialize_payload(payload: Any) -> bytes:
    """Serialize a payload to the bytes that are both signed and sent.

    Compact separators, key order preserved, UTF-8.
    """
    return json.dumps(
        payload,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def compute_signature(body: bytes, secret: str) -> str:
    """Compute the HMAC-SHA256 signature of a request body.

    Args:
        body: Exact request body bytes.
        secret: Shared secret for HMAC.

    Returns:
        Lowercase hex digest.
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Verify a webhook signature the way a receiver does.

    Args:
        body: Raw request body as received.
        secret: Shared secret for HMAC.
        signature: Value of the ``X-Webhook-Signature`` header.

    Returns:
        True if signature is valid, False otherwise.
    """
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, signature)


class WebhookDeliverer:
    """Delivers one event to one webhook, retrying with exponential backoff.

    Every attempt is bounded by a hard timeout. Timeouts, network errors
    and non-2xx responses are all retried; after the last attempt the
    failure is returned as a DeliveryResult, never raised.

    Example:
        ```python
        deliverer = WebhookDeliverer(timeout_seconds=10.0)
        result = await deliverer.deliver(webhook, "goal.achieved", {"goal_type": "demos"})
        ```
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the deliverer.

        Args:
            timeout_seconds: Hard timeout per attempt.
            max_attempts: Attempts before giving up.
            retry_delay_seconds: Delay after the first failure (doubles each attempt).
            client: Shared HTTP client. A client is opened per delivery if None.
            sleep: Coroutine used for backoff waits.
        """
        self._timeout = timeout_seconds
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay_seconds
        self._client = client
        self._sleep = sleep

    async def deliver(
        self,
        subscription: Subscription,
        event_type: str,
        payload: Any,
        *,
        body: bytes | None = None,
    ) -> DeliveryResult:
        """Deliver a payload to a webhook.

        Args:
            subscription: Target webhook.
            event_type: Event kind, sent as ``X-Webhook-Event``.
            payload: JSON-serializable payload.
            body: Pre-serialized payload bytes. Serialized here if None.

        Returns:
            The final outcome after at most ``max_attempts`` attempts.
        """
        if body is None:
            body = serialize_payload(payload)
        signature = compute_signature(body, subscription.secret)
        started = time.monotonic()
        attempts = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_delay, min=0),
            retry=retry_if_exception_type(DeliveryError),
            before_sleep=lambda state: self._log_retry(state, subscription, event_type),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    status_code = await self._send(subscription, event_type, body, signature)
        except DeliveryError as e:
            logger.warning(
                "Webhook delivery failed",
                subscription_id=subscription.id,
                event_type=event_type,
                attempts=attempts,
                status_code=e.status_code,
                error=e.message,
            )
            return DeliveryResult(
                subscription_id=subscription.id,
                success=False,
                status_code=e.status_code,
                error=e.message,
                attempts=attempts,
                duration_ms=_elapsed_ms(started),
            )

        logger.info(
            "Webhook delivered",
            subscription_id=subscription.id,
            event_type=event_type,
            status_code=status_code,
            attempts=attempts,
        )
        return DeliveryResult(
            subscription_id=subscription.id,
            success=True,
            status_code=status_code,
            attempts=attempts,
            duration_ms=_elapsed_ms(started),
        )

    async def _send(
        self,
        subscription: Subscription,
        event_type: str,
        body: bytes,
        signature: str,
    ) -> int:
        """Make one delivery attempt.

        Returns:
            The 2xx status code.

        Raises:
            DeliveryTimeoutError: No answer within the timeout.
            DeliveryNetworkError: The request could not be completed.
            DeliveryHTTPError: The endpoint answered non-2xx.
        """
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: event_type,
            SIGNATURE_HEADER: signature,
            TIMESTAMP_HEADER: str(epoch_millis()),
            ID_HEADER: subscription.id,
        }

        try:
            async with asyncio.timeout(self._timeout):
                if self._client is not None:
                    response = await self._client.post(
                        str(subscription.url), content=body, headers=headers
                    )
                else:
                    async with httpx.AsyncClient(timeout=self._timeout) as client:
                        response = await client.post(
                            str(subscription.url), content=body, headers=headers
                        )
        except (TimeoutError, httpx.TimeoutException) as e:
            raise DeliveryTimeoutError(f"Request timeout after {self._timeout:g}s") from e
        except httpx.RequestError as e:
            raise DeliveryNetworkError(f"Network error: {e}") from e

        if not response.is_success:
            raise DeliveryHTTPError(response.status_code)
        return response.status_code

    @staticmethod
    def _log_retry(
        retry_state: RetryCallState,
        subscription: Subscription,
        event_type: str,
    ) -> None:
        """Log each failed attempt that will be retried."""
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Webhook delivery attempt failed, retrying",
            subscription_id=subscription.id,
            event_type=event_type,
            attempt=retry_state.attempt_number,
            status_code=getattr(error, "status_code", None),
            error=str(error) if error else None,
            retry_in_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class WebhookDispatcher:
    """Dispatches events to every subscribed webhook.

    Handles:
    - Finding active webhooks subscribed to an event kind
    - Delivering to each one concurrently, isolated from the others
    - Writing one delivery log entry per webhook
    - Resetting or incrementing the failure counter, disabling at the threshold

    Example:
        ```python
        dispatcher = WebhookDispatcher(storage)
        summary = await dispatcher.dispatch("goal.achieved", {"goal_type": "demos"})
        print(summary.delivered, summary.failed)
        ```
    """

    def __init__(
        self,
        storage: Storage,
        deliverer: WebhookDeliverer | None = None,
        auditor: DeliveryAuditor | None = None,
        failure_threshold: int = 10,
        max_concurrent: int = 10,
    ) -> None:
        """Initialize the webhook dispatcher.

        Args:
            storage: Storage for webhooks and the delivery log.
            deliverer: Delivery engine (defaults: 10s timeout, 3 attempts).
            auditor: Delivery log writer (defaults to one over ``storage``).
            failure_threshold: Consecutive failures that disable a webhook.
            max_concurrent: Maximum concurrent deliveries.
        """
        self._storage = storage
        self._deliverer = deliverer or WebhookDeliverer()
        self._auditor = auditor or DeliveryAuditor(storage)
        self._failure_threshold = failure_threshold
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @classmethod
    def from_settings(
        cls,
        storage: Storage,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
    ) -> WebhookDispatcher:
        """Build a dispatcher configured from Settings."""
        deliverer = WebhookDeliverer(
            timeout_seconds=settings.webhook_timeout_seconds,
            max_attempts=settings.webhook_max_attempts,
            retry_delay_seconds=settings.webhook_retry_delay_seconds,
            client=client,
        )
        return cls(
            storage,
            deliverer=deliverer,
            failure_threshold=settings.webhook_failure_threshold,
            max_concurrent=settings.webhook_max_concurrent,
        )

    @property
    def auditor(self) -> DeliveryAuditor:
        return self._auditor

    async def dispatch(
        self,
        event_type: str,
        payload: Any,
        user_id: str | None = None,
        source: str | None = None,
    ) -> DispatchSummary:
        """Dispatch an event to all subscribed webhooks.

        Args:
            event_type: Event kind.
            payload: JSON payload delivered verbatim.
            user_id: When set, only this user's webhooks receive the event.
            source: Optional producer tag, for logging.

        Returns:
            DispatchSummary with per-webhook results.
        """
        event = WebhookEvent(event_type=event_type, payload=payload, user_id=user_id, source=source)
        return await self.dispatch_event(event)

    async def dispatch_event(self, event: WebhookEvent) -> DispatchSummary:
        """Dispatch a prepared WebhookEvent.

        All deliveries run to completion (success or failure) before this
        returns; a failing webhook never short-circuits the others.

        Raises:
            MalformedRequestError: The payload cannot be encoded as JSON.
                Nothing is delivered and no webhook health changes.
        """
        try:
            body = serialize_payload(event.payload)
        except (TypeError, ValueError) as e:
            raise MalformedRequestError("payload", f"Payload is not valid JSON: {e}") from e

        with log_context(event_type=event.event_type, source=event.source):
            return await self._fan_out(event, body)

    async def _fan_out(self, event: WebhookEvent, body: bytes) -> DispatchSummary:
        webhooks = await self._storage.get_webhooks_for_event(
            event_type=event.event_type,
            user_id=event.user_id,
        )

        if not webhooks:
            logger.debug("No webhooks subscribed to event", user_id=event.user_id)
            return DispatchSummary(event_type=event.event_type)

        outcomes = await asyncio.gather(
            *(self._deliver_to_webhook(webhook, event, body) for webhook in webhooks),
            return_exceptions=True,
        )

        results: list[DeliveryResult] = []
        for webhook, outcome in zip(webhooks, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Webhook delivery task failed",
                    subscription_id=webhook.id,
                    error=str(outcome),
                )
                results.append(
                    DeliveryResult(
                        subscription_id=webhook.id,
                        success=False,
                        error=f"Unexpected error: {outcome}",
                    )
                )
            else:
                results.append(outcome)

        summary = DispatchSummary.from_results(event.event_type, results)
        logger.info(
            "Event dispatched",
            delivered=summary.delivered,
            failed=summary.failed,
            total=summary.total,
        )
        return summary

    async def _deliver_to_webhook(
        self,
        webhook: Subscription,
        event: WebhookEvent,
        body: bytes,
    ) -> DeliveryResult:
        """Deliver, audit and update health for a single webhook."""
        async with self._semaphore:
            try:
                result = await self._deliverer.deliver(
                    webhook, event.event_type, event.payload, body=body
                )
            except Exception as e:
                logger.exception("Webhook delivery error", subscription_id=webhook.id)
                result = DeliveryResult(
                    subscription_id=webhook.id,
                    success=False,
                    error=f"Unexpected error: {e}",
                )

        await self._auditor.record(DeliveryLogEntry.from_result(event, result))
        await self._update_health(webhook, result)
        return result

    async def _update_health(self, webhook: Subscription, result: DeliveryResult) -> None:
        """Apply the delivery outcome to the webhook's failure counter and status."""
        try:
            if result.success:
                await self._storage.record_delivery_success(webhook.id)
                return

            updated = await self._storage.record_delivery_failure(
                webhook.id,
                threshold=self._failure_threshold,
            )
        except StorageError as e:
            logger.error(
                "Failed to update webhook health",
                subscription_id=webhook.id,
                success=result.success,
                error=e.message,
            )
            return

        if updated is not None and updated.status == "disabled":
            logger.warning(
                "Webhook disabled after consecutive failures",
                subscription_id=webhook.id,
                user_id=webhook.user_id,
                failure_count=updated.failure_count,
                threshold=self._failure_threshold,
            )


async def dispatch_webhook_event(
    storage: Storage,
    event_type: str,
    payload: Any,
    user_id: str | None = None,
    source: str | None = None,
) -> DispatchSummary:
    """Convenience function to dispatch an event with default settings.

    Args:
        storage: Storage for webhooks and the delivery log.
        event_type: Event kind.
        payload: JSON payload.
        user_id: Optional owner filter.
        source: Optional producer tag.

    Returns:
        DispatchSummary for the event.
    """
    dispatcher = WebhookDispatcher(storage)
    return await dispatcher.dispatch(event_type, payload, user_id=user_id, source=source)
