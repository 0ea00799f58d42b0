"""Core Hookgate service layer.

Bundles storage, the API key authenticator, the rate limiter and the
webhook dispatcher behind one object that the HTTP layer and in-process
producers share.

Example:
    ```python
    from hookgate.service import HookgateService

    async with HookgateService.create() as hookgate:
        webhook, secret = await hookgate.create_webhook(
            user_id="user_123",
            url="https://example.com/hooks",
            events=["goal.achieved"],
        )
        summary = await hookgate.dispatch("goal.achieved", {"goal_type": "demos"})
        print(summary.delivered, summary.failed)
    ```
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import Any

import httpx

from hookgate.auth import ApiKeyAuthenticator, RateLimiter, get_rate_limiter
from hookgate.config import Settings
from hookgate.exceptions import NotFoundError, ValidationError
from hookgate.logging import get_logger
from hookgate.models import DeliveryLogEntry, DispatchSummary, Subscription, WebhookEvent
from hookgate.storage import HookgateStorage, InMemoryStorage, Storage
from hookgate.webhooks import WebhookDispatcher

logger = get_logger(__name__)

MEMORY_DATABASE_URL = "memory://"


def generate_webhook_secret() -> str:
    """Generate a signing secret for a new webhook (64 hex characters)."""
    return secrets.token_hex(32)


@dataclass
class HookgateService:
    """High-level Hookgate service.

    This service provides:
    - dispatch(): Fan an event out to subscribed webhooks
    - emit(): Dispatch a typed event from a WebhookEvent factory
    - create_webhook() / list_webhooks() / delete_webhook() / enable_webhook()
    - get_deliveries(): Read a webhook's delivery log

    Attributes:
        storage: Credential, webhook and delivery log storage.
        authenticator: API key authenticator.
        rate_limiter: Per-key fixed-window rate limiter.
        dispatcher: Webhook fan-out engine.
        settings: Configuration.
        http_client: Shared outbound client, closed with the service.
    """

    storage: Storage
    authenticator: ApiKeyAuthenticator
    rate_limiter: RateLimiter
    dispatcher: WebhookDispatcher
    settings: Settings = field(default_factory=Settings)
    http_client: httpx.AsyncClient | None = None

    @classmethod
    def create(cls, settings: Settings | None = None) -> HookgateService:
        """Create a HookgateService with default dependencies.

        A ``database_url`` of ``memory://`` selects the in-process store.

        Args:
            settings: Optional settings. Uses defaults if None.

        Returns:
            Configured HookgateService instance.
        """
        if settings is None:
            settings = Settings()

        storage: Storage
        if settings.database_url == MEMORY_DATABASE_URL:
            storage = InMemoryStorage()
        else:
            storage = HookgateStorage(settings.database_url, echo=settings.database_echo)

        http_client = httpx.AsyncClient(timeout=settings.webhook_timeout_seconds)

        return cls(
            storage=storage,
            authenticator=ApiKeyAuthenticator(storage),
            rate_limiter=get_rate_limiter(settings.rate_limit_redis_url),
            dispatcher=WebhookDispatcher.from_settings(storage, settings, client=http_client),
            settings=settings,
            http_client=http_client,
        )

    async def initialize(self) -> None:
        """Initialize the service (database schema, connections)."""
        await self.storage.initialize()

    async def close(self) -> None:
        """Flush background work and release resources."""
        await self.authenticator.wait_pending()
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.storage.close()

    async def __aenter__(self) -> HookgateService:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def dispatch(
        self,
        event_type: str,
        payload: Any,
        user_id: str | None = None,
        source: str | None = None,
    ) -> DispatchSummary:
        """Dispatch an event to every active webhook subscribed to it."""
        return await self.dispatcher.dispatch(
            event_type,
            payload,
            user_id=user_id,
            source=source,
        )

    async def emit(self, event: WebhookEvent) -> DispatchSummary:
        """Dispatch an event built with one of the ``WebhookEvent.for_*`` factories.

        Example:
            ```python
            await hookgate.emit(WebhookEvent.for_goal_achieved("user_123", "demos", today))
            ```
        """
        return await self.dispatcher.dispatch_event(event)

    async def create_webhook(
        self,
        user_id: str,
        url: str,
        events: list[str],
    ) -> tuple[Subscription, str]:
        """Register a webhook for a user.

        Args:
            user_id: Owner of the webhook.
            url: Endpoint to receive events.
            events: Event kinds to subscribe to (at least one).

        Returns:
            Tuple of (stored webhook, signing secret).

        Raises:
            ValidationError: If no event kinds are given.
        """
        if not events:
            raise ValidationError("events", "At least one event type is required")

        secret = generate_webhook_secret()
        webhook = Subscription(user_id=user_id, url=url, events=events, secret=secret)
        await self.storage.store_webhook(webhook)

        logger.info(
            "Webhook created",
            webhook_id=webhook.id,
            user_id=user_id,
            events=webhook.events,
        )
        return webhook, secret

    async def list_webhooks(self, user_id: str) -> list[Subscription]:
        return await self.storage.list_webhooks(user_id=user_id)

    async def delete_webhook(self, webhook_id: str, user_id: str) -> None:
        """Delete a user's webhook and its delivery log.

        Raises:
            NotFoundError: If the user has no such webhook.
        """
        if not await self.storage.delete_webhook(webhook_id, user_id):
            raise NotFoundError("webhook", webhook_id)
        logger.info("Webhook deleted", webhook_id=webhook_id, user_id=user_id)

    async def enable_webhook(self, webhook_id: str, user_id: str) -> Subscription:
        """Re-enable a disabled or paused webhook and clear its failure counter.

        Raises:
            NotFoundError: If the user has no such webhook.
        """
        webhook = await self.storage.update_webhook(
            webhook_id,
            user_id=user_id,
            status="active",
            failure_count=0,
        )
        if webhook is None:
            raise NotFoundError("webhook", webhook_id)
        logger.info("Webhook enabled", webhook_id=webhook_id, user_id=user_id)
        return webhook

    async def get_deliveries(
        self,
        webhook_id: str,
        user_id: str,
        limit: int = 100,
    ) -> list[DeliveryLogEntry]:
        """Newest-first delivery log for one of the user's webhooks.

        Raises:
            NotFoundError: If the user has no such webhook.
        """
        if await self.storage.get_webhook(webhook_id, user_id=user_id) is None:
            raise NotFoundError("webhook", webhook_id)
        return await self.storage.get_delivery_logs(webhook_id, limit=limit)

    async def health_check(self) -> bool:
        return await self.storage.health_check()
