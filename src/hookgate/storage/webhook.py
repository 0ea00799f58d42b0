"""Webhook storage operations for Hookgate.

Provides methods to store, retrieve and manage webhooks, apply delivery
health updates atomically, and append to the delivery log.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import and_, case, delete, select, update

from hookgate.models import DeliveryLogEntry, Subscription, utc_now

from .retry import db_retry
from .tables import DeliveryLogRow, WebhookRow


def _row_to_webhook(row: WebhookRow) -> Subscription:
    return Subscription.model_validate(row, from_attributes=True)


class WebhookMixin:
    """Mixin providing webhook operations for HookgateStorage.

    This mixin expects ``session()`` from StorageBase.

    Health counters are never read-modified-written in process memory: the
    increment and the breaker transition are one UPDATE statement, so
    concurrent dispatches of different events to the same webhook cannot
    lose updates.
    """

    session: Any

    async def store_webhook(self, webhook: Subscription) -> str:
        """Insert or replace a webhook configuration.

        Args:
            webhook: Subscription to store.

        Returns:
            The webhook ID.
        """
        values = webhook.model_dump()
        values["url"] = str(webhook.url)

        async with self.session() as session:
            await session.merge(WebhookRow(**values))
        return webhook.id

    @db_retry
    async def get_webhook(self, webhook_id: str, user_id: str | None = None) -> Subscription | None:
        """Get a webhook by ID.

        Args:
            webhook_id: ID of the webhook.
            user_id: When set, the webhook must belong to this user.

        Returns:
            Subscription or None if not found.
        """
        stmt = select(WebhookRow).where(WebhookRow.id == webhook_id)
        if user_id is not None:
            stmt = stmt.where(WebhookRow.user_id == user_id)

        async with self.session() as session:
            row = await session.scalar(stmt)
            return _row_to_webhook(row) if row is not None else None

    @db_retry
    async def list_webhooks(
        self,
        user_id: str | None = None,
        active_only: bool = False,
        limit: int | None = 1000,
    ) -> list[Subscription]:
        """List webhooks, optionally for one user.

        Args:
            user_id: User to list webhooks for (all users if None).
            active_only: If True, only return active webhooks.
            limit: Maximum webhooks to return (no cap if None).

        Returns:
            List of Subscription ordered by creation time.
        """
        stmt = select(WebhookRow).order_by(WebhookRow.created_at)
        if limit is not None:
            stmt = stmt.limit(limit)
        if user_id is not None:
            stmt = stmt.where(WebhookRow.user_id == user_id)
        if active_only:
            stmt = stmt.where(WebhookRow.status == "active")

        async with self.session() as session:
            rows = (await session.scalars(stmt)).all()
            return [_row_to_webhook(row) for row in rows]

    async def get_webhooks_for_event(
        self,
        event_type: str,
        user_id: str | None = None,
    ) -> list[Subscription]:
        """Get all active webhooks that subscribe to an event kind.

        Args:
            event_type: The event kind to filter for.
            user_id: Optional owner filter.

        Returns:
            List of Subscription that subscribe to this event.
        """
        webhooks = await self.list_webhooks(user_id=user_id, active_only=True, limit=None)
        return [wh for wh in webhooks if wh.subscribes_to(event_type)]

    async def update_webhook(
        self,
        webhook_id: str,
        user_id: str | None = None,
        **updates: Any,
    ) -> Subscription | None:
        """Update fields of a webhook.

        Args:
            webhook_id: ID of the webhook to update.
            user_id: When set, the webhook must belong to this user.
            **updates: Column values to set.

        Returns:
            Updated Subscription or None if not found.
        """
        if "url" in updates:
            updates["url"] = str(updates["url"])
        updates["updated_at"] = utc_now()

        stmt = update(WebhookRow).where(WebhookRow.id == webhook_id)
        if user_id is not None:
            stmt = stmt.where(WebhookRow.user_id == user_id)

        async with self.session() as session:
            result = await session.execute(
                stmt.values(**updates).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            row = await session.get(WebhookRow, webhook_id, populate_existing=True)
            return _row_to_webhook(row) if row is not None else None

    async def delete_webhook(self, webhook_id: str, user_id: str) -> bool:
        """Delete a webhook configuration and its delivery log.

        Args:
            webhook_id: ID of the webhook to delete.
            user_id: Owner; other users' webhooks are never deleted.

        Returns:
            True if deleted, False if not found.
        """
        async with self.session() as session:
            await session.execute(
                delete(DeliveryLogRow).where(
                    DeliveryLogRow.subscription_id.in_(
                        select(WebhookRow.id).where(
                            WebhookRow.id == webhook_id,
                            WebhookRow.user_id == user_id,
                        )
                    )
                )
            )
            result = await session.execute(
                delete(WebhookRow).where(
                    WebhookRow.id == webhook_id,
                    WebhookRow.user_id == user_id,
                )
            )
            return bool(result.rowcount)

    @db_retry
    async def record_delivery_success(self, webhook_id: str) -> Subscription | None:
        """Reset the failure counter after a successful delivery.

        Args:
            webhook_id: ID of the webhook.

        Returns:
            The webhook after the update, or None if it no longer exists.
        """
        async with self.session() as session:
            await session.execute(
                update(WebhookRow)
                .where(WebhookRow.id == webhook_id)
                .values(failure_count=0, last_triggered_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            row = await session.get(WebhookRow, webhook_id, populate_existing=True)
            return _row_to_webhook(row) if row is not None else None

    async def record_delivery_failure(
        self,
        webhook_id: str,
        threshold: int = 10,
    ) -> Subscription | None:
        """Count a failed delivery and trip the breaker at ``threshold``.

        The increment and the ``active -> disabled`` transition happen in a
        single statement evaluated against the stored row.

        Args:
            webhook_id: ID of the webhook.
            threshold: Consecutive failures that disable the webhook.

        Returns:
            The webhook after the update, or None if it no longer exists.
        """
        now = utc_now()
        next_count = WebhookRow.failure_count + 1
        async with self.session() as session:
            await session.execute(
                update(WebhookRow)
                .where(WebhookRow.id == webhook_id)
                .values(
                    failure_count=next_count,
                    status=case(
                        (
                            and_(WebhookRow.status == "active", next_count >= threshold),
                            "disabled",
                        ),
                        else_=WebhookRow.status,
                    ),
                    last_triggered_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            row = await session.get(WebhookRow, webhook_id, populate_existing=True)
            return _row_to_webhook(row) if row is not None else None

    async def log_delivery(self, entry: DeliveryLogEntry) -> str:
        """Append a delivery log entry.

        Args:
            entry: DeliveryLogEntry to persist.

        Returns:
            The entry ID.
        """
        async with self.session() as session:
            session.add(DeliveryLogRow(**entry.model_dump()))
        return entry.id

    @db_retry
    async def get_delivery_logs(
        self,
        webhook_id: str,
        limit: int = 100,
    ) -> list[DeliveryLogEntry]:
        """Get delivery logs for a webhook, newest first.

        Args:
            webhook_id: ID of the webhook.
            limit: Maximum entries to return.

        Returns:
            List of DeliveryLogEntry sorted by created_at descending.
        """
        stmt = (
            select(DeliveryLogRow)
            .where(DeliveryLogRow.subscription_id == webhook_id)
            .order_by(DeliveryLogRow.created_at.desc())
            .limit(limit)
        )
        async with self.session() as session:
            rows = (await session.scalars(stmt)).all()
            return [DeliveryLogEntry.model_validate(row, from_attributes=True) for row in rows]


__all__ = ["WebhookMixin"]
