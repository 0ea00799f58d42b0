"""In-process storage with the same interface as HookgateStorage.

Used for tests and single-process development. A single asyncio lock
serializes every mutation, which gives the health updates the same
atomicity the SQL store gets from single-statement UPDATEs.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from hookgate.exceptions import StorageError
from hookgate.models import Credential, DeliveryLogEntry, Subscription, utc_now


class InMemoryStorage:
    """Dict-backed storage for credentials, webhooks and delivery logs."""

    def __init__(self) -> None:
        self._credentials: dict[str, Credential] = {}
        self._webhooks: dict[str, Subscription] = {}
        self._deliveries: list[DeliveryLogEntry] = []
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> InMemoryStorage:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        return None

    async def health_check(self) -> bool:
        return True

    @property
    def deliveries(self) -> list[DeliveryLogEntry]:
        """All delivery log entries in insertion order."""
        return list(self._deliveries)

    # Credentials

    async def store_credential(self, credential: Credential) -> str:
        async with self._lock:
            if any(c.key_hash == credential.key_hash for c in self._credentials.values()):
                raise StorageError("Integrity constraint violated")
            self._credentials[credential.id] = credential.model_copy(deep=True)
        return credential.id

    async def get_credential_by_hash(self, key_hash: str) -> Credential | None:
        for credential in self._credentials.values():
            if credential.key_hash == key_hash:
                return credential.model_copy(deep=True)
        return None

    async def touch_credential(self, credential_id: str, when: datetime | None = None) -> None:
        async with self._lock:
            credential = self._credentials.get(credential_id)
            if credential is not None:
                credential.last_used_at = when or utc_now()

    # Webhooks

    async def store_webhook(self, webhook: Subscription) -> str:
        async with self._lock:
            self._webhooks[webhook.id] = webhook.model_copy(deep=True)
        return webhook.id

    async def get_webhook(self, webhook_id: str, user_id: str | None = None) -> Subscription | None:
        webhook = self._webhooks.get(webhook_id)
        if webhook is None or (user_id is not None and webhook.user_id != user_id):
            return None
        return webhook.model_copy(deep=True)

    async def list_webhooks(
        self,
        user_id: str | None = None,
        active_only: bool = False,
        limit: int | None = 1000,
    ) -> list[Subscription]:
        webhooks = sorted(self._webhooks.values(), key=lambda w: w.created_at)
        if user_id is not None:
            webhooks = [w for w in webhooks if w.user_id == user_id]
        if active_only:
            webhooks = [w for w in webhooks if w.is_active]
        if limit is not None:
            webhooks = webhooks[:limit]
        return [w.model_copy(deep=True) for w in webhooks]

    async def get_webhooks_for_event(
        self,
        event_type: str,
        user_id: str | None = None,
    ) -> list[Subscription]:
        webhooks = await self.list_webhooks(user_id=user_id, active_only=True, limit=None)
        return [wh for wh in webhooks if wh.subscribes_to(event_type)]

    async def update_webhook(
        self,
        webhook_id: str,
        user_id: str | None = None,
        **updates: Any,
    ) -> Subscription | None:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None or (user_id is not None and webhook.user_id != user_id):
                return None
            data = webhook.model_dump()
            data.update(updates)
            data["updated_at"] = utc_now()
            updated = Subscription.model_validate(data)
            self._webhooks[webhook_id] = updated
            return updated.model_copy(deep=True)

    async def delete_webhook(self, webhook_id: str, user_id: str) -> bool:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None or webhook.user_id != user_id:
                return False
            del self._webhooks[webhook_id]
            self._deliveries = [d for d in self._deliveries if d.subscription_id != webhook_id]
            return True

    async def record_delivery_success(self, webhook_id: str) -> Subscription | None:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None:
                return None
            webhook.failure_count = 0
            webhook.last_triggered_at = utc_now()
            return webhook.model_copy(deep=True)

    async def record_delivery_failure(
        self,
        webhook_id: str,
        threshold: int = 10,
    ) -> Subscription | None:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None:
                return None
            now = utc_now()
            webhook.failure_count += 1
            if webhook.status == "active" and webhook.failure_count >= threshold:
                webhook.status = "disabled"
            webhook.last_triggered_at = now
            webhook.updated_at = now
            return webhook.model_copy(deep=True)

    # Delivery log

    async def log_delivery(self, entry: DeliveryLogEntry) -> str:
        async with self._lock:
            self._deliveries.append(entry.model_copy(deep=True))
        return entry.id

    async def get_delivery_logs(
        self,
        webhook_id: str,
        limit: int = 100,
    ) -> list[DeliveryLogEntry]:
        entries = [d for d in self._deliveries if d.subscription_id == webhook_id]
        entries.sort(key=lambda d: d.created_at, reverse=True)
        return [d.model_copy(deep=True) for d in entries[:limit]]


__all__ = ["InMemoryStorage"]
