"""SQL storage client for Hookgate.

This module provides the main HookgateStorage class that combines
all storage operations through mixins.

Example:
    ```python
    from hookgate.storage import HookgateStorage

    async with HookgateStorage("sqlite+aiosqlite:///./hookgate.db") as storage:
        await storage.store_webhook(webhook)
        webhooks = await storage.get_webhooks_for_event("goal.achieved")
    ```
"""

from __future__ import annotations

from typing import Any

from .base import StorageBase
from .credentials import CredentialMixin
from .webhook import WebhookMixin


class HookgateStorage(CredentialMixin, WebhookMixin, StorageBase):
    """Async SQLAlchemy storage for credentials, webhooks and delivery logs.

    This class combines functionality from multiple mixins:
    - CredentialMixin: store_credential, get_credential_by_hash, touch_credential
    - WebhookMixin: store/get/list/update/delete webhooks, atomic health
      updates, log_delivery, get_delivery_logs
    """

    async def __aenter__(self) -> HookgateStorage:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
