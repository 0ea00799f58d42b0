"""Storage backends for Hookgate.

This module provides the storage layer for API keys, webhooks and the
delivery log: a SQLAlchemy-backed store and an in-process store with the
same interface.

Example:
    ```python
    from hookgate.storage import HookgateStorage

    storage = HookgateStorage()
    await storage.initialize()
    webhooks = await storage.get_webhooks_for_event("goal.achieved")
    ```
"""

from typing import TypeAlias

from .client import HookgateStorage
from .memory import InMemoryStorage
from .retry import TransientStorageError, db_retry

Storage: TypeAlias = HookgateStorage | InMemoryStorage

__all__ = [
    "HookgateStorage",
    "InMemoryStorage",
    "Storage",
    "TransientStorageError",
    "db_retry",
]
