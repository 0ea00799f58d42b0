"""API key storage operations."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update

from hookgate.models import Credential, utc_now

from .retry import db_retry
from .tables import ApiKeyRow


class CredentialMixin:
    """Mixin providing API key operations for HookgateStorage.

    This mixin expects ``session()`` from StorageBase.
    """

    session: Any

    async def store_credential(self, credential: Credential) -> str:
        """Persist an issued credential.

        Args:
            credential: Credential holding the key digest (never the raw key).

        Returns:
            The credential ID.
        """
        async with self.session() as session:
            session.add(ApiKeyRow(**credential.model_dump()))
        return credential.id

    @db_retry
    async def get_credential_by_hash(self, key_hash: str) -> Credential | None:
        """Look up a credential by key digest.

        Args:
            key_hash: Hex SHA-256 digest of the presented key.

        Returns:
            Credential or None if no key has this digest.
        """
        async with self.session() as session:
            row = await session.scalar(select(ApiKeyRow).where(ApiKeyRow.key_hash == key_hash))
            if row is None:
                return None
            return Credential.model_validate(row, from_attributes=True)

    @db_retry
    async def touch_credential(self, credential_id: str, when: datetime | None = None) -> None:
        """Record that a credential was just used.

        Args:
            credential_id: ID of the credential.
            when: Timestamp to record (default: now).
        """
        async with self.session() as session:
            await session.execute(
                update(ApiKeyRow)
                .where(ApiKeyRow.id == credential_id)
                .values(last_used_at=when or utc_now())
                .execution_options(synchronize_session=False)
            )


__all__ = ["CredentialMixin"]
