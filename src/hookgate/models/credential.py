"""API key credential model.

Only the SHA-256 digest of a key is ever stored. The raw value exists in
memory once, when the key is issued, and is handed back to the caller.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import ensure_utc, generate_id, utc_now


class Credential(BaseModel):
    """An issued API key.

    Attributes:
        id: Unique identifier; doubles as the rate-limit key.
        user_id: User who owns this key.
        key_hash: Hex SHA-256 digest of the raw key (unique).
        name: Human-readable label.
        expires_at: Optional expiry; expired keys are rejected.
        last_used_at: Last successful authentication.
        created_at: When the key was issued.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("key"))
    user_id: str = Field(min_length=1, description="User who owns this key")
    key_hash: str = Field(min_length=64, max_length=64, description="SHA-256 hex digest")
    name: str | None = Field(default=None, description="Human-readable label")
    expires_at: datetime | None = Field(default=None, description="Optional expiry")
    last_used_at: datetime | None = Field(default=None, description="Last successful use")
    created_at: datetime = Field(default_factory=utc_now, description="When the key was issued")

    @field_validator("expires_at", "last_used_at", "created_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the key's expiry is in the past."""
        if self.expires_at is None:
            return False
        return self.expires_at < (now or utc_now())


__all__ = ["Credential"]
