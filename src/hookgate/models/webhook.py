"""Webhook models for outbound event notifications.

Provides subscription registration, event payloads, per-subscription
delivery outcomes and the append-only delivery log record.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from .base import ensure_utc, generate_id, utc_now

# Event kinds emitted by the application. Subscriptions may name any string;
# this catalogue is what the application currently produces.
WEBHOOK_EVENTS: dict[str, str] = {
    "DAILY_LOG_CREATED": "daily_log.created",
    "DAILY_LOG_UPDATED": "daily_log.updated",
    "APPOINTMENT_CREATED": "appointment.created",
    "APPOINTMENT_UPDATED": "appointment.updated",
    "GOAL_ACHIEVED": "goal.achieved",
    "FEED_POST_CREATED": "feed_post.created",
    "USER_CREATED": "user.created",
    "USER_UPDATED": "user.updated",
}

ALL_EVENT_TYPES: list[str] = list(WEBHOOK_EVENTS.values())

_DAILY_LOG_FIELDS = ("id", "user_id", "date", "reviews", "demos", "callbacks")


def _pick(record: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    """Copy the named fields that are present in ``record``, in ``fields`` order."""
    return {name: record[name] for name in fields if name in record}


SubscriptionStatus = Literal["active", "paused", "disabled"]


class Subscription(BaseModel):
    """A third party's registered interest in a set of event kinds.

    Attributes:
        id: Unique identifier, sent as ``X-Webhook-Id``.
        user_id: User who owns this webhook.
        url: Endpoint receiving signed POST requests.
        events: Event kinds this webhook subscribes to.
        secret: Shared secret for HMAC-SHA256 signatures.
        status: active, paused (by the owner) or disabled (by the breaker).
        failure_count: Consecutive failed deliveries.
        last_triggered_at: When a delivery was last attempted.
        created_at: When the webhook was registered.
        updated_at: When the webhook was last modified.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    user_id: str = Field(min_length=1, description="User who owns this webhook")
    url: HttpUrl = Field(description="Endpoint to receive events")
    events: list[str] = Field(default_factory=list, description="Subscribed event kinds")
    secret: str = Field(min_length=1, description="Shared secret for HMAC-SHA256 signatures")
    status: SubscriptionStatus = Field(default="active", description="Delivery status")
    failure_count: int = Field(default=0, ge=0, description="Consecutive failed deliveries")
    last_triggered_at: datetime | None = Field(default=None, description="Last delivery attempt")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("events")
    @classmethod
    def _dedupe_events(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @field_validator("last_triggered_at", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def subscribes_to(self, event_type: str) -> bool:
        """Check if this webhook is active and subscribes to the given event kind."""
        return self.is_active and event_type in self.events


class WebhookEvent(BaseModel):
    """An application event to fan out.

    Attributes:
        event_type: Event kind, e.g. ``daily_log.created``.
        payload: Arbitrary JSON payload, delivered verbatim.
        user_id: When set, only the user's own webhooks receive the event.
        source: Optional producer tag.
    """

    model_config = ConfigDict(extra="forbid")

    event_type: str = Field(min_length=1, description="Event kind")
    payload: Any = Field(description="Event payload")
    user_id: str | None = Field(default=None, description="Owner filter")
    source: str | None = Field(default=None, description="Producer tag")

    @classmethod
    def for_daily_log_created(cls, daily_log: Mapping[str, Any], user_id: str) -> WebhookEvent:
        """Create event for a new daily activity log."""
        return cls(
            event_type=WEBHOOK_EVENTS["DAILY_LOG_CREATED"],
            user_id=user_id,
            payload=_pick(daily_log, _DAILY_LOG_FIELDS),
        )

    @classmethod
    def for_daily_log_updated(cls, daily_log: Mapping[str, Any], user_id: str) -> WebhookEvent:
        """Create event for an edited daily activity log."""
        return cls(
            event_type=WEBHOOK_EVENTS["DAILY_LOG_UPDATED"],
            user_id=user_id,
            payload=_pick(daily_log, _DAILY_LOG_FIELDS),
        )

    @classmethod
    def for_appointment_created(
        cls, appointment: Mapping[str, Any], user_id: str
    ) -> WebhookEvent:
        """Create event for a booked appointment, including customer contact details."""
        return cls(
            event_type=WEBHOOK_EVENTS["APPOINTMENT_CREATED"],
            user_id=user_id,
            payload=_pick(
                appointment,
                (
                    "id",
                    "user_id",
                    "customer_name",
                    "customer_phone",
                    "customer_email",
                    "appointment_date",
                    "product_interests",
                ),
            ),
        )

    @classmethod
    def for_appointment_updated(
        cls, appointment: Mapping[str, Any], user_id: str
    ) -> WebhookEvent:
        """Create event for a changed appointment."""
        return cls(
            event_type=WEBHOOK_EVENTS["APPOINTMENT_UPDATED"],
            user_id=user_id,
            payload=_pick(appointment, ("id", "user_id", "customer_name", "appointment_date")),
        )

    @classmethod
    def for_goal_achieved(cls, user_id: str, goal_type: str, on: date | str) -> WebhookEvent:
        """Create event for a user reaching a goal.

        Args:
            user_id: User who reached the goal.
            goal_type: Which goal, e.g. ``demos``.
            on: Day the goal was reached. Dates are sent as ISO strings.
        """
        return cls(
            event_type=WEBHOOK_EVENTS["GOAL_ACHIEVED"],
            user_id=user_id,
            payload={
                "user_id": user_id,
                "goal_type": goal_type,
                "date": on.isoformat() if isinstance(on, date) else on,
            },
        )

    @classmethod
    def for_feed_post_created(cls, post: Mapping[str, Any], user_id: str) -> WebhookEvent:
        return cls(
            event_type=WEBHOOK_EVENTS["FEED_POST_CREATED"],
            user_id=user_id,
            payload=_pick(post, ("id", "user_id", "content", "type")),
        )

    @classmethod
    def for_user_created(cls, user: Mapping[str, Any], user_id: str) -> WebhookEvent:
        return cls(
            event_type=WEBHOOK_EVENTS["USER_CREATED"],
            user_id=user_id,
            payload=_pick(user, ("id", "name", "role")),
        )

    @classmethod
    def for_user_updated(cls, user: Mapping[str, Any], user_id: str) -> WebhookEvent:
        """Create event for a profile change; carries the user's goals."""
        return cls(
            event_type=WEBHOOK_EVENTS["USER_UPDATED"],
            user_id=user_id,
            payload=_pick(user, ("id", "name", "role", "goals")),
        )


class DeliveryResult(BaseModel):
    """Final outcome of delivering one event to one webhook.

    Attributes:
        subscription_id: Webhook the event was delivered to.
        success: True if the endpoint answered 2xx.
        status_code: Last HTTP status received, if any.
        error: Error of the last attempt when unsuccessful.
        attempts: Number of attempts made.
        duration_ms: Wall time across all attempts and backoff.
    """

    model_config = ConfigDict(extra="forbid")

    subscription_id: str
    success: bool
    status_code: int | None = None
    error: str | None = None
    attempts: int = Field(default=0, ge=0)
    duration_ms: int = Field(default=0, ge=0)


class DeliveryLogEntry(BaseModel):
    """Audit record of one (event, webhook) delivery.

    Exactly one entry is written per webhook per dispatch: the final outcome,
    not one per retry.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    subscription_id: str = Field(description="ID of the webhook")
    event_type: str = Field(description="Event kind delivered")
    payload: Any = Field(default=None, description="Payload snapshot")
    response_status: int | None = Field(default=None, description="HTTP status, if any")
    success: bool = Field(default=False)
    error_message: str | None = Field(default=None)
    attempts: int = Field(default=0, ge=0)
    delivery_time_ms: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime | None:
        return ensure_utc(value)

    @classmethod
    def from_result(cls, event: WebhookEvent, result: DeliveryResult) -> DeliveryLogEntry:
        """Build the log entry for a delivery outcome."""
        return cls(
            subscription_id=result.subscription_id,
            event_type=event.event_type,
            payload=event.payload,
            response_status=result.status_code,
            success=result.success,
            error_message=result.error,
            attempts=result.attempts,
            delivery_time_ms=result.duration_ms,
        )


class DispatchSummary(BaseModel):
    """Outcome of a dispatch call across all matching webhooks."""

    model_config = ConfigDict(extra="forbid")

    event_type: str
    delivered: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    results: list[DeliveryResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, event_type: str, results: list[DeliveryResult]) -> DispatchSummary:
        delivered = sum(1 for r in results if r.success)
        return cls(
            event_type=event_type,
            delivered=delivered,
            failed=len(results) - delivered,
            total=len(results),
            results=results,
        )


__all__ = [
    "ALL_EVENT_TYPES",
    "DeliveryLogEntry",
    "DeliveryResult",
    "DispatchSummary",
    "Subscription",
    "SubscriptionStatus",
    "WEBHOOK_EVENTS",
    "WebhookEvent",
]
