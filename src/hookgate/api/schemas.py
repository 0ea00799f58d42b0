"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

from hookgate.models import DeliveryLogEntry, DeliveryResult, Subscription, SubscriptionStatus


class DispatchRequest(BaseModel):
    """Request body for dispatching an event.

    Attributes:
        event_type: Event kind, e.g. ``goal.achieved``.
        payload: Arbitrary JSON payload, delivered verbatim.
        user_id: Only deliver to this user's webhooks.
        source: Optional producer tag.
    """

    # Producers may send extra fields (e.g. a timestamp); they are ignored.
    model_config = ConfigDict(extra="ignore")

    event_type: str = Field(min_length=1, description="Event kind")
    payload: Any = Field(description="Event payload")
    user_id: str | None = Field(default=None, description="Owner filter")
    source: str | None = Field(default=None, description="Producer tag")

    @field_validator("payload")
    @classmethod
    def _payload_present(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("payload is required")
        return value

    @field_validator("user_id", "source")
    @classmethod
    def _blank_is_unset(cls, value: str | None) -> str | None:
        return value or None


class DeliveryResultResponse(BaseModel):
    """Per-webhook outcome within a dispatch response."""

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    success: bool
    status: int | None = None
    error: str | None = None
    attempts: int = 0

    @classmethod
    def from_result(cls, result: DeliveryResult) -> DeliveryResultResponse:
        return cls(
            webhook_id=result.subscription_id,
            success=result.success,
            status=result.status_code,
            error=result.error,
            attempts=result.attempts,
        )


class DispatchResponse(BaseModel):
    """Response for a dispatch call.

    Always returned with 200, even when every delivery failed.

    Attributes:
        success: The dispatcher itself ran to completion.
        event_type: Event kind dispatched.
        delivered: Webhooks that answered 2xx.
        failed: Webhooks that failed after all retries.
        total: Webhooks the event was delivered to.
        results: Per-webhook outcomes.
        message: Set when no webhook was subscribed.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool = True
    event_type: str
    delivered: int
    failed: int
    total: int
    results: list[DeliveryResultResponse] = Field(default_factory=list)
    message: str | None = None


class WebhookCreateRequest(BaseModel):
    """Request body for registering a webhook."""

    model_config = ConfigDict(extra="forbid")

    url: HttpUrl = Field(description="Endpoint to receive events")
    events: list[str] = Field(min_length=1, description="Event kinds to subscribe to")


class WebhookResponse(BaseModel):
    """A registered webhook. The signing secret is never included."""

    model_config = ConfigDict(extra="forbid")

    id: str
    url: str
    events: list[str]
    status: SubscriptionStatus
    failure_count: int
    last_triggered_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_subscription(cls, webhook: Subscription) -> WebhookResponse:
        return cls(
            id=webhook.id,
            url=str(webhook.url),
            events=webhook.events,
            status=webhook.status,
            failure_count=webhook.failure_count,
            last_triggered_at=webhook.last_triggered_at,
            created_at=webhook.created_at,
        )


class WebhookCreatedResponse(WebhookResponse):
    """Response for webhook registration; the only time the secret is shown."""

    secret: str


class WebhookListResponse(BaseModel):
    """Response for listing a user's webhooks."""

    model_config = ConfigDict(extra="forbid")

    webhooks: list[WebhookResponse]
    count: int


class WebhookDeletedResponse(BaseModel):
    """Response for webhook deletion."""

    model_config = ConfigDict(extra="forbid")

    id: str
    deleted: bool


class DeliveryLogResponse(BaseModel):
    """One delivery log entry.

    Attributes:
        id: Entry ID.
        event_type: Event kind delivered.
        payload: Payload snapshot.
        response_status: Last HTTP status, if any.
        success: Whether the delivery succeeded.
        error_message: Final error when unsuccessful.
        attempts: Attempts made.
        delivery_time_ms: Wall time across attempts.
        created_at: When the outcome was recorded.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    event_type: str
    payload: Any = None
    response_status: int | None = None
    success: bool
    error_message: str | None = None
    attempts: int
    delivery_time_ms: int
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: DeliveryLogEntry) -> DeliveryLogResponse:
        return cls.model_validate(entry.model_dump(exclude={"subscription_id"}))


class DeliveryLogListResponse(BaseModel):
    """Newest-first delivery log for a webhook."""

    model_config = ConfigDict(extra="forbid")

    webhook_id: str
    deliveries: list[DeliveryLogResponse]
    count: int


class HealthResponse(BaseModel):
    """Response for health check endpoint.

    Attributes:
        status: Service status (healthy, degraded, unhealthy).
        version: API version.
        storage_connected: Whether storage is reachable.
        audit_write_failures: Delivery log entries that could not be written.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    storage_connected: bool
    audit_write_failures: int = 0
