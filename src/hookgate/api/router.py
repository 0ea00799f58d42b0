"""FastAPI router for Hookgate API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from hookgate.auth import AuthenticatedKey, RateLimitInfo
from hookgate.exceptions import AuthorizationError
from hookgate.logging import get_logger
from hookgate.service import HookgateService

from .auth import AuthDependency, RateLimitDependency, add_rate_limit_headers
from .schemas import (
    DeliveryLogListResponse,
    DeliveryLogResponse,
    DeliveryResultResponse,
    DispatchRequest,
    DispatchResponse,
    HealthResponse,
    WebhookCreatedResponse,
    WebhookCreateRequest,
    WebhookDeletedResponse,
    WebhookListResponse,
    WebhookResponse,
)

logger = get_logger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: HookgateService | None = None


def set_service(service: HookgateService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


def current_service() -> HookgateService:
    """Return the service or fail with 503 if the app has not started."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


async def get_service() -> HookgateService:
    """Dependency to get the HookgateService instance."""
    return current_service()


ServiceDep = Annotated[HookgateService, Depends(get_service)]

# Webhook management always needs a key; dispatch only while auth is enabled.
require_api_key = AuthDependency(current_service, always_required=True)
dispatch_auth = AuthDependency(current_service)
key_rate_limit = RateLimitDependency(current_service, require_api_key)
dispatch_rate_limit = RateLimitDependency(current_service, dispatch_auth)

ApiKeyDep = Annotated[AuthenticatedKey, Depends(require_api_key)]
KeyRateLimitDep = Annotated[RateLimitInfo | None, Depends(key_rate_limit)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health.

    Reports storage connectivity and how many delivery log entries could
    not be written since startup.
    """
    if _service is None:
        return HealthResponse(status="unhealthy", version="0.1.0", storage_connected=False)

    connected = await _service.health_check()
    audit_failures = _service.dispatcher.auditor.write_failures
    return HealthResponse(
        status="healthy" if connected and audit_failures == 0 else "degraded",
        version="0.1.0",
        storage_connected=connected,
        audit_write_failures=audit_failures,
    )


@router.post("/dispatch", response_model=DispatchResponse, tags=["webhooks"])
async def dispatch(
    request: DispatchRequest,
    response: Response,
    service: ServiceDep,
    key: Annotated[AuthenticatedKey | None, Depends(dispatch_auth)],
    rate_info: Annotated[RateLimitInfo | None, Depends(dispatch_rate_limit)],
) -> DispatchResponse:
    """Fan an event out to every active webhook subscribed to it.

    Deliveries that fail after all retries are reported per webhook in the
    body; the call itself still succeeds. A call made with an API key is
    scoped to the key owner's webhooks.

    Raises:
        AuthorizationError: If ``user_id`` names a different user than the key.
    """
    add_rate_limit_headers(response, rate_info)

    user_id = request.user_id
    if key is not None:
        if user_id is not None and user_id != key.user_id:
            raise AuthorizationError("Cannot dispatch events for another user")
        user_id = key.user_id

    summary = await service.dispatch(
        request.event_type,
        request.payload,
        user_id=user_id,
        source=request.source,
    )

    return DispatchResponse(
        event_type=summary.event_type,
        delivered=summary.delivered,
        failed=summary.failed,
        total=summary.total,
        results=[DeliveryResultResponse.from_result(r) for r in summary.results],
        message="No webhooks subscribed to this event" if summary.total == 0 else None,
    )


@router.get("/webhooks", response_model=WebhookListResponse, tags=["webhooks"])
async def list_webhooks(
    response: Response,
    service: ServiceDep,
    key: ApiKeyDep,
    rate_info: KeyRateLimitDep,
) -> WebhookListResponse:
    """List the caller's webhooks. Secrets are never returned."""
    add_rate_limit_headers(response, rate_info)
    webhooks = await service.list_webhooks(key.user_id)
    return WebhookListResponse(
        webhooks=[WebhookResponse.from_subscription(w) for w in webhooks],
        count=len(webhooks),
    )


@router.post(
    "/webhooks",
    response_model=WebhookCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["webhooks"],
)
async def create_webhook(
    request: WebhookCreateRequest,
    response: Response,
    service: ServiceDep,
    key: ApiKeyDep,
    rate_info: KeyRateLimitDep,
) -> WebhookCreatedResponse:
    """Register a webhook.

    The signing secret is returned in this response only; store it to
    verify ``X-Webhook-Signature`` on received deliveries.
    """
    add_rate_limit_headers(response, rate_info)
    webhook, secret = await service.create_webhook(
        user_id=key.user_id,
        url=str(request.url),
        events=request.events,
    )
    base = WebhookResponse.from_subscription(webhook)
    return WebhookCreatedResponse(**base.model_dump(), secret=secret)


@router.delete(
    "/webhooks/{webhook_id}",
    response_model=WebhookDeletedResponse,
    tags=["webhooks"],
)
async def delete_webhook(
    webhook_id: str,
    response: Response,
    service: ServiceDep,
    key: ApiKeyDep,
    rate_info: KeyRateLimitDep,
) -> WebhookDeletedResponse:
    """Delete one of the caller's webhooks along with its delivery log."""
    add_rate_limit_headers(response, rate_info)
    await service.delete_webhook(webhook_id, key.user_id)
    return WebhookDeletedResponse(id=webhook_id, deleted=True)


@router.post(
    "/webhooks/{webhook_id}/enable",
    response_model=WebhookResponse,
    tags=["webhooks"],
)
async def enable_webhook(
    webhook_id: str,
    response: Response,
    service: ServiceDep,
    key: ApiKeyDep,
    rate_info: KeyRateLimitDep,
) -> WebhookResponse:
    """Re-enable a disabled or paused webhook and reset its failure counter."""
    add_rate_limit_headers(response, rate_info)
    webhook = await service.enable_webhook(webhook_id, key.user_id)
    return WebhookResponse.from_subscription(webhook)


@router.get(
    "/webhooks/{webhook_id}/deliveries",
    response_model=DeliveryLogListResponse,
    tags=["webhooks"],
)
async def list_deliveries(
    webhook_id: str,
    response: Response,
    service: ServiceDep,
    key: ApiKeyDep,
    rate_info: KeyRateLimitDep,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> DeliveryLogListResponse:
    """Delivery log for one of the caller's webhooks, newest first."""
    add_rate_limit_headers(response, rate_info)
    entries = await service.get_deliveries(webhook_id, key.user_id, limit=limit)
    return DeliveryLogListResponse(
        webhook_id=webhook_id,
        deliveries=[DeliveryLogResponse.from_entry(e) for e in entries],
        count=len(entries),
    )
