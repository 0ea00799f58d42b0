"""FastAPI dependencies for authentication and rate limiting.

Provides:
- AuthDependency: Bearer API key authentication per request
- RateLimitDependency: per-key fixed-window limiting
- add_rate_limit_headers: X-RateLimit-* response headers
"""

import math
from collections.abc import Callable
from typing import TYPE_CHECKING

from fastapi import Request, Response

from hookgate.auth import AuthenticatedKey, RateLimitInfo
from hookgate.exceptions import AuthenticationError, RateLimitError
from hookgate.logging import bind_context, get_logger

if TYPE_CHECKING:
    from hookgate.service import HookgateService

logger = get_logger(__name__)

ServiceProvider = Callable[[], "HookgateService"]


class AuthDependency:
    """FastAPI dependency for API key authentication.

    Usage:
        require_api_key = AuthDependency(current_service, always_required=True)

        @router.get("/webhooks")
        async def list_webhooks(
            key: Annotated[AuthenticatedKey, Depends(require_api_key)],
        ):
            ...

    With ``always_required=False`` the key is only enforced while
    ``auth_enabled`` is set; otherwise the dependency yields None.
    The result is cached on the request so later dependencies reuse it.
    """

    def __init__(self, service: ServiceProvider, always_required: bool = False) -> None:
        self._service = service
        self.always_required = always_required

    async def __call__(self, request: Request) -> AuthenticatedKey | None:
        if hasattr(request.state, "api_key"):
            cached: AuthenticatedKey | None = request.state.api_key
            return cached

        service = self._service()
        if not self.always_required and not service.settings.auth_enabled:
            request.state.api_key = None
            return None

        key = await service.authenticator.authenticate_header(request.headers.get("Authorization"))
        if key is None:
            raise AuthenticationError("Missing authentication credentials")

        bind_context(key_id=key.key_id, user_id=key.user_id)
        logger.debug("API key authenticated")
        request.state.api_key = key
        return key


def extract_client_ip(request: Request, *, trust_proxy_headers: bool = False) -> str:
    """Extract the best available client IP for rate limiting anonymous calls.

    Priority (when trust_proxy_headers is True):
        1. X-Forwarded-For, leftmost entry
        2. X-Real-IP
        3. request.client.host

    Returns:
        A rate-limit key prefixed with ``ip:`` so it cannot collide with
        credential IDs.
    """
    if trust_proxy_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return f"ip:{client_ip}"

        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return f"ip:{real_ip.strip()}"

    if request.client and request.client.host:
        return f"ip:{request.client.host}"

    return "ip:unknown"


class RateLimitDependency:
    """FastAPI dependency for per-key rate limiting.

    Runs the given AuthDependency first (reusing its cached result) and
    counts the request against the credential ID, or the client IP for
    anonymous requests.
    """

    def __init__(
        self,
        service: ServiceProvider,
        auth: AuthDependency,
        limit: int | None = None,
    ) -> None:
        self._service = service
        self._auth = auth
        self.limit = limit

    async def __call__(self, request: Request) -> RateLimitInfo | None:
        key = await self._auth(request)

        service = self._service()
        settings = service.settings
        if not settings.rate_limit_enabled:
            return None

        if key is not None:
            limit_key = key.key_id
        else:
            limit_key = extract_client_ip(
                request,
                trust_proxy_headers=settings.rate_limit_trust_proxy_headers,
            )

        info = service.rate_limiter.acquire(
            limit_key,
            limit=self.limit or settings.rate_limit_requests,
            window_ms=settings.rate_limit_window_ms,
        )
        if not info.allowed:
            raise RateLimitError(info.retry_after)
        return info


def add_rate_limit_headers(
    response: Response,
    rate_info: RateLimitInfo | None,
) -> None:
    """Add rate limit headers to response.

    Args:
        response: FastAPI Response object.
        rate_info: Rate limit info (None if disabled).
    """
    if rate_info is None:
        return

    response.headers["X-RateLimit-Limit"] = str(rate_info.limit)
    response.headers["X-RateLimit-Remaining"] = str(rate_info.remaining)
    response.headers["X-RateLimit-Reset"] = str(math.ceil(rate_info.reset_at / 1000))
