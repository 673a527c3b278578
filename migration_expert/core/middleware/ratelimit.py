from typing import Dict, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from migration_expert.core.errors import RateLimitError, app_error_handler
from migration_expert.core.logging import get_request_id, log_event
from migration_expert.core.ratelimit import AUTH, GENERAL, PLAN, FixedWindowRateLimiter, RateLimitDecision


ROUTE_CLASSES: Dict[str, List[str]] = {
    AUTH: ["/api/signup", "/api/login"],
    PLAN: ["/api/generate-plan"],
}


def route_class_for_path(path: str) -> Optional[str]:
    for route_class, paths in ROUTE_CLASSES.items():
        if path.rstrip("/") in paths:
            return route_class
    return None


def client_address(request: Request, trust_proxy_hops: int = 0) -> str:
    """Resolve the caller's address, trusting at most trust_proxy_hops proxies."""
    peer = request.client.host if request.client else "unknown"
    if trust_proxy_hops <= 0:
        return peer
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded:
        return peer
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    if not hops:
        return peer
    return hops[max(0, len(hops) - trust_proxy_hops)]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject over-budget requests before any routing, auth or generation work."""

    def __init__(self, app, *, limiter: FixedWindowRateLimiter, enabled: bool = True, trust_proxy_hops: int = 0):
        super().__init__(app)
        self.limiter = limiter
        self.enabled = enabled
        self.trust_proxy_hops = trust_proxy_hops

    async def dispatch(self, request: Request, call_next):
        if not self.enabled or request.method.upper() == "OPTIONS":
            return await call_next(request)

        address = client_address(request, self.trust_proxy_hops)
        classes = [GENERAL]
        specific = route_class_for_path(request.url.path)
        if specific:
            classes.append(specific)

        for route_class in classes:
            decision = await self.limiter.check(route_class, address)
            if decision is not None and not decision.allowed:
                return await self._reject(request, decision)

        return await call_next(request)

    async def _reject(self, request: Request, decision: RateLimitDecision):
        rid = getattr(request.state, "request_id", None) or get_request_id()
        log_event(
            "warning",
            "ratelimit.blocked",
            request_id=rid,
            error_code=RateLimitError.code,
            extra={"route_class": decision.route_class, "path": request.url.path},
        )
        response = await app_error_handler(
            request,
            RateLimitError(decision.message, request_id=rid),
        )
        response.headers["Retry-After"] = str(decision.retry_after)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = "0"
        response.headers["X-RateLimit-Reset"] = str(decision.retry_after)
        return response
