"""
Rate limiting middleware for the Vadiler backend
Uses in-memory storage with sliding window algorithm

Storefront endpoints that can be brute-forced (login, register, order tracking,
coupon validation) get their own, much smaller per-IP buckets.
"""
import hashlib
import time
from typing import Dict, Optional, Tuple
from collections import defaultdict

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse


class RateLimiter:
    """
    In-memory rate limiter using sliding window algorithm.

    State lives in the process, so limits are per instance.
    """

    def __init__(self, cleanup_interval: int = 60):
        # {identifier: [timestamp, ...]}
        self._requests: Dict[str, list] = defaultdict(list)
        self._last_cleanup = time.time()
        self._cleanup_interval = cleanup_interval

    def _cleanup_old_entries(self, window_seconds: int):
        now = time.time()
        if now - self._last_cleanup < self._cleanup_interval:
            return

        cutoff = now - window_seconds * 2
        for identifier in list(self._requests.keys()):
            self._requests[identifier] = [ts for ts in self._requests[identifier] if ts > cutoff]
            if not self._requests[identifier]:
                del self._requests[identifier]

        self._last_cleanup = now

    def is_allowed(
        self,
        identifier: str,
        max_requests: int,
        window_seconds: int = 60
    ) -> Tuple[bool, int, int]:
        """
        Check if a request is allowed under the rate limit.

        Returns:
            Tuple of (is_allowed, remaining_requests, retry_after_seconds)
        """
        self._cleanup_old_entries(window_seconds)

        now = time.time()
        window_start = now - window_seconds

        in_window = [ts for ts in self._requests[identifier] if ts > window_start]
        self._requests[identifier] = in_window

        if len(in_window) >= max_requests:
            retry_after = int(min(in_window) + window_seconds - now) + 1
            return False, 0, max(retry_after, 1)

        in_window.append(now)
        return True, max_requests - len(in_window), 0

    def reset(self):
        self._requests.clear()
        self._last_cleanup = time.time()


# Global rate limiter instance
rate_limiter = RateLimiter()


# Requests per minute
RATE_LIMITS = {
    "authenticated": 1000,   # admin panel (Bearer JWT)
    "unauthenticated": 120,  # storefront visitors
}

# (max_requests, window_seconds) per IP for sensitive storefront endpoints
STRICT_LIMITS: Dict[str, Tuple[int, int]] = {
    "/api/auth/login": (10, 60),
    "/api/auth/register": (5, 60),
    "/api/orders/track": (10, 60),
    "/api/coupons/validate": (20, 60),
}

# Paths that are exempt from rate limiting
EXEMPT_PATHS = {
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/api/payment/webhook",
    "/api/payment/callback",
    "/api/cron/verify-payments",
    "/api/cron/payment-reminders",
}


def get_request_ip(request: Request) -> str:
    """
    Get the client IP, considering proxies.

    Only the last X-Forwarded-For hop is used: it is the one our edge proxy
    appended. Earlier hops come from the client and can be anything.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
        if hops:
            return hops[-1]

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware that applies rate limiting.

    Rate limits:
    - Strict endpoints (STRICT_LIMITS): per IP + path
    - Admin users (JWT): 1000 req/min
    - Unauthenticated: 120 req/min

    Headers returned:
    - X-RateLimit-Limit: Maximum requests per window
    - X-RateLimit-Remaining: Remaining requests in current window
    - Retry-After: Seconds until the window frees a slot (when limited)
    """

    def __init__(self, app, limiter: Optional[RateLimiter] = None):
        super().__init__(app)
        self.limiter = limiter or rate_limiter

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        identifier, limit, window = self._get_identifier_and_limit(request)

        allowed, remaining, retry_after = self.limiter.is_allowed(
            identifier=identifier,
            max_requests=limit,
            window_seconds=window
        )

        if not allowed:
            # JSONResponse (not HTTPException) so the response still passes through CORS
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "error": "Çok fazla istek gönderdiniz. Lütfen biraz bekleyip tekrar deneyin.",
                },
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(retry_after),
                }
            )

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)

        return response

    def _get_identifier_and_limit(self, request: Request) -> Tuple[str, int, int]:
        """
        Priority:
        1. Strict endpoint bucket (IP + path, only for POST)
        2. JWT token (Authorization: Bearer header)
        3. IP address
        """
        path = request.url.path
        client_ip = get_request_ip(request)

        strict = STRICT_LIMITS.get(path.rstrip("/") or "/")
        if strict and request.method == "POST":
            max_requests, window = strict
            return f"strict:{path}:ip:{client_ip}", max_requests, window

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token_hash = hashlib.sha256(auth_header.encode()).hexdigest()[:16]
            return f"jwt:{token_hash}", RATE_LIMITS["authenticated"], 60

        return f"ip:{client_ip}", RATE_LIMITS["unauthenticated"], 60
