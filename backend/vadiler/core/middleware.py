"""
HTTP middleware shared by the storefront and admin routes
"""
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request

# Pages/APIs that search engines must not index
NOINDEX_PREFIXES = ("/api", "/payment", "/yonetim", "/hesabim", "/sepet")


def is_noindex_path(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in NOINDEX_PREFIXES)


class NoIndexMiddleware(BaseHTTPMiddleware):
    """Adds X-Robots-Tag: noindex, nofollow to private paths"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if is_noindex_path(request.url.path):
            response.headers["X-Robots-Tag"] = "noindex, nofollow"
        return response
