"""
Tests for rate limiting and the noindex header

Author: TM3
Date: 2025-12-04
"""
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from vadiler.core.middleware import NoIndexMiddleware, is_noindex_path
from vadiler.core.rate_limit import RateLimiter, RateLimitMiddleware


@pytest.fixture
def limiter():
    return RateLimiter()


@pytest.fixture
def client(limiter):
    app = FastAPI()
    app.add_middleware(NoIndexMiddleware)
    app.add_middleware(RateLimitMiddleware, limiter=limiter)

    @app.post("/api/auth/login")
    async def login():
        return {"ok": True}

    @app.get("/api/settings")
    async def settings():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/urunler")
    async def products():
        return {"ok": True}

    return TestClient(app)


class TestRateLimiter:

    def test_sliding_window(self, limiter):
        assert limiter.is_allowed("ip:1", max_requests=2) == (True, 1, 0)
        assert limiter.is_allowed("ip:1", max_requests=2) == (True, 0, 0)

        allowed, remaining, retry_after = limiter.is_allowed("ip:1", max_requests=2)

        assert allowed is False
        assert remaining == 0
        assert retry_after >= 1

    def test_identifiers_are_independent(self, limiter):
        limiter.is_allowed("ip:1", max_requests=1)
        assert limiter.is_allowed("ip:2", max_requests=1)[0] is True

    def test_reset(self, limiter):
        limiter.is_allowed("ip:1", max_requests=1)
        limiter.reset()
        assert limiter.is_allowed("ip:1", max_requests=1)[0] is True


class TestRateLimitMiddleware:

    def test_login_has_strict_bucket(self, client):
        headers = {"X-Forwarded-For": "203.0.113.5"}
        for _ in range(10):
            assert client.post("/api/auth/login", headers=headers).status_code == 200

        response = client.post("/api/auth/login", headers=headers)

        assert response.status_code == 429
        assert response.json()["success"] is False
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert "Retry-After" in response.headers

    def test_strict_bucket_is_per_ip(self, client):
        for _ in range(10):
            client.post("/api/auth/login", headers={"X-Forwarded-For": "203.0.113.5"})

        response = client.post("/api/auth/login", headers={"X-Forwarded-For": "203.0.113.6"})

        assert response.status_code == 200

    def test_spoofed_forwarded_hops_share_a_bucket(self, client):
        for i in range(10):
            client.post("/api/auth/login", headers={"X-Forwarded-For": f"10.0.0.{i}, 203.0.113.5"})

        response = client.post("/api/auth/login", headers={"X-Forwarded-For": "1.1.1.1, 203.0.113.5"})

        assert response.status_code == 429

    def test_limit_headers(self, client):
        response = client.get("/api/settings")

        assert response.headers["X-RateLimit-Limit"] == "120"
        assert response.headers["X-RateLimit-Remaining"] == "119"

    def test_bearer_token_bucket(self, client):
        response = client.get("/api/settings", headers={"Authorization": "Bearer abc"})
        assert response.headers["X-RateLimit-Limit"] == "1000"

    def test_exempt_paths(self, client):
        response = client.get("/health")
        assert "X-RateLimit-Limit" not in response.headers


class TestNoIndex:

    def test_is_noindex_path(self):
        assert is_noindex_path("/api/orders")
        assert is_noindex_path("/yonetim")
        assert is_noindex_path("/payment/complete")
        assert not is_noindex_path("/apiary")
        assert not is_noindex_path("/urunler")

    def test_header_on_private_paths(self, client):
        assert client.get("/api/settings").headers["X-Robots-Tag"] == "noindex, nofollow"
        assert "X-Robots-Tag" not in client.get("/urunler").headers
