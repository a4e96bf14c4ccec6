"""
Tests for admin JWT authentication

Author: TM3
Date: 2025-12-04
"""
import time

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from vadiler.core.auth import JWT_ALGORITHM, TokenUser, require_admin
from vadiler.core.config import settings


def make_token(secret=None, **claims):
    payload = {
        "sub": "admin-1",
        "email": "admin@vadiler.com",
        "role": "admin",
        "iat": int(time.time()),
        "exp": int(time.time()) + 3600,
    }
    payload.update(claims)
    return jwt.encode(payload, secret or settings.AUTH_SECRET, algorithm=JWT_ALGORITHM)


@pytest.fixture
def client():
    app = FastAPI()

    @app.get("/protected")
    async def protected(user: TokenUser = Depends(require_admin)):
        return {"id": user.id, "email": user.email, "role": user.role}

    return TestClient(app)


class TestRequireAdmin:

    def test_valid_admin_token(self, client):
        response = client.get("/protected", headers={"Authorization": f"Bearer {make_token()}"})

        assert response.status_code == 200
        assert response.json() == {"id": "admin-1", "email": "admin@vadiler.com", "role": "admin"}

    def test_missing_token(self, client):
        response = client.get("/protected")

        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication required"

    def test_expired_token(self, client):
        token = make_token(exp=int(time.time()) - 10)

        response = client.get("/protected", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Token has expired"

    def test_wrong_secret(self, client):
        token = make_token(secret="not-the-secret")

        response = client.get("/protected", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_non_admin_role(self, client):
        token = make_token(role="editor")

        response = client.get("/protected", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403

    def test_missing_email_claim(self, client):
        token = make_token(email=None)

        response = client.get("/protected", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
