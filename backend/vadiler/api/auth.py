"""
Customer authentication API
- Login / register / logout for storefront customers
- Session lookup from the signed vadiler_customer_auth cookie

Admin users authenticate separately (Bearer JWT, see core/auth.py).

Author: TM3
Date: 2025-12-04
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from vadiler.api.deps import read_json_body
from vadiler.core.config import settings
from vadiler.core.session import (
    CUSTOMER_COOKIE,
    SESSION_MAX_AGE_SECONDS,
    create_session_payload,
    sign_session,
    verify_session,
)
from vadiler.services.customer_auth_service import CustomerAuthError, CustomerAuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Customer Auth"])


def get_customer_auth_service() -> CustomerAuthService:
    return CustomerAuthService()


def _session_secret() -> str:
    secret = settings.AUTH_SESSION_SECRET
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="AUTH_SESSION_SECRET is not configured"
        )
    return secret


def set_session_cookie(response: Response, customer_id: str, email: str) -> None:
    payload = create_session_payload(customer_id, email, SESSION_MAX_AGE_SECONDS)
    response.set_cookie(
        key=CUSTOMER_COOKIE,
        value=sign_session(_session_secret(), payload),
        max_age=SESSION_MAX_AGE_SECONDS,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


@router.post("/login")
async def login(
    request: Request,
    response: Response,
    service: CustomerAuthService = Depends(get_customer_auth_service)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        customer = service.login(body.get('email'), body.get('password'))
    except CustomerAuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Login error: {e}")
        raise HTTPException(status_code=500, detail="Giriş yapılırken bir hata oluştu.")

    set_session_cookie(response, customer.id, customer.email)
    logger.info(f"Customer logged in: {customer.id}")
    return {"success": True, "customer": customer.to_api()}


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: Request,
    service: CustomerAuthService = Depends(get_customer_auth_service)
):
    body = await read_json_body(request)
    body = body if isinstance(body, dict) else {}

    try:
        customer = service.register(body)
    except CustomerAuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Register error: {e}")
        raise HTTPException(status_code=500, detail="Kayıt sırasında bir hata oluştu.")

    return {"success": True, "customer": customer.to_api()}


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(key=CUSTOMER_COOKIE, path="/")
    return {"success": True}


@router.get("/session")
async def get_session(
    request: Request,
    service: CustomerAuthService = Depends(get_customer_auth_service)
):
    secret = _session_secret()

    payload = verify_session(secret, request.cookies.get(CUSTOMER_COOKIE))
    if not payload:
        return {"customer": None}

    customer = service.get_session_customer(payload.customerId)
    if not customer:
        return {"customer": None}

    return {"customer": customer.to_api()}
