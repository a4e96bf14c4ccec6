"""
Admin panel authentication (/yonetim)

The panel signs an HS256 JWT with AUTH_SECRET and sends it as
`Authorization: Bearer <token>`. Storefront customers never reach these
dependencies; they use the signed cookie in core/session.py.

Author: TM3
Updated: 2025-12-04
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from vadiler.core.config import settings

security = HTTPBearer(auto_error=False)

JWT_ALGORITHM = "HS256"
ADMIN_ROLE = "admin"


class TokenUser(BaseModel):
    """Admin panel user taken from the token claims"""
    id: str
    email: str
    name: Optional[str] = None
    role: str = "user"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"}
    )


def decode_admin_token(token: str) -> dict:
    """
    Verify signature and expiry of a panel token.

    Claims:
        sub (or id), email, name, role, iat, exp
    """
    if not settings.AUTH_SECRET:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="AUTH_SECRET is not configured"
        )

    try:
        return jwt.decode(token, settings.AUTH_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except JWTError as e:
        raise _unauthorized(f"Invalid token: {e}")


def token_user_from_claims(claims: dict) -> TokenUser:
    user_id = claims.get("sub") or claims.get("id")
    email = claims.get("email")
    if not user_id or not email:
        raise _unauthorized("Invalid token payload: missing user id or email")

    return TokenUser(
        id=str(user_id),
        email=email,
        name=claims.get("name"),
        role=claims.get("role") or "user"
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> TokenUser:
    if not credentials:
        raise _unauthorized("Authentication required")

    return token_user_from_claims(decode_admin_token(credentials.credentials))


async def require_admin(user: TokenUser = Depends(get_current_user)) -> TokenUser:
    """
    Dependency for every admin endpoint.

    Usage:
        @router.delete("/{off_day_id}")
        async def delete_off_day(off_day_id: str, user: TokenUser = Depends(require_admin)):
            ...
    """
    if user.role != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied. Required role: {ADMIN_ROLE}, your role: {user.role}"
        )
    return user
