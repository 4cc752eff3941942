"""
Auth — JWT session tokens for the dashboard API.

The dashboard keeps its session token in the ``auth-token`` cookie; API
clients may send it as ``Authorization: Bearer <token>`` instead.

With ``AUTH_JWT_SECRET`` set, tokens must be valid HS256 JWTs issued by
``create_token``. Without it the app runs in demo mode: any non-empty token
is accepted and mapped to the demo user.

Provides ``get_current_user`` / ``require_auth`` FastAPI dependencies.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from config import AUTH_COOKIE_NAME, AUTH_JWT_SECRET, AUTH_TOKEN_TTL_HOURS, DEMO_USER_ID

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "leadcrush"
# Signs demo-mode tokens, which are never verified
DEMO_SIGNING_KEY = "leadcrush-demo-mode-unverified-signing-key"

# Reachable without a session
PUBLIC_PATHS = frozenset({
    "/api/health",
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/forgot-password",
})

security = HTTPBearer(auto_error=False)


class AuthUser(BaseModel):
    """User behind a session token."""
    id: str
    email: Optional[str] = None
    demo: bool = False


def is_public_path(path: str) -> bool:
    return path.rstrip("/") in PUBLIC_PATHS


def demo_mode(secret: Optional[str] = None) -> bool:
    return not (AUTH_JWT_SECRET if secret is None else secret)


def create_token(
    user_id: str,
    email: Optional[str] = None,
    secret: Optional[str] = None,
    ttl_hours: int = AUTH_TOKEN_TTL_HOURS,
) -> str:
    """Issue a session token. In demo mode this is still a JWT, signed with a throwaway key."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "aud": JWT_AUDIENCE,
        "iat": now,
        "exp": now + timedelta(hours=ttl_hours),
    }
    if email:
        payload["email"] = email
    key = (AUTH_JWT_SECRET if secret is None else secret) or DEMO_SIGNING_KEY
    return jwt.encode(payload, key, algorithm=JWT_ALGORITHM)


def decode_token(token: str, secret: Optional[str] = None) -> Optional[dict]:
    """Validate a session token and return its claims, or None.

    Demo mode accepts any non-empty token and returns demo-user claims.
    """
    if not token:
        return None

    key = AUTH_JWT_SECRET if secret is None else secret
    if not key:
        return {"sub": DEMO_USER_ID, "demo": True}

    try:
        return jwt.decode(
            token,
            key,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            options={"verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Session token expired")
    except jwt.InvalidTokenError as e:
        logger.debug("Invalid session token: %s", e)
    return None


def token_from_request(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = None,
) -> Optional[str]:
    """Cookie first, then Bearer header."""
    token = request.cookies.get(AUTH_COOKIE_NAME)
    if token:
        return token
    if credentials:
        return credentials.credentials
    return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[AuthUser]:
    """Extract the current user from the session cookie or Authorization header.

    Returns ``None`` if no valid token is present (anonymous access).
    Use ``require_auth`` instead to enforce authentication.
    """
    token = token_from_request(request, credentials)
    payload = decode_token(token) if token else None
    if not payload:
        return None

    return AuthUser(
        id=payload.get("sub") or DEMO_USER_ID,
        email=payload.get("email"),
        demo=bool(payload.get("demo", False)),
    )


async def require_auth(
    user: Optional[AuthUser] = Depends(get_current_user),
) -> AuthUser:
    """Dependency that enforces authentication.

    Raises 401 if no valid user is found.
    """
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
