from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from app.config import settings
from app.utils.time import utc_now

logger = logging.getLogger("app.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(subject: str, extra_claims: Optional[Dict[str, Any]] = None) -> str:
    now = utc_now()
    exp = now + timedelta(minutes=settings.access_token_expire_minutes)
    claims: Dict[str, Any] = dict(extra_claims or {})
    claims.update({
        "sub": subject,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    })
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    """Raises JWTError on a bad signature, audience, issuer or expiry."""
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> Optional[str]:
    """Subject of the Bearer token on simulation control routes.

    Outside production the token is optional so the dispatch console and
    local demos can drive simulations anonymously; bad tokens are logged and
    ignored. In production a valid token is required.
    """
    if creds is None or not creds.credentials:
        if settings.is_production:
            raise _unauthorized("Authentication required")
        return None

    try:
        return decode_token(creds.credentials).get("sub")
    except JWTError as exc:
        if settings.is_production:
            raise _unauthorized(f"Invalid token: {exc}")
        logger.warning("Invalid JWT ignored outside production: %s", exc)
        return None
