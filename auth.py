"""Authentication helpers for bearer JWTs issued by the identity provider.

This module provides a FastAPI dependency ``get_current_user`` that:
1. Extracts the ``Authorization: Bearer <access_token>`` header.
2. Verifies the HS256 signature, expiration and audience with the shared
   secret (``AUTH_JWT_SECRET``).
3. Creates or fetches a ``models.User`` database row on-the-fly.

When ``AUTH_ENABLED`` is false (local development) every request runs as a
single local user.
"""
from __future__ import annotations

import time
from typing import Annotated, Optional

import structlog
from fastapi import Depends, Request
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

import crud
import errors
import models
import schemas
from database import get_db
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)

LOCAL_SUB = "local-dev"
LOCAL_EMAIL = "local@example.com"


class TokenPayload(BaseModel):
    sub: str
    email: Optional[str] = None
    exp: int


def verify_token(token: str, settings: Settings) -> TokenPayload:
    """Verify a bearer JWT and return its payload.

    Raises ``errors.Unauthorized`` on failure and ``errors.ServiceUnavailable``
    when auth is enabled without a secret.
    """
    if not settings.auth_enabled:
        return TokenPayload(sub=LOCAL_SUB, email=LOCAL_EMAIL, exp=int(time.time()) + 3600)

    if not settings.auth_jwt_secret:
        logger.error("AUTH_JWT_SECRET missing while auth is enabled")
        raise errors.ServiceUnavailable("Authentication is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            audience=settings.auth_jwt_audience,
        )
        return TokenPayload.model_validate(payload)
    except (JWTError, ValueError) as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise errors.Unauthorized("Unauthorized")


def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


def _get_or_create_user(db: Session, payload: TokenPayload) -> models.User:
    user = crud.get_user_by_auth_sub(db, payload.sub)
    if not user:
        user = crud.create_user(db, schemas.UserCreate(email=payload.email, auth_sub=payload.sub))
        db.commit()
        logger.info("Created user for new identity", user_id=user.id)
    return user


# --- FastAPI dependency ---
async def get_current_user(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> models.User:
    if not settings.auth_enabled:
        return _get_or_create_user(db, verify_token("", settings))

    if not authorization or not authorization.lower().startswith("bearer "):
        raise errors.Unauthorized("Unauthorized")

    token = authorization.split(" ", 1)[1].strip()
    payload = verify_token(token, settings)
    return _get_or_create_user(db, payload)
