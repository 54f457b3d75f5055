"""Authentication helpers integrating AWS Cognito JWTs.

This module provides a FastAPI dependency ``get_current_user`` that:
1. Extracts the ``Authorization: Bearer <id_token>`` header.
2. Downloads / caches the JSON Web Key Set (JWKS) for your Cognito User Pool.
3. Verifies signature, expiration and audience.
4. Creates or fetches a ``models.User`` database row on-the-fly.

Role checks are layered on top with ``require_role``. Emails listed in
``Settings.admin_emails`` are given the admin role when their user row is
first created; no endpoint grants it.

Settings read at runtime (env vars or .env):
    COGNITO_USER_POOL_ID     - e.g. "us-east-1_abcd1234"
    COGNITO_APP_CLIENT_ID    - the user-pool client facing ID (audience)
    AWS_REGION               - pool region (falls back to us-east-1)
    AUTH_ENABLED             - false runs every request as a local dev user
"""
from __future__ import annotations

import structlog
from functools import lru_cache
from typing import Annotated, Optional
import time

import httpx
from fastapi import Depends, HTTPException, status, Request
from jose import jwt, JWTError
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from settings import get_settings
import crud
import models
import schemas

logger = structlog.get_logger(__name__)

LOCAL_DEV_EMAIL = "local@example.com"


class TokenPayload(BaseModel):
    sub: str
    email: Optional[str] = None
    exp: int
    aud: str


class AuthSettings(BaseModel):
    region: str
    user_pool_id: str
    client_id: str

    @property
    def issuer(self) -> str:  # cognito issuer URL
        return f"https://cognito-idp.{self.region}.amazonaws.com/{self.user_pool_id}"

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"


@lru_cache
def _load_settings() -> AuthSettings:
    settings = get_settings()
    if not settings.auth_enabled:
        # In local-dev mode we won't actually call this, but keep function intact
        raise RuntimeError("Cognito auth disabled in local mode")
    if not settings.cognito_user_pool_id or not settings.cognito_app_client_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cognito configuration missing",
        )
    return AuthSettings(
        region=settings.aws_region or "us-east-1",
        user_pool_id=settings.cognito_user_pool_id,
        client_id=settings.cognito_app_client_id,
    )


@lru_cache
def _get_jwks():
    settings = _load_settings()
    logger.info("Fetching JWKS", jwks_url=settings.jwks_url)
    resp = httpx.get(settings.jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


# Exposed for non-request contexts (e.g., SSE token in query)
def verify_token(token: str) -> TokenPayload:
    """Verify Cognito JWT and return payload.

    Raises HTTPException(401) on failure.
    """
    if not get_settings().auth_enabled:
        # Return dummy payload for local usage
        return TokenPayload(
            sub="local-dev",
            email=LOCAL_DEV_EMAIL,
            exp=int(time.time()) + 3600,
            aud="local",
        )

    settings = _load_settings()
    jwks = _get_jwks()

    try:
        payload = jwt.decode(
            token,
            jwks,
            algorithms=["RS256"],
            audience=settings.client_id,
            issuer=settings.issuer,
            options={"verify_at_hash": False},
        )
        return TokenPayload.model_validate(payload)
    except JWTError as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


# Helper to extract Authorization header (works with FastAPI DI)
def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


def get_or_create_user(db: Session, email: str, sub: str) -> models.User:
    """Fetch the user row for ``email``, creating it on first sight."""
    user = crud.get_user_by_email(db, email)
    if user:
        return user

    role = models.ROLE_ADMIN if email in get_settings().admin_emails else None
    user = crud.create_user(db, schemas.UserCreate(email=email, cognito_sub=sub), role=role)
    db.commit()
    logger.info("Created user", user_id=user.id, role=role)
    return user


# --- FastAPI dependencies ---
async def get_current_user(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    db: Session = Depends(get_db),
) -> models.User:
    if not get_settings().auth_enabled:
        # Local dev: always return / create a default user
        return get_or_create_user(db, LOCAL_DEV_EMAIL, "local-dev")

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    token = authorization.split(" ")[1]
    payload = verify_token(token)
    return get_or_create_user(db, payload.email or payload.sub, payload.sub)


def require_role(*roles: str):
    """Dependency factory rejecting users whose role is not one of ``roles``."""

    async def _check_role(
        current_user: models.User = Depends(get_current_user),
    ) -> models.User:
        if current_user.role not in roles:
            logger.warning(
                "Role check failed",
                user_id=current_user.id,
                role=current_user.role,
                required=list(roles),
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(roles)}",
            )
        return current_user

    return _check_role


require_applicant = require_role(models.ROLE_APPLICANT)
require_company = require_role(models.ROLE_COMPANY)
require_admin = require_role(models.ROLE_ADMIN)
