"""Identity resolution for requests.

The external auth provider issues RS256-signed JWTs. This module provides the
FastAPI dependencies that turn a request into an identity and a profile:

1. ``get_current_identity`` extracts ``Authorization: Bearer <token>``, verifies
   it against the provider's cached JSON Web Key Set and returns the
   ``schemas.Identity`` (``sub`` + optional ``email``).
2. ``get_current_profile`` looks up the matching ``users`` row. A missing row is
   a valid "profile not completed" state and resolves to ``None``.
3. ``require_profile`` / ``require_role`` / ``require_admin`` turn that state
   into 403s for routes that need a completed profile.

Settings (see ``settings.Settings``):
    AUTH_ENABLED     - verify tokens; when false, trust X-Identity-* headers
    AUTH_ISSUER      - expected ``iss`` claim, also used to locate the JWKS
    AUTH_AUDIENCE    - expected ``aud`` claim (skipped when unset)
    AUTH_JWKS_URL    - override for the JWKS location
"""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Callable, Optional

import httpx
import structlog
from fastapi import Depends, Header, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

import crud
import models
import schemas
from database import get_db
from settings import get_settings

logger = structlog.get_logger(__name__)

LOCAL_IDENTITY = schemas.Identity(sub="local-dev", email="local@example.com")


class AuthSettings(BaseModel):
    issuer: str
    audience: Optional[str] = None
    jwks_url_override: Optional[str] = None

    @property
    def jwks_url(self) -> str:
        if self.jwks_url_override:
            return self.jwks_url_override
        return f"{self.issuer.rstrip('/')}/.well-known/jwks.json"


@lru_cache
def _load_settings() -> AuthSettings:
    settings = get_settings()
    if not settings.auth_issuer:
        raise RuntimeError("AUTH_ISSUER must be set when AUTH_ENABLED is true")
    return AuthSettings(
        issuer=settings.auth_issuer,
        audience=settings.auth_audience,
        jwks_url_override=settings.auth_jwks_url,
    )


@lru_cache
def _get_jwks():
    auth_settings = _load_settings()
    logger.info("Fetching JWKS", jwks_url=auth_settings.jwks_url)
    resp = httpx.get(auth_settings.jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def verify_token(token: str) -> schemas.Identity:
    """Verify a provider JWT and return the identity it names.

    Raises HTTPException(401) on failure.
    """
    auth_settings = _load_settings()
    jwks = _get_jwks()

    try:
        payload = jwt.decode(
            token,
            jwks,
            algorithms=["RS256"],
            audience=auth_settings.audience,
            issuer=auth_settings.issuer,
            options={"verify_aud": auth_settings.audience is not None, "verify_at_hash": False},
        )
    except JWTError as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    if not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no subject")
    return schemas.Identity(sub=payload["sub"], email=payload.get("email"))


def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


# --- FastAPI dependencies ---
async def get_current_identity(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    x_identity_id: Annotated[Optional[str], Header()] = None,
    x_identity_email: Annotated[Optional[str], Header()] = None,
) -> schemas.Identity:
    if not get_settings().auth_enabled:
        # Local dev: identity comes from headers so several users can be simulated
        if x_identity_id:
            return schemas.Identity(sub=x_identity_id, email=x_identity_email)
        return LOCAL_IDENTITY

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1]
    return verify_token(token)


def get_current_profile(
    identity: schemas.Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> Optional[models.User]:
    return crud.get_profile(db, identity.sub)


def require_profile(
    profile: Optional[models.User] = Depends(get_current_profile),
) -> models.User:
    if profile is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Profile incomplete")
    return profile


def require_role(role: str) -> Callable[..., models.User]:
    """Dependency factory: a completed profile with the given role."""

    def _require_role(profile: models.User = Depends(require_profile)) -> models.User:
        if profile.role != role:
            logger.info("Role check failed", identity_id=profile.identity_id, required=role)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Only {role.replace('_', ' ')}s may do this",
            )
        return profile

    return _require_role


require_employer = require_role(models.ROLE_EMPLOYER)
require_job_seeker = require_role(models.ROLE_JOB_SEEKER)


def require_admin(profile: models.User = Depends(require_profile)) -> models.User:
    if not profile.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admins only")
    return profile
