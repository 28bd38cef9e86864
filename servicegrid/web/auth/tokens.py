"""Bearer token verification for the functions app."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import jwt
import structlog
from fastapi import HTTPException, Request

from servicegrid.config.settings import get_settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Parsed and validated claims from a backend or Clerk JWT."""

    sub: str
    email: str
    name: str
    org_id: str | None = None
    org_role: str | None = None


def claims_from_payload(payload: dict[str, Any]) -> TokenClaims:
    metadata = payload.get("user_metadata") or {}
    return TokenClaims(
        sub=payload["sub"],
        email=payload.get("email", ""),
        name=payload.get("name") or metadata.get("full_name", ""),
        org_id=payload.get("org_id"),
        org_role=payload.get("org_role"),
    )


def verify_backend_token(token: str, secret: str) -> TokenClaims:
    """Verify an HS256 token issued by the backend's own auth service.

    Raises jwt.PyJWTError on invalid/expired tokens.
    """
    payload: dict[str, Any] = jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        options={"verify_aud": False, "require": ["sub", "exp"]},
    )
    return claims_from_payload(payload)


async def verify_token(token: str) -> TokenClaims:
    settings = get_settings()
    if settings.auth_mode == "clerk":
        from servicegrid.web.auth.clerk import verify_clerk_token

        return await verify_clerk_token(token)
    return verify_backend_token(token, settings.jwt_secret)


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return auth_header[7:]


async def require_claims(request: Request) -> TokenClaims:
    """FastAPI dependency: the verified claims of the request's bearer token."""
    token = bearer_token(request)
    try:
        return await verify_token(token)
    except (jwt.PyJWTError, KeyError, ValueError) as exc:
        logger.warning("token_invalid", error=str(exc))
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    except httpx.HTTPError as exc:
        # No signing keys at all, cached or fresh
        logger.error("token_keys_unavailable", error=str(exc))
        raise HTTPException(status_code=503, detail="Authentication service unavailable") from exc
