"""Clerk JWT validation and JWKS key management."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import jwt
import structlog

from servicegrid.config.settings import get_settings
from servicegrid.web.auth.tokens import TokenClaims, claims_from_payload

logger = structlog.get_logger(__name__)

# JWKS cache TTL in seconds (1 hour)
_JWKS_CACHE_TTL = 3600


@dataclass
class _JWKSCache:
    """In-memory cache for Clerk JWKS keys."""

    keys: list[dict[str, Any]] = field(default_factory=list)
    fetched_at: float = 0.0

    @property
    def is_stale(self) -> bool:
        return time.monotonic() - self.fetched_at > _JWKS_CACHE_TTL


_cache = _JWKSCache()


def reset_jwks_cache() -> None:
    global _cache  # noqa: PLW0603
    _cache = _JWKSCache()


async def _fetch_jwks(jwks_url: str, http: httpx.AsyncClient | None = None) -> list[dict[str, Any]]:
    """Fetch JWKS from Clerk and update the cache; serve stale keys on failure."""
    global _cache  # noqa: PLW0603
    try:
        if http is not None:
            resp = await http.get(jwks_url)
        else:
            async with httpx.AsyncClient(timeout=10.0) as client:
                resp = await client.get(jwks_url)
        resp.raise_for_status()
        keys: list[dict[str, Any]] = resp.json().get("keys", [])
        _cache = _JWKSCache(keys=keys, fetched_at=time.monotonic())
        logger.debug("jwks_fetched", key_count=len(keys))
        return keys
    except (httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("jwks_fetch_failed", error=str(exc))
        if _cache.keys:
            logger.info("jwks_using_stale_cache")
            return _cache.keys
        raise


async def get_signing_keys(http: httpx.AsyncClient | None = None) -> list[dict[str, Any]]:
    """Get JWKS keys, using the cache when fresh."""
    jwks_url = get_settings().clerk_jwks_url
    if not jwks_url:
        msg = "CLERK_JWKS_URL is not configured"
        raise ValueError(msg)

    if not _cache.is_stale and _cache.keys:
        return _cache.keys

    return await _fetch_jwks(jwks_url, http)


async def verify_clerk_token(token: str, http: httpx.AsyncClient | None = None) -> TokenClaims:
    """Verify a Clerk session JWT (RS256) and return parsed claims.

    Raises jwt.PyJWTError on invalid/expired tokens.
    """
    settings = get_settings()
    keys = await get_signing_keys(http)
    jwk_set = jwt.PyJWKSet.from_dict({"keys": keys})

    decode_options: dict[str, Any] = {
        "algorithms": ["RS256"],
        "options": {"verify_aud": False},
    }
    if settings.clerk_issuer:
        decode_options["issuer"] = settings.clerk_issuer

    last_error: Exception | None = None
    for jwk in jwk_set.keys:
        try:
            payload: dict[str, Any] = jwt.decode(token, jwk.key, **decode_options)
            return claims_from_payload(payload)
        except jwt.PyJWTError as exc:
            last_error = exc

    if last_error:
        raise last_error
    msg = "No valid signing key found"
    raise jwt.InvalidTokenError(msg)
