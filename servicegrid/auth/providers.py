"""Identity provider adapters behind the auth kernel.

Two backends are supported: the native backend password auth (Supabase GoTrue)
and Clerk sessions exchanged for backend tokens. Both expose the same
``IdentityProvider`` surface so the kernel never branches on which is active.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import jwt
import structlog

from servicegrid.exceptions import AuthError, ConfigError

if TYPE_CHECKING:
    from servicegrid.config.settings import Settings

logger = structlog.get_logger(__name__)

# Refresh tokens this many seconds before they actually expire
_EXPIRY_LEEWAY = 60


class IdentityProvider(ABC):
    """Abstract identity backend."""

    name: str = "abstract"

    @property
    @abstractmethod
    def is_signed_in(self) -> bool: ...

    @property
    def user_id(self) -> str | None:
        return None

    @property
    def email(self) -> str | None:
        return None

    @abstractmethod
    async def get_token(self, refresh: bool = False) -> str | None:
        """Return a bearer token for edge function calls, or None when signed out."""

    async def sign_in(self, **credentials: Any) -> None:
        msg = f"{self.name} provider does not support interactive sign-in"
        raise AuthError(msg)

    @abstractmethod
    async def sign_out(self) -> None: ...


class _HttpProvider(IdentityProvider):
    """Shared httpx plumbing: use an injected client or open one per call."""

    def __init__(self, http: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self._http = http
        self._timeout = timeout

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"Auth request failed with status {resp.status_code}"
    if isinstance(body, dict):
        for field in ("error_description", "msg", "message", "error"):
            if body.get(field):
                return str(body[field])
    return f"Auth request failed with status {resp.status_code}"


class StaticTokenProvider(IdentityProvider):
    """Fixed bearer token, for service accounts and tests."""

    name = "static"

    def __init__(
        self, token: str | None, user_id: str | None = None, email: str | None = None
    ) -> None:
        self._token = token
        self._user_id = user_id
        self._email = email

    @property
    def is_signed_in(self) -> bool:
        return self._token is not None

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def email(self) -> str | None:
        return self._email

    async def get_token(self, refresh: bool = False) -> str | None:
        return self._token

    async def sign_out(self) -> None:
        self._token = None


@dataclass
class _BackendSession:
    access_token: str
    refresh_token: str
    expires_at: float
    user_id: str
    email: str | None


class SupabasePasswordProvider(_HttpProvider):
    """Native backend auth: email/password grant with refresh-token rotation."""

    name = "supabase"

    def __init__(
        self,
        supabase_url: str,
        anon_key: str,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(http=http, timeout=timeout)
        self._auth_url = f"{supabase_url.rstrip('/')}/auth/v1"
        self._anon_key = anon_key
        self._clock = clock
        self._session: _BackendSession | None = None

    @property
    def is_signed_in(self) -> bool:
        return self._session is not None

    @property
    def user_id(self) -> str | None:
        return self._session.user_id if self._session else None

    @property
    def email(self) -> str | None:
        return self._session.email if self._session else None

    async def sign_in(self, **credentials: Any) -> None:
        email = credentials.get("email")
        password = credentials.get("password")
        if not email or not password:
            msg = "email and password are required"
            raise AuthError(msg)
        self._session = await self._grant("password", {"email": email, "password": password})
        logger.info("backend_signed_in", user_id=self._session.user_id)

    async def get_token(self, refresh: bool = False) -> str | None:
        if self._session is None:
            return None
        if refresh or self._session.expires_at - _EXPIRY_LEEWAY <= self._clock():
            try:
                self._session = await self._grant(
                    "refresh_token", {"refresh_token": self._session.refresh_token}
                )
            except AuthError as exc:
                logger.warning("backend_token_refresh_failed", error=str(exc))
                self._session = None
                return None
        return self._session.access_token

    async def sign_out(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        try:
            async with self._client() as client:
                await client.post(
                    f"{self._auth_url}/logout",
                    headers={
                        "apikey": self._anon_key,
                        "Authorization": f"Bearer {session.access_token}",
                    },
                )
        except httpx.HTTPError as exc:
            # Local state is already cleared; the server session expires on its own
            logger.warning("backend_logout_failed", error=str(exc))
        logger.info("backend_signed_out", user_id=session.user_id)

    async def _grant(self, grant_type: str, body: dict[str, str]) -> _BackendSession:
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{self._auth_url}/token",
                    params={"grant_type": grant_type},
                    json=body,
                    headers={"apikey": self._anon_key},
                )
        except httpx.HTTPError as exc:
            raise AuthError(str(exc)) from exc
        if resp.status_code >= 400:
            raise AuthError(_error_message(resp))

        data = resp.json()
        user = data.get("user") or {}
        expires_at = data.get("expires_at")
        if expires_at is None:
            expires_at = self._clock() + float(data.get("expires_in", 3600))
        return _BackendSession(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_at=float(expires_at),
            user_id=str(user.get("id", "")),
            email=user.get("email"),
        )


class ClerkSessionProvider(_HttpProvider):
    """Clerk session exchanged for backend-signed JWTs via a JWT template."""

    name = "clerk"

    def __init__(
        self,
        secret_key: str,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        email: str | None = None,
        template: str = "supabase",
        api_url: str = "https://api.clerk.com/v1",
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(http=http, timeout=timeout)
        self._secret_key = secret_key
        self._session_id = session_id
        self._user_id = user_id
        self._email = email
        self._template = template
        self._api_url = api_url.rstrip("/")
        self._clock = clock
        self._token: str | None = None
        self._token_exp: float = 0.0

    @property
    def is_signed_in(self) -> bool:
        return self._session_id is not None

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def email(self) -> str | None:
        return self._email

    async def sign_in(self, **credentials: Any) -> None:
        """Attach a session that was established by Clerk's hosted sign-in."""
        session_id = credentials.get("session_id")
        if not session_id:
            msg = "session_id is required"
            raise AuthError(msg)
        self._session_id = session_id
        self._user_id = credentials.get("user_id", self._user_id)
        self._email = credentials.get("email", self._email)
        self._token = None
        self._token_exp = 0.0

    async def get_token(self, refresh: bool = False) -> str | None:
        if self._session_id is None:
            return None
        if not refresh and self._token and self._token_exp - _EXPIRY_LEEWAY > self._clock():
            return self._token

        url = f"{self._api_url}/sessions/{self._session_id}/tokens/{self._template}"
        try:
            async with self._client() as client:
                resp = await client.post(url, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("clerk_token_fetch_failed", error=str(exc))
            return None
        if resp.status_code in (401, 403, 404):
            # Session ended or revoked on Clerk's side
            logger.info("clerk_session_gone", status=resp.status_code)
            self._session_id = None
            self._token = None
            return None
        if resp.status_code >= 400:
            raise AuthError(_error_message(resp))

        token = str(resp.json().get("jwt", ""))
        claims: dict[str, Any] = jwt.decode(token, options={"verify_signature": False})
        self._token = token
        self._token_exp = float(claims.get("exp", 0))
        self._user_id = self._user_id or claims.get("sub")
        self._email = self._email or claims.get("email")
        logger.debug("clerk_token_minted", template=self._template)
        return token

    async def sign_out(self) -> None:
        session_id, self._session_id = self._session_id, None
        self._token = None
        self._token_exp = 0.0
        if session_id is None:
            return
        try:
            async with self._client() as client:
                await client.post(
                    f"{self._api_url}/sessions/{session_id}/revoke", headers=self._headers()
                )
        except httpx.HTTPError as exc:
            logger.warning("clerk_revoke_failed", error=str(exc))

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._secret_key}"}


def build_identity_provider(
    settings: Settings, http: httpx.AsyncClient | None = None
) -> IdentityProvider:
    """Create the identity adapter selected by ``AUTH_PROVIDER``."""
    if settings.auth_provider == "clerk":
        if not settings.clerk_secret_key:
            msg = "AUTH_PROVIDER=clerk requires CLERK_SECRET_KEY"
            raise ConfigError(msg)
        return ClerkSessionProvider(
            settings.clerk_secret_key,
            template=settings.clerk_session_template,
            api_url=settings.clerk_api_url,
            http=http,
        )
    if not settings.supabase_anon_key:
        msg = "AUTH_PROVIDER=supabase requires SUPABASE_ANON_KEY"
        raise ConfigError(msg)
    return SupabasePasswordProvider(settings.supabase_url, settings.supabase_anon_key, http=http)
