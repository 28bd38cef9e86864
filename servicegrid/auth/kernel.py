"""Auth kernel: owns the AuthSnapshot and the tenant bootstrap."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Literal

import httpx
import structlog

from servicegrid.auth.snapshot import AuthSnapshot, anonymous_snapshot
from servicegrid.exceptions import AuthError, BootstrapError, NoTokenError
from servicegrid.types import AuthPhase, TenantRole

if TYPE_CHECKING:
    from servicegrid.auth.providers import IdentityProvider

logger = structlog.get_logger(__name__)

SnapshotListener = Callable[[AuthSnapshot, AuthSnapshot], None]


class AuthKernel:
    """Resolves the signed-in user's business and publishes snapshots.

    The bootstrap talks to ``get-business`` directly rather than through the
    ApiClient, because the ApiClient needs the snapshot this call produces.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        functions_url: str,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._provider = provider
        self._functions_url = functions_url.rstrip("/")
        self._http = http
        self._timeout = timeout
        self._snapshot = anonymous_snapshot()
        self._listeners: list[SnapshotListener] = []
        self._explicit_business_id: str | None = None
        self._refreshing: asyncio.Task[AuthSnapshot] | None = None

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    @property
    def provider(self) -> IdentityProvider:
        return self._provider

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a listener for snapshot changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return _unsubscribe

    async def start(self) -> AuthSnapshot:
        """Initial bootstrap after the provider has (or has not) a session."""
        if not self._provider.is_signed_in:
            self._publish(anonymous_snapshot())
            return self._snapshot

        self._publish(self._snapshot.evolve(phase=AuthPhase.AUTHENTICATING, error=None))
        try:
            await self._authenticate(claims_version=1)
        except NoTokenError:
            self._publish(anonymous_snapshot())
        except AuthError as exc:
            logger.warning("auth_bootstrap_failed", error=str(exc))
            self._publish(self._snapshot.evolve(phase=AuthPhase.LOCKED, token=None, error=str(exc)))
        return self._snapshot

    async def refresh(self) -> AuthSnapshot:
        """Force a token refresh and re-bootstrap. Concurrent callers share one run."""
        if self._refreshing is not None and not self._refreshing.done():
            return await asyncio.shield(self._refreshing)
        self._refreshing = asyncio.create_task(self._refresh())
        return await self._refreshing

    async def _refresh(self) -> AuthSnapshot:
        if not self._provider.is_signed_in:
            return self._snapshot
        try:
            await self._authenticate(claims_version=self._snapshot.claims_version + 1)
        except NoTokenError:
            self._publish(anonymous_snapshot())
            raise
        logger.info("auth_refreshed", claims_version=self._snapshot.claims_version)
        return self._snapshot

    async def sign_in(self, **credentials: Any) -> AuthSnapshot:
        await self._provider.sign_in(**credentials)
        return await self.start()

    async def sign_out(self) -> None:
        try:
            await self._provider.sign_out()
        finally:
            self._explicit_business_id = None
            self._publish(anonymous_snapshot())
            logger.info("auth_signed_out")

    async def switch_business(self, business_id: str) -> AuthSnapshot:
        """Make ``business_id`` the active tenant; the server checks access."""
        previous = self._explicit_business_id
        self._explicit_business_id = business_id
        try:
            return await self.refresh()
        except AuthError:
            self._explicit_business_id = previous
            raise

    def lock(self, reason: str) -> None:
        """Stop handing out credentials until the next successful refresh."""
        self._publish(self._snapshot.evolve(phase=AuthPhase.LOCKED, token=None, error=reason))

    async def get_auth_headers(self) -> dict[str, str]:
        return self._snapshot.auth_headers()

    async def handle_auth_error(self, status: int, once: bool) -> Literal["retry", "fail"]:
        """ApiClient hook: refresh once on the first 401, then give up."""
        if once or status != 401:
            return "fail"
        try:
            logger.info("api_unauthorized_refreshing")
            await self.refresh()
        except AuthError as exc:
            logger.warning("api_auth_refresh_failed", error=str(exc))
            return "fail"
        return "retry" if self._snapshot.is_authenticated else "fail"

    async def _authenticate(self, claims_version: int) -> None:
        token = await self._provider.get_token(refresh=True)
        if not token:
            raise NoTokenError()
        business = await self._bootstrap(token)

        role = business.get("role") or TenantRole.WORKER
        self._publish(
            AuthSnapshot(
                phase=AuthPhase.AUTHENTICATED,
                user_id=self._provider.user_id or business.get("userId"),
                email=self._provider.email,
                token=token,
                business_id=business.get("id"),
                business_name=business.get("name") or "ServiceGrid",
                roles=(TenantRole(role),),
                claims_version=claims_version,
            )
        )

    async def _bootstrap(self, token: str) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {token}"}
        if self._explicit_business_id:
            headers["X-Business-Id"] = self._explicit_business_id
        url = f"{self._functions_url}/get-business"

        logger.debug("auth_bootstrap_start", explicit_business=self._explicit_business_id)
        try:
            if self._http is not None:
                resp = await self._http.get(url, headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise BootstrapError(f"Bootstrap failed: {exc}") from exc

        if resp.status_code >= 400:
            msg = f"Bootstrap failed: {resp.status_code} - {resp.text}"
            raise BootstrapError(msg)

        body = resp.json()
        payload = body.get("data", body) if isinstance(body, dict) else {}
        business = payload.get("business") if isinstance(payload, dict) else None
        if not business:
            msg = "Bootstrap response has no business"
            raise BootstrapError(msg)
        logger.info("auth_bootstrap_done", business_id=business.get("id"))
        return dict(business)

    def _publish(self, snapshot: AuthSnapshot) -> None:
        previous, self._snapshot = self._snapshot, snapshot
        if previous == snapshot:
            return
        for listener in list(self._listeners):
            listener(previous, snapshot)
