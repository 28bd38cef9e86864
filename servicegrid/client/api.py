"""Authenticated HTTP client for edge function calls."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

import httpx
import structlog

from servicegrid.exceptions import ApiError

logger = structlog.get_logger(__name__)

AuthHeaderGetter = Callable[[], Awaitable[dict[str, str]]]
AuthErrorHandler = Callable[[int, bool], Awaitable[Literal["retry", "fail"]]]

_DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True, slots=True)
class ApiResponse:
    """Outcome of a single edge function call. Never raised, always returned."""

    status: int
    data: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300


async def _no_headers() -> dict[str, str]:
    return {}


async def _never_retry(_status: int, _once: bool) -> Literal["retry", "fail"]:
    return "fail"


class ApiClient:
    """Calls ``<functions_url>/<path>`` with the current auth headers.

    A first 401 gives ``on_auth_error`` the chance to refresh credentials and
    ask for a single retry.
    """

    def __init__(
        self,
        base_url: str,
        get_auth_headers: AuthHeaderGetter = _no_headers,
        on_auth_error: AuthErrorHandler = _never_retry,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._get_auth_headers = get_auth_headers
        self._on_auth_error = on_auth_error
        self._http = http or httpx.AsyncClient()
        self._owns_http = http is None
        self._timeout = timeout

    def url_for(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        _tried: bool = False,
    ) -> ApiResponse:
        method = method.upper()
        request_headers = {
            "Content-Type": "application/json",
            **(await self._get_auth_headers()),
            **(headers or {}),
        }
        content: str | None = None
        if body is not None and method != "GET":
            content = body if isinstance(body, str) else json.dumps(body, default=str)

        try:
            resp = await self._http.request(
                method,
                self.url_for(path),
                content=content,
                params=params,
                headers=request_headers,
                timeout=timeout or self._timeout,
            )
        except httpx.TimeoutException:
            logger.warning("api_request_timeout", path=path, method=method)
            return ApiResponse(status=408, error="Request timeout")
        except httpx.HTTPError as exc:
            logger.warning("api_network_error", path=path, method=method, error=str(exc))
            return ApiResponse(status=0, error=str(exc) or "Network error")

        if resp.status_code == 401:
            action = await self._on_auth_error(401, _tried)
            if action == "retry" and not _tried:
                return await self.request(
                    path,
                    method=method,
                    body=body,
                    params=params,
                    headers=headers,
                    timeout=timeout,
                    _tried=True,
                )

        return self._parse(resp, path, method)

    def _parse(self, resp: httpx.Response, path: str, method: str) -> ApiResponse:
        try:
            payload: Any = resp.json()
        except ValueError:
            payload = None

        if resp.is_success:
            if isinstance(payload, dict) and "data" in payload:
                payload = payload["data"]
            return ApiResponse(status=resp.status_code, data=payload)

        error = None
        if isinstance(payload, dict):
            error = payload.get("error")
        message = str(error) if error else f"Request failed with status {resp.status_code}"
        logger.info("api_request_failed", path=path, method=method, status=resp.status_code)
        return ApiResponse(status=resp.status_code, error=message)

    async def get(self, path: str, **kwargs: Any) -> ApiResponse:
        return await self.request(path, method="GET", **kwargs)

    async def post(self, path: str, body: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.request(path, method="POST", body=body, **kwargs)

    async def put(self, path: str, body: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.request(path, method="PUT", body=body, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> ApiResponse:
        return await self.request(path, method="DELETE", **kwargs)

    async def invoke(self, path: str, **kwargs: Any) -> Any:
        """Like ``request`` but raises ApiError on any failure."""
        resp = await self.request(path, **kwargs)
        if not resp.ok:
            raise ApiError(resp.error or "Request failed", status=resp.status)
        return resp.data

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
