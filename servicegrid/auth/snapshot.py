"""Immutable auth snapshot shared by every data-access consumer."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from servicegrid.types import AuthPhase, TenantRole


@dataclass(frozen=True, slots=True)
class AuthSnapshot:
    """Single view of session + tenant state.

    Feature code reads this instead of talking to an identity provider, so the
    provider behind the kernel can be swapped without touching consumers.
    """

    phase: AuthPhase = AuthPhase.ANONYMOUS
    user_id: str | None = None
    email: str | None = None
    token: str | None = None
    business_id: str | None = None
    business_name: str | None = None
    roles: tuple[TenantRole, ...] = field(default_factory=tuple)
    claims_version: int = 0
    error: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.phase == AuthPhase.AUTHENTICATED and self.token is not None

    @property
    def tenant_id(self) -> str | None:
        """Alias kept for callers that think in tenants rather than businesses."""
        return self.business_id

    def has_role(self, role: TenantRole | str) -> bool:
        return TenantRole(role) in self.roles

    def auth_headers(self) -> dict[str, str]:
        """Headers attached to every edge function request."""
        if not self.is_authenticated:
            return {}
        headers = {"Authorization": f"Bearer {self.token}"}
        if self.business_id:
            headers["X-Business-Id"] = self.business_id
        return headers

    def evolve(self, **changes: Any) -> AuthSnapshot:
        return replace(self, **changes)


def anonymous_snapshot() -> AuthSnapshot:
    return AuthSnapshot(phase=AuthPhase.ANONYMOUS)
