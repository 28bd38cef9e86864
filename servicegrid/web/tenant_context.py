"""Tenant context for multi-tenant request scoping."""

from __future__ import annotations

from dataclasses import dataclass

from servicegrid.types import TenantRole


@dataclass(frozen=True, slots=True)
class TenantContext:
    """Immutable tenant context carried through each request."""

    user_id: str  # profile id
    business_id: str
    role: str  # owner | worker
    email: str
    business_name: str = ""
    subject: str | None = None  # token sub claim

    @property
    def is_owner(self) -> bool:
        return self.role == TenantRole.OWNER
