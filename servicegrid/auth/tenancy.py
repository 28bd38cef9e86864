"""Active business (tenant) context derived from the auth snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from servicegrid.exceptions import TenantError
from servicegrid.types import TenantRole

if TYPE_CHECKING:
    from servicegrid.auth.snapshot import AuthSnapshot


@dataclass(frozen=True, slots=True)
class BusinessContext:
    """Immutable tenant context used to scope queries and mutations."""

    business_id: str | None
    business_name: str | None = None
    role: TenantRole | None = None
    user_id: str | None = None

    @property
    def is_owner(self) -> bool:
        return self.role == TenantRole.OWNER

    @property
    def is_worker(self) -> bool:
        return self.role == TenantRole.WORKER

    def require_business_id(self) -> str:
        if not self.business_id:
            msg = "No active business"
            raise TenantError(msg)
        return self.business_id


def business_context_from(snapshot: AuthSnapshot) -> BusinessContext:
    """Project a snapshot onto the business it is scoped to.

    Anything short of a fully authenticated snapshot yields an empty context,
    which disables tenant-scoped queries.
    """
    if not snapshot.is_authenticated:
        return BusinessContext(business_id=None)
    role = TenantRole.OWNER if snapshot.has_role(TenantRole.OWNER) else None
    if role is None and snapshot.roles:
        role = snapshot.roles[0]
    return BusinessContext(
        business_id=snapshot.business_id,
        business_name=snapshot.business_name,
        role=role,
        user_id=snapshot.user_id,
    )
