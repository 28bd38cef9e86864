"""Role-based access control dependencies for multi-tenant requests."""

from __future__ import annotations

import structlog
from fastapi import Depends, HTTPException, Request

from servicegrid.config.settings import get_settings
from servicegrid.storage.repositories.tenancy import AccessDeniedError, TenancyRepository
from servicegrid.web.auth.tokens import TokenClaims, require_claims
from servicegrid.web.dependencies import tenancy_repo
from servicegrid.web.tenant_context import TenantContext

logger = structlog.get_logger(__name__)


def requested_business_id(request: Request) -> str | None:
    """Explicit tenant selection: ``X-Business-Id`` header, then ``businessId`` query."""
    return request.headers.get("x-business-id") or request.query_params.get("businessId") or None


async def get_tenant(
    request: Request,
    claims: TokenClaims = Depends(require_claims),
    tenancy: TenancyRepository = Depends(tenancy_repo),
) -> TenantContext:
    """Resolve the profile, business and role the request acts as.

    Missing profiles and businesses are provisioned on first use.
    """
    profile = await tenancy.ensure_profile(
        claims.sub,
        claims.email,
        claims.name,
        external=get_settings().auth_mode == "clerk",
    )
    try:
        resolved = await tenancy.resolve(profile, requested_business_id(request))
    except AccessDeniedError as exc:
        raise HTTPException(status_code=403, detail="Access to this business is denied") from exc

    structlog.contextvars.bind_contextvars(
        user_id=profile.id, business_id=resolved.business.id
    )
    return TenantContext(
        user_id=profile.id,
        business_id=resolved.business.id,
        role=resolved.role,
        email=profile.email,
        business_name=resolved.business.name,
        subject=claims.sub,
    )


async def require_owner(tenant: TenantContext = Depends(get_tenant)) -> TenantContext:
    """Require the owner role in the active business."""
    if not tenant.is_owner:
        raise HTTPException(status_code=403, detail="Owner access required")
    return tenant
