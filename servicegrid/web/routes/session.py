"""Session bootstrap and profile functions: get-business, get-profile, profile-update."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException

from servicegrid.models.api import ProfileUpdate
from servicegrid.storage.repositories.tenancy import (
    TenancyRepository,
    business_to_dict,
    profile_to_dict,
)
from servicegrid.web.auth.rbac import get_tenant
from servicegrid.web.dependencies import tenancy_repo
from servicegrid.web.envelope import ok
from servicegrid.web.tenant_context import TenantContext

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["session"])


@router.get("/get-business")
async def get_business(tenant: TenantContext = Depends(get_tenant)) -> dict[str, Any]:
    """Resolve the caller's active business; the client kernel bootstraps from this."""
    return ok(
        {
            "business": {
                "id": tenant.business_id,
                "name": tenant.business_name,
                "role": tenant.role,
            },
            "userId": tenant.user_id,
        }
    )


@router.get("/get-profile")
async def get_profile(
    tenant: TenantContext = Depends(get_tenant),
    tenancy: TenancyRepository = Depends(tenancy_repo),
) -> dict[str, Any]:
    profile = await tenancy.get_profile(tenant.user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return ok(
        {
            "profile": profile_to_dict(profile),
            "business": {
                "id": tenant.business_id,
                "name": tenant.business_name,
                "role": tenant.role,
            },
        }
    )


@router.post("/profile-update")
async def update_profile(
    body: ProfileUpdate,
    tenant: TenantContext = Depends(get_tenant),
    tenancy: TenancyRepository = Depends(tenancy_repo),
) -> dict[str, Any]:
    """Update the caller's name and phone; owners may also rename the business."""
    if body.business_name and not tenant.is_owner:
        raise HTTPException(status_code=403, detail="Only the owner can rename the business")
    profile, business = await tenancy.update_profile(
        tenant.user_id,
        tenant.business_id,
        full_name=body.full_name,
        phone_e164=body.phone_raw,
        business_name=(body.business_name or "").strip() or None,
        is_owner=tenant.is_owner,
    )
    return ok(
        {
            "profile": profile_to_dict(profile),
            "business": business_to_dict(business, tenant.role) if business else None,
        }
    )
