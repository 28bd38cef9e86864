"""Team and business access functions."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from servicegrid.audit.logger import AuditLogger
from servicegrid.models.api import AddTeamMember, RemoveBusinessAccess
from servicegrid.storage.repositories.tenancy import AccessRuleError, TenancyRepository
from servicegrid.web.auth.rbac import get_tenant, require_owner
from servicegrid.web.dependencies import audit_logger, tenancy_repo
from servicegrid.web.envelope import ok
from servicegrid.web.tenant_context import TenantContext

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["team"])


@router.get("/business-members")
async def list_business_members(
    tenant: TenantContext = Depends(get_tenant),
    tenancy: TenancyRepository = Depends(tenancy_repo),
) -> dict[str, Any]:
    members = await tenancy.list_members(tenant.business_id)
    return ok({"members": members, "count": len(members)})


@router.get("/user-businesses")
async def list_user_businesses(
    tenant: TenantContext = Depends(get_tenant),
    tenancy: TenancyRepository = Depends(tenancy_repo),
) -> dict[str, Any]:
    businesses = await tenancy.list_user_businesses(tenant.user_id, tenant.business_id)
    return ok({"businesses": businesses, "count": len(businesses)})


@router.post("/add-team-member", status_code=201)
async def add_team_member(
    body: AddTeamMember,
    request: Request,
    tenant: TenantContext = Depends(require_owner),
    tenancy: TenancyRepository = Depends(tenancy_repo),
    audit: AuditLogger = Depends(audit_logger),
) -> dict[str, Any]:
    try:
        member = await tenancy.add_member(
            tenant.business_id, body.email, body.role.value, granted_by=tenant.user_id
        )
    except AccessRuleError as exc:
        raise HTTPException(status_code=exc.status, detail=exc.message) from exc
    await audit.log(
        business_id=tenant.business_id,
        user_id=tenant.user_id,
        action="team_member_added",
        resource_type="business_member",
        resource_id=member["userId"],
        details={"role": member["role"]},
        **_request_meta(request),
    )
    return ok({"member": member})


@router.post("/remove-business-access")
async def remove_business_access(
    body: RemoveBusinessAccess,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
    tenancy: TenancyRepository = Depends(tenancy_repo),
    audit: AuditLogger = Depends(audit_logger),
) -> dict[str, Any]:
    """Leave a business the caller is a member of (never one they own)."""
    try:
        await tenancy.remove_access(tenant.user_id, body.business_id)
    except AccessRuleError as exc:
        raise HTTPException(status_code=exc.status, detail=exc.message) from exc
    await audit.log(
        business_id=body.business_id,
        user_id=tenant.user_id,
        action="business_access_removed",
        resource_type="business_member",
        resource_id=tenant.user_id,
        **_request_meta(request),
    )
    return ok({"businessId": body.business_id, "removed": True})


def _request_meta(request: Request) -> dict[str, str]:
    return {
        "ip_address": request.client.host if request.client else "",
        "request_id": getattr(request.state, "request_id", ""),
    }
