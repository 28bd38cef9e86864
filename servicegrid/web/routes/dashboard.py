"""dashboard-data function."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from servicegrid.storage.repositories.dashboard import DashboardRepository
from servicegrid.web.auth.rbac import get_tenant
from servicegrid.web.dependencies import dashboard_repo
from servicegrid.web.envelope import ok
from servicegrid.web.tenant_context import TenantContext

router = APIRouter(prefix="/functions/v1", tags=["dashboard"])


@router.get("/dashboard-data")
async def dashboard_data(
    tenant: TenantContext = Depends(get_tenant),
    repo: DashboardRepository = Depends(dashboard_repo),
) -> dict[str, Any]:
    summary = await repo.summary(tenant.business_id)
    return ok({"businessId": tenant.business_id, "businessName": tenant.business_name, **summary})
