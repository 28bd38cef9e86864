"""jobs-crud function."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from servicegrid.models.api import JobCreate, JobUpdate
from servicegrid.storage.repositories.customers import CustomerRepository
from servicegrid.storage.repositories.jobs import JobRepository
from servicegrid.types import JobStatus
from servicegrid.web.auth.rbac import get_tenant
from servicegrid.web.dependencies import customer_repo, job_repo
from servicegrid.web.envelope import ok
from servicegrid.web.tenant_context import TenantContext

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/functions/v1/jobs-crud", tags=["jobs"])


@router.get("")
async def list_jobs(
    status: JobStatus | None = Query(default=None),
    customer_id: str | None = Query(default=None, alias="customerId"),
    tenant: TenantContext = Depends(get_tenant),
    repo: JobRepository = Depends(job_repo),
) -> dict[str, Any]:
    jobs = await repo.list_all(tenant.business_id, status=status, customer_id=customer_id)
    return ok({"jobs": jobs, "count": len(jobs)})


@router.post("", status_code=201)
async def create_job(
    body: JobCreate,
    tenant: TenantContext = Depends(get_tenant),
    repo: JobRepository = Depends(job_repo),
    customers: CustomerRepository = Depends(customer_repo),
) -> dict[str, Any]:
    if not await customers.exists(tenant.business_id, body.customer_id):
        raise HTTPException(status_code=404, detail="Customer not found")
    fields = body.model_dump(mode="python")
    job = await repo.create(tenant.business_id, tenant.user_id, fields)
    return ok({"job": job})


@router.put("")
async def update_job(
    body: JobUpdate,
    tenant: TenantContext = Depends(get_tenant),
    repo: JobRepository = Depends(job_repo),
) -> dict[str, Any]:
    job = await repo.update(tenant.business_id, body.id, body.changes())
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return ok({"job": job})


@router.delete("")
async def delete_job(
    id: str = Query(min_length=1),  # noqa: A002
    tenant: TenantContext = Depends(get_tenant),
    repo: JobRepository = Depends(job_repo),
) -> dict[str, Any]:
    if not await repo.delete(tenant.business_id, id):
        raise HTTPException(status_code=404, detail="Job not found")
    return ok({"id": id, "deleted": True})
