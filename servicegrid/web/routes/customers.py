"""customers-crud function."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from servicegrid.models.api import CustomerCreate, CustomerUpdate
from servicegrid.storage.repositories.customers import (
    CustomerInUseError,
    CustomerRepository,
    DuplicateCustomerError,
)
from servicegrid.web.auth.rbac import get_tenant
from servicegrid.web.dependencies import customer_repo
from servicegrid.web.envelope import ok
from servicegrid.web.tenant_context import TenantContext

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/functions/v1/customers-crud", tags=["customers"])

_DUPLICATE_EMAIL = "A customer with this email already exists"
_IN_USE = "Customer has jobs or billing documents and cannot be deleted"


@router.get("")
async def list_customers(
    search: str | None = Query(default=None, max_length=200),
    tenant: TenantContext = Depends(get_tenant),
    repo: CustomerRepository = Depends(customer_repo),
) -> dict[str, Any]:
    """Workers see customers without email and phone."""
    customers = await repo.list_all(
        tenant.business_id, search=search, redact_contact=not tenant.is_owner
    )
    return ok({"customers": customers, "count": len(customers)})


@router.post("", status_code=201)
async def create_customer(
    body: CustomerCreate,
    tenant: TenantContext = Depends(get_tenant),
    repo: CustomerRepository = Depends(customer_repo),
) -> dict[str, Any]:
    try:
        customer = await repo.create(tenant.business_id, tenant.user_id, body.changes())
    except DuplicateCustomerError as exc:
        raise HTTPException(status_code=409, detail=_DUPLICATE_EMAIL) from exc
    return ok({"customer": customer})


@router.put("")
async def update_customer(
    body: CustomerUpdate,
    tenant: TenantContext = Depends(get_tenant),
    repo: CustomerRepository = Depends(customer_repo),
) -> dict[str, Any]:
    try:
        customer = await repo.update(tenant.business_id, body.id, body.changes())
    except DuplicateCustomerError as exc:
        raise HTTPException(status_code=409, detail=_DUPLICATE_EMAIL) from exc
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return ok({"customer": customer})


@router.delete("")
async def delete_customer(
    id: str = Query(min_length=1),  # noqa: A002
    tenant: TenantContext = Depends(get_tenant),
    repo: CustomerRepository = Depends(customer_repo),
) -> dict[str, Any]:
    try:
        deleted = await repo.delete(tenant.business_id, id)
    except CustomerInUseError as exc:
        raise HTTPException(status_code=409, detail=_IN_USE) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Customer not found")
    return ok({"id": id, "deleted": True})
