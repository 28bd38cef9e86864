"""quotes-crud and invoices-crud functions."""

from __future__ import annotations

from typing import Any, TypeVar

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Response
from pydantic import BaseModel, ValidationError

from servicegrid.models.api import (
    InvoiceAction,
    InvoiceCreate,
    InvoiceUpdate,
    QuoteCreate,
    QuoteUpdate,
)
from servicegrid.storage.repositories.billing import InvoiceRepository, QuoteRepository
from servicegrid.storage.repositories.customers import CustomerRepository
from servicegrid.types import InvoiceStatus, QuoteStatus
from servicegrid.web.auth.rbac import get_tenant
from servicegrid.web.dependencies import customer_repo, invoice_repo, quote_repo
from servicegrid.web.envelope import ok, validation_message
from servicegrid.web.tenant_context import TenantContext

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["billing"])

_M = TypeVar("_M", bound=BaseModel)


async def _require_customer(
    customers: CustomerRepository, business_id: str, customer_id: str
) -> None:
    if not await customers.exists(business_id, customer_id):
        raise HTTPException(status_code=404, detail="Customer not found")


# --- Quotes ---


@router.get("/quotes-crud")
async def list_quotes(
    status: QuoteStatus | None = Query(default=None),
    customer_id: str | None = Query(default=None, alias="customerId"),
    tenant: TenantContext = Depends(get_tenant),
    repo: QuoteRepository = Depends(quote_repo),
) -> dict[str, Any]:
    quotes = await repo.list_all(tenant.business_id, status=status, customer_id=customer_id)
    return ok({"quotes": quotes, "count": len(quotes)})


@router.post("/quotes-crud", status_code=201)
async def create_quote(
    body: QuoteCreate,
    tenant: TenantContext = Depends(get_tenant),
    repo: QuoteRepository = Depends(quote_repo),
    customers: CustomerRepository = Depends(customer_repo),
) -> dict[str, Any]:
    """Numbered from the business estimate sequence (EST-001, EST-002, ...)."""
    await _require_customer(customers, tenant.business_id, body.customer_id)
    quote = await repo.create(tenant.business_id, tenant.user_id, _all_fields(body))
    return ok({"quote": quote})


@router.put("/quotes-crud")
async def update_quote(
    body: QuoteUpdate,
    tenant: TenantContext = Depends(get_tenant),
    repo: QuoteRepository = Depends(quote_repo),
) -> dict[str, Any]:
    quote = await repo.update(tenant.business_id, body.id, body.changes())
    if quote is None:
        raise HTTPException(status_code=404, detail="Quote not found")
    return ok({"quote": quote})


# --- Invoices ---


@router.get("/invoices-crud")
async def list_invoices(
    status: InvoiceStatus | None = Query(default=None),
    customer_id: str | None = Query(default=None, alias="customerId"),
    tenant: TenantContext = Depends(get_tenant),
    repo: InvoiceRepository = Depends(invoice_repo),
) -> dict[str, Any]:
    invoices = await repo.list_all(tenant.business_id, status=status, customer_id=customer_id)
    return ok({"invoices": invoices, "count": len(invoices)})


@router.post("/invoices-crud", status_code=201)
async def create_or_send_invoice(
    response: Response,
    payload: dict[str, Any] = Body(...),
    tenant: TenantContext = Depends(get_tenant),
    repo: InvoiceRepository = Depends(invoice_repo),
    customers: CustomerRepository = Depends(customer_repo),
) -> dict[str, Any]:
    """Create an invoice, or with ``{"action": "send", "id": ...}`` mark one Sent."""
    if "action" in payload:
        action = _parse(InvoiceAction, payload)
        invoice = await repo.mark_sent(tenant.business_id, action.id)
        if invoice is None:
            raise HTTPException(status_code=404, detail="Invoice not found")
        logger.info("invoice_sent", business_id=tenant.business_id, invoice_id=action.id)
        response.status_code = 200
        return ok({"invoice": invoice})

    body = _parse(InvoiceCreate, payload)
    await _require_customer(customers, tenant.business_id, body.customer_id)
    invoice = await repo.create(tenant.business_id, tenant.user_id, _all_fields(body))
    return ok({"invoice": invoice})


@router.put("/invoices-crud")
async def update_invoice(
    body: InvoiceUpdate,
    tenant: TenantContext = Depends(get_tenant),
    repo: InvoiceRepository = Depends(invoice_repo),
) -> dict[str, Any]:
    invoice = await repo.update(tenant.business_id, body.id, body.changes())
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return ok({"invoice": invoice})


def _parse(model: type[_M], payload: dict[str, Any]) -> _M:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=validation_message(exc.errors())) from exc


def _all_fields(body: QuoteCreate | InvoiceCreate) -> dict[str, Any]:
    fields = body.model_dump(mode="python")
    fields["line_items"] = [item.model_dump(by_alias=True) for item in body.line_items]
    return fields
