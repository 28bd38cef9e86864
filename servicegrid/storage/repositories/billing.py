"""Quotes and invoices: numbered, line-itemised documents per business."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, ClassVar

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from servicegrid.models.database import Business, Invoice, Quote, _utc_now
from servicegrid.types import InvoiceStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

# Fields recomputed from the line items on every write
_TOTAL_FIELDS = ("line_items", "tax_rate", "discount")


def format_number(prefix: str, seq: int) -> str:
    """``EST-`` and 1 give ``EST-001``; sequences past 999 keep growing."""
    return f"{prefix}{seq:03d}"


def compute_totals(
    line_items: list[dict[str, Any]], tax_rate: float = 0.0, discount: float = 0.0
) -> dict[str, float]:
    subtotal = sum(float(i.get("quantity", 1)) * float(i.get("unitPrice", 0)) for i in line_items)
    taxable = max(0.0, subtotal - discount)
    return {
        "subtotal": round(subtotal, 2),
        "total": round(taxable * (1 + tax_rate), 2),
    }


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


class _DocumentRepository:
    """Shared CRUD for numbered documents; subclasses pick the table and sequence."""

    model: ClassVar[type[Quote] | type[Invoice]]
    prefix_field: ClassVar[str]
    seq_field: ClassVar[str]
    kind: ClassVar[str]

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    def _to_dict(self, doc: Any) -> dict[str, Any]:
        return {
            "id": doc.id,
            "businessId": doc.business_id,
            "customerId": doc.customer_id,
            "number": doc.number,
            "status": doc.status,
            "subtotal": doc.subtotal,
            "taxRate": doc.tax_rate,
            "discount": doc.discount,
            "total": doc.total,
            "lineItems": json.loads(doc.line_items_json) if doc.line_items_json else [],
            "createdAt": doc.created_at.isoformat(),
            "updatedAt": doc.updated_at.isoformat(),
        }

    async def list_all(
        self,
        business_id: str,
        *,
        status: str | None = None,
        customer_id: str | None = None,
    ) -> list[dict[str, Any]]:
        model = self.model
        async with AsyncSession(self._engine) as session:
            stmt = select(model).where(col(model.business_id) == business_id)
            if status:
                stmt = stmt.where(col(model.status) == status)
            if customer_id:
                stmt = stmt.where(col(model.customer_id) == customer_id)
            stmt = stmt.order_by(col(model.created_at).desc())
            results = await session.execute(stmt)
            return [self._to_dict(d) for d in results.scalars().all()]

    async def get(self, business_id: str, doc_id: str) -> dict[str, Any] | None:
        async with AsyncSession(self._engine) as session:
            doc = await session.get(self.model, doc_id)
            if not doc or doc.business_id != business_id:
                return None
            return self._to_dict(doc)

    async def create(self, business_id: str, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert a document, taking the next number from the business sequence."""
        fields = dict(fields)
        line_items = fields.pop("line_items", None) or []
        async with AsyncSession(self._engine) as session:
            business = await session.get(Business, business_id, with_for_update=True)
            if business is None:
                msg = f"Business {business_id} not found"
                raise LookupError(msg)
            seq = getattr(business, self.seq_field) + 1
            setattr(business, self.seq_field, seq)
            session.add(business)

            doc = self.model(
                business_id=business_id,
                owner_id=owner_id,
                number=format_number(getattr(business, self.prefix_field), seq),
                line_items_json=json.dumps(line_items),
                **compute_totals(
                    line_items, fields.get("tax_rate", 0.0), fields.get("discount", 0.0)
                ),
                **fields,
            )
            session.add(doc)
            await session.commit()
            await session.refresh(doc)
            logger.info(
                f"{self.kind}_created", business_id=business_id, number=doc.number, id=doc.id
            )
            return self._to_dict(doc)

    async def update(
        self, business_id: str, doc_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        changes = dict(changes)
        async with AsyncSession(self._engine) as session:
            doc = await session.get(self.model, doc_id)
            if not doc or doc.business_id != business_id:
                return None
            line_items = changes.pop("line_items", None)
            if line_items is not None:
                doc.line_items_json = json.dumps(line_items)
            for name, value in changes.items():
                setattr(doc, name, value)
            if line_items is not None or any(f in changes for f in _TOTAL_FIELDS):
                items = json.loads(doc.line_items_json) if doc.line_items_json else []
                totals = compute_totals(items, doc.tax_rate, doc.discount)
                doc.subtotal = totals["subtotal"]
                doc.total = totals["total"]
            doc.updated_at = _utc_now()
            session.add(doc)
            await session.commit()
            await session.refresh(doc)
            logger.info(f"{self.kind}_updated", business_id=business_id, id=doc_id)
            return self._to_dict(doc)


class QuoteRepository(_DocumentRepository):
    model = Quote
    prefix_field = "est_prefix"
    seq_field = "est_seq"
    kind = "quote"

    def _to_dict(self, doc: Any) -> dict[str, Any]:
        result = super()._to_dict(doc)
        result["terms"] = doc.terms
        result["address"] = doc.address
        return result


class InvoiceRepository(_DocumentRepository):
    model = Invoice
    prefix_field = "inv_prefix"
    seq_field = "inv_seq"
    kind = "invoice"

    def _to_dict(self, doc: Any) -> dict[str, Any]:
        result = super()._to_dict(doc)
        result.update(
            quoteId=doc.quote_id,
            jobId=doc.job_id,
            dueAt=_iso(doc.due_at),
            paidAt=_iso(doc.paid_at),
            sentAt=_iso(doc.sent_at),
        )
        return result

    async def mark_sent(self, business_id: str, invoice_id: str) -> dict[str, Any] | None:
        return await self.update(
            business_id,
            invoice_id,
            {"status": InvoiceStatus.SENT.value, "sent_at": _utc_now()},
        )
