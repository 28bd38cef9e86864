"""Aggregate counts for the dashboard of one business."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import func
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from servicegrid.models.database import Customer, Invoice, Job, Quote
from servicegrid.types import InvoiceStatus, JobStatus, QuoteStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


class DashboardRepository:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def summary(self, business_id: str) -> dict[str, Any]:
        async with AsyncSession(self._engine) as session:

            async def scalar(stmt: Any) -> Any:
                return (await session.execute(stmt)).scalar_one()

            customers = await scalar(
                select(func.count())
                .select_from(Customer)
                .where(col(Customer.business_id) == business_id)
            )
            jobs_by_status = dict(
                (
                    await session.execute(
                        select(Job.status, func.count())
                        .where(col(Job.business_id) == business_id)
                        .group_by(Job.status)
                    )
                ).all()
            )
            open_quotes = await scalar(
                select(func.count())
                .select_from(Quote)
                .where(
                    col(Quote.business_id) == business_id,
                    col(Quote.status).in_([QuoteStatus.DRAFT.value, QuoteStatus.SENT.value]),
                )
            )
            outstanding = await scalar(
                select(func.coalesce(func.sum(Invoice.total), 0.0)).where(
                    col(Invoice.business_id) == business_id,
                    col(Invoice.status) == InvoiceStatus.SENT.value,
                )
            )
            paid = await scalar(
                select(func.coalesce(func.sum(Invoice.total), 0.0)).where(
                    col(Invoice.business_id) == business_id,
                    col(Invoice.status) == InvoiceStatus.PAID.value,
                )
            )

        return {
            "customers": customers,
            "jobs": {
                "total": sum(jobs_by_status.values()),
                "scheduled": jobs_by_status.get(JobStatus.SCHEDULED.value, 0),
                "inProgress": jobs_by_status.get(JobStatus.IN_PROGRESS.value, 0),
                "completed": jobs_by_status.get(JobStatus.COMPLETED.value, 0),
            },
            "openQuotes": open_quotes,
            "outstandingInvoiceTotal": round(float(outstanding), 2),
            "paidInvoiceTotal": round(float(paid), 2),
        }
