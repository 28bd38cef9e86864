"""Database-backed job repository."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from servicegrid.models.database import Job, _utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


class JobRepository:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    def _to_dict(self, job: Job) -> dict[str, Any]:
        return {
            "id": job.id,
            "businessId": job.business_id,
            "customerId": job.customer_id,
            "quoteId": job.quote_id,
            "title": job.title,
            "status": job.status,
            "startsAt": _iso(job.starts_at),
            "endsAt": _iso(job.ends_at),
            "total": job.total,
            "address": job.address,
            "notes": job.notes,
            "jobType": job.job_type,
            "isAssessment": job.is_assessment,
            "createdAt": job.created_at.isoformat(),
            "updatedAt": job.updated_at.isoformat(),
        }

    async def list_all(
        self,
        business_id: str,
        *,
        status: str | None = None,
        customer_id: str | None = None,
    ) -> list[dict[str, Any]]:
        async with AsyncSession(self._engine) as session:
            stmt = select(Job).where(col(Job.business_id) == business_id)
            if status:
                stmt = stmt.where(col(Job.status) == status)
            if customer_id:
                stmt = stmt.where(col(Job.customer_id) == customer_id)
            stmt = stmt.order_by(col(Job.starts_at).desc(), col(Job.created_at).desc())
            results = await session.execute(stmt)
            return [self._to_dict(j) for j in results.scalars().all()]

    async def create(self, business_id: str, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        async with AsyncSession(self._engine) as session:
            job = Job(business_id=business_id, owner_id=owner_id, **fields)
            session.add(job)
            await session.commit()
            await session.refresh(job)
            logger.info("job_created", business_id=business_id, job_id=job.id, status=job.status)
            return self._to_dict(job)

    async def update(
        self, business_id: str, job_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        async with AsyncSession(self._engine) as session:
            job = await session.get(Job, job_id)
            if not job or job.business_id != business_id:
                return None
            for name, value in changes.items():
                setattr(job, name, value)
            job.updated_at = _utc_now()
            session.add(job)
            await session.commit()
            await session.refresh(job)
            logger.info("job_updated", business_id=business_id, job_id=job_id)
            return self._to_dict(job)

    async def delete(self, business_id: str, job_id: str) -> bool:
        async with AsyncSession(self._engine) as session:
            job = await session.get(Job, job_id)
            if not job or job.business_id != business_id:
                return False
            await session.delete(job)
            await session.commit()
            logger.info("job_deleted", business_id=business_id, job_id=job_id)
            return True
