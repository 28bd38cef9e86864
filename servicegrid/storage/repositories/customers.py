"""Database-backed customer repository."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, or_, select
from sqlmodel.ext.asyncio.session import AsyncSession

from servicegrid.exceptions import StorageError
from servicegrid.models.database import Customer, _utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

# Contact fields hidden from workers
_CONTACT_FIELDS = ("email", "phone")


class DuplicateCustomerError(StorageError):
    """A customer with this email already exists in the business."""


class CustomerInUseError(StorageError):
    """Jobs, quotes or invoices still reference the customer."""


class CustomerRepository:
    """Customers scoped to a business. Every query filters on business_id."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    def _to_dict(self, customer: Customer, *, redact_contact: bool = False) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": customer.id,
            "businessId": customer.business_id,
            "name": customer.name,
            "email": customer.email,
            "phone": customer.phone,
            "address": customer.address,
            "notes": customer.notes,
            "createdAt": customer.created_at.isoformat(),
            "updatedAt": customer.updated_at.isoformat(),
        }
        if redact_contact:
            for name in _CONTACT_FIELDS:
                result[name] = None
        return result

    async def list_all(
        self, business_id: str, *, search: str | None = None, redact_contact: bool = False
    ) -> list[dict[str, Any]]:
        async with AsyncSession(self._engine) as session:
            stmt = select(Customer).where(col(Customer.business_id) == business_id)
            if search:
                pattern = f"%{search}%"
                stmt = stmt.where(
                    or_(col(Customer.name).ilike(pattern), col(Customer.email).ilike(pattern))
                )
            stmt = stmt.order_by(col(Customer.created_at).desc())
            results = await session.execute(stmt)
            return [
                self._to_dict(c, redact_contact=redact_contact) for c in results.scalars().all()
            ]

    async def get(
        self, business_id: str, customer_id: str, *, redact_contact: bool = False
    ) -> dict[str, Any] | None:
        async with AsyncSession(self._engine) as session:
            customer = await session.get(Customer, customer_id)
            if not customer or customer.business_id != business_id:
                return None
            return self._to_dict(customer, redact_contact=redact_contact)

    async def exists(self, business_id: str, customer_id: str) -> bool:
        return await self.get(business_id, customer_id) is not None

    async def create(self, business_id: str, owner_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        async with AsyncSession(self._engine) as session:
            await self._check_unique_email(session, business_id, fields["email"])
            customer = Customer(business_id=business_id, owner_id=owner_id, **fields)
            session.add(customer)
            try:
                await session.commit()
            except IntegrityError as exc:
                raise DuplicateCustomerError(fields["email"]) from exc
            await session.refresh(customer)
            logger.info("customer_created", business_id=business_id, customer_id=customer.id)
            return self._to_dict(customer)

    async def update(
        self, business_id: str, customer_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        async with AsyncSession(self._engine) as session:
            customer = await session.get(Customer, customer_id)
            if not customer or customer.business_id != business_id:
                return None
            if "email" in changes and changes["email"] != customer.email:
                await self._check_unique_email(session, business_id, changes["email"], customer_id)
            for name, value in changes.items():
                setattr(customer, name, value)
            customer.updated_at = _utc_now()
            session.add(customer)
            await session.commit()
            await session.refresh(customer)
            logger.info("customer_updated", business_id=business_id, customer_id=customer_id)
            return self._to_dict(customer)

    async def delete(self, business_id: str, customer_id: str) -> bool:
        async with AsyncSession(self._engine) as session:
            customer = await session.get(Customer, customer_id)
            if not customer or customer.business_id != business_id:
                return False
            await session.delete(customer)
            try:
                await session.commit()
            except IntegrityError as exc:
                logger.info(
                    "customer_delete_blocked", business_id=business_id, customer_id=customer_id
                )
                raise CustomerInUseError(customer_id) from exc
            logger.info("customer_deleted", business_id=business_id, customer_id=customer_id)
            return True

    @staticmethod
    async def _check_unique_email(
        session: AsyncSession, business_id: str, email: str, exclude_id: str | None = None
    ) -> None:
        stmt = select(Customer.id).where(
            col(Customer.business_id) == business_id, col(Customer.email) == email
        )
        if exclude_id:
            stmt = stmt.where(col(Customer.id) != exclude_id)
        if (await session.execute(stmt)).first():
            raise DuplicateCustomerError(email)
