"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenancy
# ---------------------------------------------------------------------------


class Business(SQLModel, table=True):
    __tablename__ = "businesses"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    owner_id: str = Field(index=True)
    clerk_org_id: str | None = Field(default=None, unique=True)
    name: str
    name_customized: bool = Field(default=False)
    phone_e164: str | None = None
    est_prefix: str = Field(default="EST-")
    est_seq: int = Field(default=0)
    inv_prefix: str = Field(default="INV-")
    inv_seq: int = Field(default=0)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    clerk_user_id: str | None = Field(default=None, unique=True)
    email: str = Field(index=True)
    full_name: str | None = None
    phone_e164: str | None = None
    default_business_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class BusinessMember(SQLModel, table=True):
    __tablename__ = "business_members"
    __table_args__ = (UniqueConstraint("business_id", "user_id"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    business_id: str = Field(foreign_key="businesses.id", index=True)
    user_id: str = Field(foreign_key="profiles.id", index=True)
    role: str = Field(default="worker")  # owner | worker
    granted_by: str | None = None
    granted_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Business data (every row carries business_id)
# ---------------------------------------------------------------------------


class Customer(SQLModel, table=True):
    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("business_id", "email"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    business_id: str = Field(foreign_key="businesses.id", index=True)
    owner_id: str
    name: str
    email: str
    phone: str | None = None
    address: str | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Job(SQLModel, table=True):
    __tablename__ = "jobs"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    business_id: str = Field(foreign_key="businesses.id", index=True)
    owner_id: str
    customer_id: str = Field(foreign_key="customers.id", index=True)
    quote_id: str | None = None
    title: str | None = None
    status: str = Field(default="Scheduled")
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    total: float | None = None
    address: str | None = None
    notes: str | None = None
    job_type: str | None = None
    is_assessment: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Quote(SQLModel, table=True):
    __tablename__ = "quotes"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    business_id: str = Field(foreign_key="businesses.id", index=True)
    owner_id: str
    customer_id: str = Field(foreign_key="customers.id", index=True)
    number: str = Field(index=True)
    status: str = Field(default="Draft")
    subtotal: float = Field(default=0)
    tax_rate: float = Field(default=0)
    discount: float = Field(default=0)
    total: float = Field(default=0)
    terms: str | None = None
    address: str | None = None
    line_items_json: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Invoice(SQLModel, table=True):
    __tablename__ = "invoices"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    business_id: str = Field(foreign_key="businesses.id", index=True)
    owner_id: str
    customer_id: str = Field(foreign_key="customers.id", index=True)
    quote_id: str | None = None
    job_id: str | None = None
    number: str = Field(index=True)
    status: str = Field(default="Draft")
    subtotal: float = Field(default=0)
    tax_rate: float = Field(default=0)
    discount: float = Field(default=0)
    total: float = Field(default=0)
    due_at: datetime | None = None
    paid_at: datetime | None = None
    sent_at: datetime | None = None
    line_items_json: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    business_id: str = Field(index=True)
    user_id: str = Field(index=True)
    action: str
    resource_type: str = ""
    resource_id: str = ""
    details_json: str = "{}"
    ip_address: str = ""
    request_id: str = ""
    created_at: datetime = Field(default_factory=_utc_now)
