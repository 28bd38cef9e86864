"""API request schemas for the function endpoints.

Bodies use camelCase on the wire; ``model_dump`` yields the snake_case
column names used by the tables.
"""

import re
from datetime import UTC, datetime
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from servicegrid.types import InvoiceStatus, JobStatus, QuoteStatus, TenantRole
from servicegrid.utils.phone import is_valid_phone, normalize_phone_e164

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def changes(self) -> dict[str, object]:
        """Fields the caller actually sent, minus the record id and action."""
        return self.model_dump(exclude_unset=True, exclude={"id", "action"}, mode="python")


def _to_naive_utc(value: datetime) -> datetime:
    """Columns are TIMESTAMP WITHOUT TIME ZONE holding UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


UtcDatetime = Annotated[datetime, AfterValidator(_to_naive_utc)]


def _check_email(value: str) -> str:
    value = value.strip().lower()
    if not _EMAIL_RE.match(value):
        msg = "Invalid email format"
        raise ValueError(msg)
    return value


def _reject_null(value: object, info: ValidationInfo) -> object:
    """Update bodies may omit a required column but never send it as null."""
    if value is None:
        msg = f"{to_camel(info.field_name or 'value')} cannot be null"
        raise ValueError(msg)
    return value


def _check_phone(value: str | None) -> str | None:
    if value is None:
        return None
    if not is_valid_phone(value):
        msg = "Phone number must be a valid US number"
        raise ValueError(msg)
    return normalize_phone_e164(value) if value.strip() else ""


# --- Customers ---


class CustomerCreate(_Body):
    name: str = Field(min_length=1, max_length=200)
    email: str
    phone: str | None = None
    address: str | None = None
    notes: str | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "Name is required"
            raise ValueError(msg)
        return value

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("phone")
    @classmethod
    def _phone(cls, value: str | None) -> str | None:
        return _check_phone(value)


class CustomerUpdate(_Body):
    id: str
    name: str | None = Field(default=None, min_length=1, max_length=200)
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    notes: str | None = None

    @field_validator("name", "email")
    @classmethod
    def _not_null(cls, value: str | None, info: ValidationInfo) -> str | None:
        return _reject_null(value, info)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _check_email(value)

    @field_validator("phone")
    @classmethod
    def _phone(cls, value: str | None) -> str | None:
        return _check_phone(value)


# --- Jobs ---


class JobCreate(_Body):
    customer_id: str
    quote_id: str | None = None
    title: str | None = None
    status: JobStatus = JobStatus.SCHEDULED
    starts_at: UtcDatetime | None = None
    ends_at: UtcDatetime | None = None
    total: float | None = Field(default=None, ge=0)
    address: str | None = None
    notes: str | None = None
    job_type: str | None = None
    is_assessment: bool = False


class JobUpdate(_Body):
    id: str
    title: str | None = None
    status: JobStatus | None = None
    starts_at: UtcDatetime | None = None
    ends_at: UtcDatetime | None = None
    total: float | None = Field(default=None, ge=0)
    address: str | None = None
    notes: str | None = None
    job_type: str | None = None

    @field_validator("status")
    @classmethod
    def _not_null(cls, value: JobStatus | None, info: ValidationInfo) -> JobStatus | None:
        return _reject_null(value, info)


# --- Quotes and invoices ---


class LineItem(BaseModel):
    description: str = ""
    quantity: float = Field(default=1, ge=0)
    unit_price: float = Field(default=0, ge=0, alias="unitPrice")

    model_config = ConfigDict(populate_by_name=True)


class _Document(_Body):
    def changes(self) -> dict[str, object]:
        fields = super().changes()
        items: list[LineItem] | None = getattr(self, "line_items", None)
        if "line_items" in fields:
            fields["line_items"] = [item.model_dump(by_alias=True) for item in items or []]
        return fields


class QuoteCreate(_Document):
    customer_id: str
    status: QuoteStatus = QuoteStatus.DRAFT
    line_items: list[LineItem] = []
    tax_rate: float = Field(default=0, ge=0, le=1)
    discount: float = Field(default=0, ge=0)
    terms: str | None = None
    address: str | None = None


class QuoteUpdate(_Document):
    id: str
    status: QuoteStatus | None = None
    line_items: list[LineItem] | None = None
    tax_rate: float | None = Field(default=None, ge=0, le=1)
    discount: float | None = Field(default=None, ge=0)
    terms: str | None = None
    address: str | None = None

    @field_validator("status", "tax_rate", "discount")
    @classmethod
    def _not_null(cls, value: object, info: ValidationInfo) -> object:
        return _reject_null(value, info)


class InvoiceCreate(_Document):
    customer_id: str
    quote_id: str | None = None
    job_id: str | None = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    line_items: list[LineItem] = []
    tax_rate: float = Field(default=0, ge=0, le=1)
    discount: float = Field(default=0, ge=0)
    due_at: UtcDatetime | None = None


class InvoiceUpdate(_Document):
    id: str
    status: InvoiceStatus | None = None
    line_items: list[LineItem] | None = None
    tax_rate: float | None = Field(default=None, ge=0, le=1)
    discount: float | None = Field(default=None, ge=0)
    due_at: UtcDatetime | None = None
    paid_at: UtcDatetime | None = None

    @field_validator("status", "tax_rate", "discount")
    @classmethod
    def _not_null(cls, value: object, info: ValidationInfo) -> object:
        return _reject_null(value, info)


class InvoiceAction(_Body):
    action: Literal["send"]
    id: str


# --- Profile and team ---


class ProfileUpdate(_Body):
    full_name: str = Field(min_length=1, max_length=200)
    business_name: str | None = Field(default=None, max_length=200)
    phone_raw: str | None = None

    @field_validator("full_name")
    @classmethod
    def _strip_full_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "Full name is required"
            raise ValueError(msg)
        return value

    @field_validator("phone_raw")
    @classmethod
    def _phone(cls, value: str | None) -> str | None:
        return _check_phone(value)


class AddTeamMember(_Body):
    email: str
    role: TenantRole = TenantRole.WORKER

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        return _check_email(value)


class RemoveBusinessAccess(_Body):
    business_id: str = Field(min_length=1)
