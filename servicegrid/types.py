"""Enums and type aliases for ServiceGrid."""

from enum import StrEnum
from typing import Any

QueryKey = tuple[Any, ...]


class AuthPhase(StrEnum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    LOCKED = "locked"


class TenantRole(StrEnum):
    OWNER = "owner"
    WORKER = "worker"


class QueryStatus(StrEnum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class RefetchType(StrEnum):
    ACTIVE = "active"
    ALL = "all"
    NONE = "none"


class JobStatus(StrEnum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class QuoteStatus(StrEnum):
    DRAFT = "Draft"
    SENT = "Sent"
    APPROVED = "Approved"
    DECLINED = "Declined"


class InvoiceStatus(StrEnum):
    DRAFT = "Draft"
    SENT = "Sent"
    PAID = "Paid"
    VOID = "Void"
