"""Audit logger: immutable, insert-only audit trail.

Uses its own DB session so audit entries survive request transaction rollbacks.
Details JSON is sanitized (sensitive fields stripped, 10KB max).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from servicegrid.models.database import AuditLog

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

_SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "cookie",
        "session",
        "phone",
        "phone_e164",
        "email",
    }
)

_MAX_DETAILS_BYTES = 10_240  # 10KB


def sanitize_details(details: dict[str, Any]) -> str:
    """Strip sensitive fields and enforce the size limit."""
    sanitized = {k: v for k, v in details.items() if k.lower() not in _SENSITIVE_FIELDS}
    encoded = json.dumps(sanitized, default=str)
    if len(encoded) > _MAX_DETAILS_BYTES:
        encoded = encoded[:_MAX_DETAILS_BYTES]
    return encoded


class AuditLogger:
    """Insert-only audit logger with its own DB session."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def log(
        self,
        *,
        business_id: str,
        user_id: str,
        action: str,
        resource_type: str = "",
        resource_id: str = "",
        details: dict[str, Any] | None = None,
        ip_address: str = "",
        request_id: str = "",
    ) -> bool:
        """Write an audit log entry. Returns False when the write failed."""
        entry = AuditLog(
            business_id=business_id,
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details_json=sanitize_details(details or {}),
            ip_address=ip_address,
            request_id=request_id,
        )
        try:
            async with AsyncSession(self._engine) as session:
                session.add(entry)
                await session.commit()
        except SQLAlchemyError:
            # Audit must never break the request
            logger.exception("audit_log_failed", action=action, business_id=business_id)
            return False
        logger.info("audit_logged", action=action, business_id=business_id, user_id=user_id)
        return True
