"""Clerk webhook receiver for user, organization and membership sync."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from servicegrid.config.settings import get_settings
from servicegrid.storage.repositories.tenancy import TenancyRepository
from servicegrid.types import TenantRole
from servicegrid.web.dependencies import tenancy_repo
from servicegrid.web.envelope import ok

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["webhooks"])

# Svix signature tolerance in seconds (5 minutes)
_SVIX_TOLERANCE = 300

# Clerk organization roles mapped onto business roles
_ROLE_MAP = {"org:admin": TenantRole.OWNER.value}


def verify_svix_signature(
    payload: bytes, headers: dict[str, str], secret: str, now: float | None = None
) -> bool:
    """Verify a Clerk/Svix webhook signature.

    Headers: ``svix-id``, ``svix-timestamp`` and ``svix-signature`` (space
    separated ``v1,<base64 hmac>`` entries).
    """
    msg_id = headers.get("svix-id", "")
    timestamp = headers.get("svix-timestamp", "")
    signatures = headers.get("svix-signature", "")

    if not msg_id or not timestamp or not signatures:
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False
    now = time.time() if now is None else now
    if abs(now - ts) > _SVIX_TOLERANCE:
        logger.warning("webhook_timestamp_expired", delta=abs(now - ts))
        return False

    if secret.startswith("whsec_"):
        secret = secret[6:]
    secret_bytes = base64.b64decode(secret)

    to_sign = f"{msg_id}.{timestamp}.".encode() + payload
    expected = hmac.new(secret_bytes, to_sign, hashlib.sha256).digest()
    expected_b64 = base64.b64encode(expected).decode()

    for sig in signatures.split(" "):
        parts = sig.split(",", 1)
        if len(parts) == 2 and parts[0] == "v1" and hmac.compare_digest(parts[1], expected_b64):
            return True
    return False


@router.post("/clerk-webhooks")
async def clerk_webhook(
    request: Request,
    tenancy: TenancyRepository = Depends(tenancy_repo),
) -> dict[str, Any]:
    """Handle Clerk webhook events."""
    webhook_secret = (get_settings().clerk_webhook_secret or "").strip()
    if len(webhook_secret) < 10:
        logger.error("webhook_secret_missing_or_short")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    payload = await request.body()
    headers = {
        "svix-id": request.headers.get("svix-id", ""),
        "svix-timestamp": request.headers.get("svix-timestamp", ""),
        "svix-signature": request.headers.get("svix-signature", ""),
    }
    if not verify_svix_signature(payload, headers, webhook_secret):
        logger.warning("webhook_signature_invalid")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc
    event_type = event.get("type", "")
    data = event.get("data", {})
    logger.info("webhook_received", event_type=event_type)

    handler = _HANDLERS.get(event_type)
    if handler:
        await handler(tenancy, data)
    else:
        logger.debug("webhook_unhandled_event", event_type=event_type)

    return ok({"received": True, "type": event_type})


# --- Event handlers ---


async def _handle_user_upsert(tenancy: TenancyRepository, data: dict[str, Any]) -> None:
    name = f"{data.get('first_name') or ''} {data.get('last_name') or ''}".strip()
    await tenancy.sync_clerk_user(data.get("id", ""), extract_primary_email(data), name)


async def _handle_org_upsert(tenancy: TenancyRepository, data: dict[str, Any]) -> None:
    await tenancy.sync_clerk_organization(
        data.get("id", ""), data.get("name", ""), data.get("created_by")
    )


async def _handle_membership_upsert(tenancy: TenancyRepository, data: dict[str, Any]) -> None:
    role = _ROLE_MAP.get(data.get("role", ""), TenantRole.WORKER.value)
    await tenancy.sync_clerk_membership(*_membership_ids(data), role)


async def _handle_membership_deleted(tenancy: TenancyRepository, data: dict[str, Any]) -> None:
    await tenancy.sync_clerk_membership(*_membership_ids(data), None)


def _membership_ids(data: dict[str, Any]) -> tuple[str, str]:
    return (
        data.get("organization", {}).get("id", ""),
        data.get("public_user_data", {}).get("user_id", ""),
    )


def extract_primary_email(data: dict[str, Any]) -> str:
    """Extract the primary email from Clerk user data."""
    email_addresses = data.get("email_addresses", [])
    primary_id = data.get("primary_email_address_id", "")
    for addr in email_addresses:
        if addr.get("id") == primary_id:
            return str(addr.get("email_address", ""))
    if email_addresses:
        return str(email_addresses[0].get("email_address", ""))
    return ""


_HANDLERS: dict[str, Callable[[TenancyRepository, dict[str, Any]], Awaitable[None]]] = {
    "user.created": _handle_user_upsert,
    "user.updated": _handle_user_upsert,
    "organization.created": _handle_org_upsert,
    "organization.updated": _handle_org_upsert,
    "organizationMembership.created": _handle_membership_upsert,
    "organizationMembership.updated": _handle_membership_upsert,
    "organizationMembership.deleted": _handle_membership_deleted,
}
