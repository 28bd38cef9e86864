"""Profiles, businesses and memberships: who can act on which business."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, or_, select
from sqlmodel.ext.asyncio.session import AsyncSession

from servicegrid.models.database import Business, BusinessMember, Profile, _utc_now
from servicegrid.types import TenantRole

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

_FALLBACK_OWNER_NAME = "My"


@dataclass(frozen=True, slots=True)
class Resolved:
    """The business a request acts on and the caller's role in it."""

    profile: Profile
    business: Business
    role: str


class AccessDeniedError(Exception):
    """The requested business exists but the caller has no access to it."""


class AccessRuleError(Exception):
    """A membership change that the business rules forbid."""

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


def business_to_dict(business: Business, role: str | None = None) -> dict[str, Any]:
    result: dict[str, Any] = {
        "id": business.id,
        "name": business.name,
        "ownerId": business.owner_id,
        "phone": business.phone_e164,
        "estPrefix": business.est_prefix,
        "invPrefix": business.inv_prefix,
        "nameCustomized": business.name_customized,
        "createdAt": business.created_at.isoformat(),
    }
    if role is not None:
        result["role"] = role
    return result


def profile_to_dict(profile: Profile) -> dict[str, Any]:
    return {
        "id": profile.id,
        "email": profile.email,
        "fullName": profile.full_name,
        "phoneE164": profile.phone_e164,
        "defaultBusinessId": profile.default_business_id,
    }


def _member_to_dict(membership: BusinessMember, profile: Profile) -> dict[str, Any]:
    return {
        "id": membership.id,
        "userId": profile.id,
        "email": profile.email,
        "fullName": profile.full_name,
        "role": membership.role,
        "grantedAt": membership.granted_at.isoformat(),
    }


def _default_business_name(full_name: str | None, email: str) -> str:
    owner = (full_name or "").strip() or email.split("@", 1)[0] or _FALLBACK_OWNER_NAME
    return f"{owner}'s Business"


class TenancyRepository:
    """Database-backed tenancy store.

    Every method opens its own session; callers pass plain ids.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    # -- resolution ---------------------------------------------------------

    async def ensure_profile(
        self, subject: str, email: str, full_name: str = "", *, external: bool = False
    ) -> Profile:
        """Return the profile for a token subject, provisioning it when missing.

        ``external`` subjects (Clerk user ids) are stored in ``clerk_user_id``;
        native backend subjects are the profile id itself.
        """
        async with AsyncSession(self._engine) as session:
            stmt = select(Profile).where(
                or_(col(Profile.id) == subject, col(Profile.clerk_user_id) == subject)
            )
            result = await session.execute(stmt)
            profile = result.scalars().first()
            if profile:
                return profile

            profile = Profile(email=email.strip().lower(), full_name=full_name or None)
            if external:
                profile.clerk_user_id = subject
            else:
                profile.id = subject
            session.add(profile)
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent first request provisioned the same subject
                await session.rollback()
                existing = (await session.execute(stmt)).scalars().first()
                if existing is None:
                    raise
                return existing
            await session.refresh(profile)
            logger.info("profile_provisioned", user_id=profile.id, external=external)
            return profile

    async def resolve(self, profile: Profile, requested_business_id: str | None = None) -> Resolved:
        """Pick the business for a request.

        Order: explicit request, profile default, oldest owned, oldest
        membership, then a freshly created business owned by the caller.
        Raises AccessDeniedError when an explicit business is not accessible.
        """
        async with AsyncSession(self._engine) as session:
            if requested_business_id:
                found = await self._access(session, profile.id, requested_business_id)
                if found is None:
                    logger.warning(
                        "business_access_denied",
                        user_id=profile.id,
                        business_id=requested_business_id,
                    )
                    raise AccessDeniedError(requested_business_id)
                return Resolved(profile, *found)

            if profile.default_business_id:
                found = await self._access(session, profile.id, profile.default_business_id)
                if found is not None:
                    return Resolved(profile, *found)

            owned_stmt = (
                select(Business)
                .where(col(Business.owner_id) == profile.id)
                .order_by(col(Business.created_at))
            )
            owned = (await session.execute(owned_stmt)).scalars().first()
            if owned:
                return Resolved(profile, owned, TenantRole.OWNER.value)

            member_stmt = (
                select(BusinessMember)
                .where(col(BusinessMember.user_id) == profile.id)
                .order_by(col(BusinessMember.granted_at))
            )
            membership = (await session.execute(member_stmt)).scalars().first()
            if membership:
                business = await session.get(Business, membership.business_id)
                if business:
                    return Resolved(profile, business, membership.role)

        business = await self.create_business(
            profile.id, _default_business_name(profile.full_name, profile.email)
        )
        current = await self.get_profile(profile.id)
        if current and current.default_business_id not in (None, business.id):
            async with AsyncSession(self._engine) as session:
                found = await self._access(session, profile.id, current.default_business_id)
            if found is not None:
                # A concurrent request provisioned this caller first
                await self._discard_business(business.id)
                return Resolved(current, *found)
        return Resolved(current or profile, business, TenantRole.OWNER.value)

    async def _access(
        self, session: AsyncSession, user_id: str, business_id: str
    ) -> tuple[Business, str] | None:
        business = await session.get(Business, business_id)
        if not business:
            return None
        if business.owner_id == user_id:
            return business, TenantRole.OWNER.value
        stmt = select(BusinessMember).where(
            col(BusinessMember.business_id) == business_id,
            col(BusinessMember.user_id) == user_id,
        )
        membership = (await session.execute(stmt)).scalars().first()
        if membership:
            return business, membership.role
        return None

    async def create_business(
        self, owner_id: str, name: str, clerk_org_id: str | None = None
    ) -> Business:
        """Create a business, its owner membership, and default the owner to it."""
        async with AsyncSession(self._engine) as session:
            business = Business(owner_id=owner_id, name=name, clerk_org_id=clerk_org_id)
            session.add(business)
            await session.flush()
            session.add(
                BusinessMember(
                    business_id=business.id,
                    user_id=owner_id,
                    role=TenantRole.OWNER.value,
                    granted_by=owner_id,
                )
            )
            await session.execute(
                update(Profile)
                .where(col(Profile.id) == owner_id, col(Profile.default_business_id).is_(None))
                .values(default_business_id=business.id)
            )
            await session.commit()
            await session.refresh(business)
        logger.info("business_created", business_id=business.id, owner_id=owner_id)
        return business

    async def _discard_business(self, business_id: str) -> None:
        async with AsyncSession(self._engine) as session:
            stmt = select(BusinessMember).where(col(BusinessMember.business_id) == business_id)
            for membership in (await session.execute(stmt)).scalars().all():
                await session.delete(membership)
            await session.flush()
            business = await session.get(Business, business_id)
            if business:
                await session.delete(business)
            await session.commit()
        logger.info("business_discarded", business_id=business_id)

    # -- profile ------------------------------------------------------------

    async def get_profile(self, profile_id: str) -> Profile | None:
        async with AsyncSession(self._engine) as session:
            return await session.get(Profile, profile_id)

    async def update_profile(
        self,
        profile_id: str,
        business_id: str,
        *,
        full_name: str | None = None,
        phone_e164: str | None = None,
        business_name: str | None = None,
        is_owner: bool = False,
    ) -> tuple[Profile, Business | None]:
        """Update the caller's profile; owners may also rename the business."""
        async with AsyncSession(self._engine) as session:
            profile = await session.get(Profile, profile_id)
            if profile is None:
                msg = f"Profile {profile_id} not found"
                raise LookupError(msg)
            if full_name is not None:
                profile.full_name = full_name
            if phone_e164 is not None:
                profile.phone_e164 = phone_e164 or None
            profile.updated_at = _utc_now()
            session.add(profile)

            business = await session.get(Business, business_id)
            if business and is_owner and business_name:
                business.name = business_name
                business.name_customized = True
                business.updated_at = _utc_now()
                session.add(business)
            await session.commit()
            await session.refresh(profile)
            if business:
                await session.refresh(business)
        logger.info("profile_updated", user_id=profile_id, business_id=business_id)
        return profile, business

    # -- memberships --------------------------------------------------------

    async def list_user_businesses(
        self, user_id: str, current_business_id: str | None = None
    ) -> list[dict[str, Any]]:
        async with AsyncSession(self._engine) as session:
            stmt = (
                select(BusinessMember, Business)
                .where(col(BusinessMember.user_id) == user_id)
                .where(col(BusinessMember.business_id) == col(Business.id))
                .order_by(col(BusinessMember.granted_at))
            )
            rows = (await session.execute(stmt)).all()
            owned_stmt = select(Business).where(col(Business.owner_id) == user_id)
            owned = (await session.execute(owned_stmt)).scalars().all()

        seen: set[str] = set()
        businesses: list[dict[str, Any]] = []
        for membership, business in rows:
            seen.add(business.id)
            role = TenantRole.OWNER.value if business.owner_id == user_id else membership.role
            businesses.append(self._membership_entry(business, role, current_business_id))
        for business in owned:
            if business.id not in seen:
                businesses.append(
                    self._membership_entry(business, TenantRole.OWNER.value, current_business_id)
                )
        return businesses

    @staticmethod
    def _membership_entry(
        business: Business, role: str, current_business_id: str | None
    ) -> dict[str, Any]:
        return {
            "id": business.id,
            "name": business.name,
            "role": role,
            "isCurrent": business.id == current_business_id,
        }

    async def list_members(self, business_id: str) -> list[dict[str, Any]]:
        async with AsyncSession(self._engine) as session:
            stmt = (
                select(BusinessMember, Profile)
                .where(col(BusinessMember.business_id) == business_id)
                .where(col(BusinessMember.user_id) == col(Profile.id))
                .order_by(col(BusinessMember.granted_at))
            )
            rows = (await session.execute(stmt)).all()
        return [_member_to_dict(membership, profile) for membership, profile in rows]

    async def add_member(
        self, business_id: str, email: str, role: str, granted_by: str
    ) -> dict[str, Any]:
        """Grant an existing user access to a business."""
        async with AsyncSession(self._engine) as session:
            stmt = select(Profile).where(col(Profile.email) == email.strip().lower())
            profile = (await session.execute(stmt)).scalars().first()
            if profile is None:
                raise AccessRuleError("No user found with that email", status=404)

            existing_stmt = select(BusinessMember).where(
                col(BusinessMember.business_id) == business_id,
                col(BusinessMember.user_id) == profile.id,
            )
            if (await session.execute(existing_stmt)).scalars().first():
                raise AccessRuleError("User is already a member of this business", status=409)

            membership = BusinessMember(
                business_id=business_id, user_id=profile.id, role=role, granted_by=granted_by
            )
            session.add(membership)
            await session.commit()
            await session.refresh(membership)
            await session.refresh(profile)
        logger.info("member_added", business_id=business_id, user_id=profile.id, role=role)
        return _member_to_dict(membership, profile)

    async def remove_access(self, user_id: str, business_id: str) -> None:
        """Remove the caller's own membership in a business.

        Owners cannot leave their business, and the caller's current default
        business cannot be left.
        """
        async with AsyncSession(self._engine) as session:
            business = await session.get(Business, business_id)
            if business is None:
                raise AccessRuleError("Business not found", status=404)
            if business.owner_id == user_id:
                raise AccessRuleError("Business owners cannot remove their own access")

            profile = await session.get(Profile, user_id)
            if profile and profile.default_business_id == business_id:
                raise AccessRuleError(
                    "Cannot remove access to your current business. Switch businesses first."
                )

            stmt = select(BusinessMember).where(
                col(BusinessMember.business_id) == business_id,
                col(BusinessMember.user_id) == user_id,
            )
            membership = (await session.execute(stmt)).scalars().first()
            if membership is None:
                raise AccessRuleError("You are not a member of this business", status=404)
            await session.delete(membership)
            await session.commit()
        logger.info("business_access_removed", business_id=business_id, user_id=user_id)

    # -- identity provider sync ---------------------------------------------

    async def sync_clerk_user(self, clerk_user_id: str, email: str, full_name: str) -> Profile:
        """Upsert a profile for a Clerk user; new users get their own business."""
        async with AsyncSession(self._engine) as session:
            stmt = select(Profile).where(col(Profile.clerk_user_id) == clerk_user_id)
            profile = (await session.execute(stmt)).scalars().first()
            created = profile is None
            if profile is None:
                profile = Profile(clerk_user_id=clerk_user_id, email=email)
            profile.email = email.strip().lower() or profile.email
            profile.full_name = full_name or profile.full_name
            profile.updated_at = _utc_now()
            session.add(profile)
            await session.commit()
            await session.refresh(profile)

        if created:
            await self.create_business(
                profile.id, _default_business_name(profile.full_name, profile.email)
            )
            profile = await self.get_profile(profile.id) or profile
        logger.info("clerk_user_synced", clerk_user_id=clerk_user_id, created=created)
        return profile

    async def sync_clerk_organization(
        self, clerk_org_id: str, name: str, created_by: str | None
    ) -> Business | None:
        async with AsyncSession(self._engine) as session:
            stmt = select(Business).where(col(Business.clerk_org_id) == clerk_org_id)
            business = (await session.execute(stmt)).scalars().first()
            if business:
                business.name = name or business.name
                business.updated_at = _utc_now()
                session.add(business)
                await session.commit()
                await session.refresh(business)
                return business

            owner = None
            if created_by:
                owner_stmt = select(Profile).where(col(Profile.clerk_user_id) == created_by)
                owner = (await session.execute(owner_stmt)).scalars().first()
        if owner is None:
            logger.warning("org_sync_missing_owner", clerk_org_id=clerk_org_id)
            return None
        return await self.create_business(owner.id, name, clerk_org_id=clerk_org_id)

    async def sync_clerk_membership(
        self, clerk_org_id: str, clerk_user_id: str, role: str | None
    ) -> bool:
        """Upsert a membership. ``role=None`` removes it. Returns False if unresolvable."""
        async with AsyncSession(self._engine) as session:
            org_stmt = select(Business).where(col(Business.clerk_org_id) == clerk_org_id)
            business = (await session.execute(org_stmt)).scalars().first()
            user_stmt = select(Profile).where(col(Profile.clerk_user_id) == clerk_user_id)
            profile = (await session.execute(user_stmt)).scalars().first()
            if not business or not profile:
                logger.warning(
                    "membership_sync_missing_entity",
                    clerk_org_id=clerk_org_id,
                    clerk_user_id=clerk_user_id,
                    business_found=bool(business),
                    profile_found=bool(profile),
                )
                return False

            mem_stmt = select(BusinessMember).where(
                col(BusinessMember.business_id) == business.id,
                col(BusinessMember.user_id) == profile.id,
            )
            existing = (await session.execute(mem_stmt)).scalars().first()
            if role is None:
                if existing and business.owner_id != profile.id:
                    await session.delete(existing)
            elif existing:
                existing.role = role
                session.add(existing)
            else:
                session.add(
                    BusinessMember(business_id=business.id, user_id=profile.id, role=role)
                )
            await session.commit()
        logger.info(
            "membership_synced", clerk_org_id=clerk_org_id, clerk_user_id=clerk_user_id, role=role
        )
        return True

