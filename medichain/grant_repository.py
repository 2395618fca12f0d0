"""Repository utilities for persisting QR access grants and their view audit trail."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .db_models import AccessGrant, AccessGrantView


class AccessGrantRepository:
    """Persistence helpers for grant issuance, lookup, view auditing, and expiry."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_grant(
        self,
        owner_id: str,
        token: str,
        access_level: str,
        issued_at: datetime,
        expires_at: datetime,
        commit: bool = True,
    ) -> AccessGrant:
        """
        Persist a newly issued grant.

        Args:
            owner_id: Patient who owns the disclosed data.
            token: Opaque bearer token embedded in the QR link.
            access_level: Normalized tier name.
            issued_at: Creation timestamp.
            expires_at: Absolute expiry timestamp.
            commit: Whether to commit immediately (default) or defer to caller.
        """
        grant = AccessGrant(
            owner_id=owner_id,
            token=token,
            access_level=access_level,
            issued_at=issued_at,
            expires_at=expires_at,
            view_count=0,
        )
        self.db.add(grant)
        if commit:
            await self.db.commit()
            await self.db.refresh(grant)
        else:
            await self.db.flush()
        return grant

    async def token_exists(self, token: str) -> bool:
        """Check whether a token has already been issued."""
        stmt = select(AccessGrant.id).where(AccessGrant.token == token)
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def get_by_token(self, token: str) -> Optional[AccessGrant]:
        """Fetch a grant by token regardless of expiry."""
        stmt = select(AccessGrant).where(AccessGrant.token == token)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_owner(self, grant_id: str, owner_id: str) -> Optional[AccessGrant]:
        """Fetch a grant by id, scoped to its owner."""
        stmt = select(AccessGrant).where(
            AccessGrant.id == grant_id,
            AccessGrant.owner_id == owner_id,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active_for_owner(self, owner_id: str, now: datetime) -> List[AccessGrant]:
        """List unexpired grants for an owner, newest issued first."""
        stmt = (
            select(AccessGrant)
            .where(AccessGrant.owner_id == owner_id, AccessGrant.expires_at > now)
            .order_by(AccessGrant.issued_at.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def record_view(
        self,
        grant: AccessGrant,
        viewed_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AccessGrant:
        """
        Append an audit entry and bump the grant's view counter.

        The counter is incremented in SQL so concurrent viewers do not
        overwrite each other's increments.
        """
        self.db.add(
            AccessGrantView(
                grant_id=grant.id,
                ip_address=ip_address,
                user_agent=user_agent,
                viewed_at=viewed_at,
            )
        )
        stmt = (
            update(AccessGrant)
            .where(AccessGrant.id == grant.id)
            .values(view_count=AccessGrant.view_count + 1, last_viewed_at=viewed_at)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        await self.db.commit()
        await self.db.refresh(grant)
        return grant

    async def count_views(self, grant_id: str) -> int:
        """Number of audit entries recorded for a grant."""
        stmt = select(func.count(AccessGrantView.id)).where(AccessGrantView.grant_id == grant_id)
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def expire_grant(self, grant: AccessGrant, expires_at: datetime, commit: bool = True) -> AccessGrant:
        """Force a grant's expiry to the given (past) timestamp."""
        grant.expires_at = expires_at
        if commit:
            await self.db.commit()
            await self.db.refresh(grant)
        else:
            await self.db.flush()
        return grant
