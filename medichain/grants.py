"""Issuance, verification, revocation, and listing of QR access grants."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .access_levels import AccessLevel, normalize_level
from .db_models import AccessGrant, utcnow
from .errors import GrantExpired, GrantNotFound, InvalidDuration, InvalidTokenFormat, Unauthenticated
from .grant_repository import AccessGrantRepository
from .logging_config import token_hint
from .tokens import generate_token, sanitize_token

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

REVOKE_BACKDATE = timedelta(minutes=1)
MAX_USER_AGENT_LENGTH = 512


@dataclass
class ViewerContext:
    """Request metadata captured in the audit trail on each view."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def cleaned(self) -> "ViewerContext":
        ip = self.ip_address.strip()[:45] if self.ip_address else None
        agent = None
        if self.user_agent:
            agent = "".join(ch for ch in self.user_agent if ch.isprintable())[:MAX_USER_AGENT_LENGTH]
        return ViewerContext(ip_address=ip or None, user_agent=agent or None)


@dataclass
class IssuedGrant:
    """A freshly persisted grant together with its shareable link."""
    grant: AccessGrant
    share_url: str


@dataclass
class VerificationResult:
    """Outcome of a successful verification; the only input DataProjector accepts."""
    grant_id: str
    owner_id: str
    access_level: AccessLevel
    expires_at: datetime
    view_count: int


class GrantLifecycleManager:
    """
    Orchestrates the grant state machine: Active -> Expired.

    All configuration (base URL, clock, token source, duration bounds) is
    passed in so the manager can run against a fake clock in tests.
    """

    def __init__(
        self,
        repository: AccessGrantRepository,
        base_url: str,
        clock: Clock = utcnow,
        token_generator: Callable[[], str] = generate_token,
        min_duration_hours: float = 0.083,
        max_duration_hours: float = 24.0,
        collision_retries: int = 3,
    ):
        self.repository = repository
        self.base_url = base_url.rstrip("/")
        self.clock = clock
        self.token_generator = token_generator
        self.min_duration_hours = min_duration_hours
        self.max_duration_hours = max_duration_hours
        self.collision_retries = collision_retries

    def share_url(self, grant: AccessGrant) -> str:
        """Public viewer link for a grant."""
        return f"{self.base_url}/view/{grant.access_level}/{grant.token}"

    def _validate_duration(self, duration_hours) -> float:
        if isinstance(duration_hours, bool) or not isinstance(duration_hours, (int, float)):
            raise InvalidDuration(details={"reason": "not_numeric"})
        duration = float(duration_hours)
        if not math.isfinite(duration):
            raise InvalidDuration(details={"reason": "not_finite"})
        if duration < self.min_duration_hours or duration > self.max_duration_hours:
            raise InvalidDuration(details={"duration_hours": duration})
        return duration

    async def _mint_unique_token(self) -> str:
        for _ in range(self.collision_retries + 1):
            token = self.token_generator()
            if not await self.repository.token_exists(token):
                return token
            logger.warning("Token collision detected, regenerating")
        raise RuntimeError("Unable to mint a unique access token")

    async def issue(self, owner_id: str, access_level, duration_hours) -> IssuedGrant:
        """
        Issue a new grant for the authenticated owner.

        Args:
            owner_id: Identity supplied by the session layer.
            access_level: emergency, basic or full (case-insensitive).
            duration_hours: Lifetime in hours, within the configured bounds.

        Raises:
            Unauthenticated: If no owner identity was supplied.
            InvalidAccessLevel: If the level is unknown.
            InvalidDuration: If the duration is outside the allowed window.
        """
        if not owner_id:
            raise Unauthenticated()
        level = normalize_level(access_level)
        duration = self._validate_duration(duration_hours)

        token = await self._mint_unique_token()
        issued_at = self.clock()
        grant = await self.repository.create_grant(
            owner_id=owner_id,
            token=token,
            access_level=level.value,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(hours=duration),
        )

        logger.info(
            "QR grant %s issued for owner %s with access level %s (%.3fh)",
            grant.id, owner_id, level.value, duration,
        )
        return IssuedGrant(grant=grant, share_url=self.share_url(grant))

    async def verify(self, raw_token: Optional[str], viewer: Optional[ViewerContext] = None) -> VerificationResult:
        """
        Validate a presented token and record the view.

        Expired grants are rejected before any audit write.

        Raises:
            InvalidTokenFormat: If nothing survives sanitization.
            GrantNotFound: If no grant carries the token.
            GrantExpired: If the grant's expiry has passed.
        """
        token = sanitize_token(raw_token)
        if not token:
            raise InvalidTokenFormat()

        grant = await self.repository.get_by_token(token)
        if grant is None:
            logger.warning("Invalid QR token access attempt: %s", token_hint(token))
            raise GrantNotFound()

        now = self.clock()
        if grant.is_expired(now):
            logger.warning(
                "Expired QR token access attempt: %s expired at %s",
                token_hint(token), grant.expires_at.isoformat(),
            )
            raise GrantExpired()

        viewer = (viewer or ViewerContext()).cleaned()
        grant = await self.repository.record_view(
            grant,
            viewed_at=now,
            ip_address=viewer.ip_address,
            user_agent=viewer.user_agent,
        )

        logger.info(
            "QR token verified for owner %s, access level %s (views=%s)",
            grant.owner_id, grant.access_level, grant.view_count,
        )
        return VerificationResult(
            grant_id=grant.id,
            owner_id=grant.owner_id,
            access_level=AccessLevel(grant.access_level),
            expires_at=grant.expires_at,
            view_count=grant.view_count,
        )

    async def revoke(self, grant_id: str, owner_id: str) -> None:
        """
        Revoke a grant by moving its expiry one minute into the past.

        Revoking an already expired grant is a silent no-op.

        Raises:
            Unauthenticated: If no owner identity was supplied.
            GrantNotFound: If the grant does not exist or belongs to someone else.
        """
        if not owner_id:
            raise Unauthenticated()

        grant = await self.repository.get_for_owner(grant_id, owner_id)
        if grant is None:
            raise GrantNotFound("QR token not found")

        now = self.clock()
        if grant.is_expired(now):
            logger.info("QR grant %s already expired, revoke is a no-op", grant_id)
            return

        await self.repository.expire_grant(grant, now - REVOKE_BACKDATE)
        logger.info("QR grant %s revoked by owner %s", grant_id, owner_id)

    async def list_active(self, owner_id: str) -> List[AccessGrant]:
        """Unexpired grants owned by the caller, newest issued first."""
        if not owner_id:
            raise Unauthenticated()
        return await self.repository.list_active_for_owner(owner_id, self.clock())
