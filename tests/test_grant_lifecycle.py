"""
Tests for the QR grant lifecycle: issuance, verification, revocation, listing.

Tests cover:
- Duration and access level validation
- Verify round-trip before and after expiry (fake clock)
- Audit side effects of verification
- Revocation ownership and idempotence
- Token collision handling
"""
import asyncio
from datetime import datetime, timedelta

import pytest
pytest.importorskip("aiosqlite")
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from medichain.access_levels import AccessLevel
from medichain.database import Base
from medichain.errors import (
    GrantExpired,
    GrantNotFound,
    InvalidAccessLevel,
    InvalidDuration,
    InvalidTokenFormat,
    Unauthenticated,
)
from medichain.grant_repository import AccessGrantRepository
from medichain.grants import GrantLifecycleManager, ViewerContext

START = datetime(2026, 3, 1, 8, 0, 0)


class FakeClock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def _build_session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    return engine, session_maker()


def _run_with_manager(scenario, **manager_kwargs):
    async def _run():
        engine, session = await _build_session()
        clock = FakeClock()
        manager = GrantLifecycleManager(
            repository=AccessGrantRepository(session),
            base_url="https://medichain.example/",
            clock=clock,
            **manager_kwargs,
        )
        try:
            await scenario(manager, clock, session)
        finally:
            await session.close()
            await engine.dispose()

    asyncio.run(_run())


# ============================================================================
# Issuance
# ============================================================================


def test_issue_persists_grant_and_builds_share_url():
    async def scenario(manager, clock, _session):
        issued = await manager.issue("patient-1", "Emergency", 1)
        grant = issued.grant

        assert grant.owner_id == "patient-1"
        assert grant.access_level == "emergency"
        assert grant.issued_at == START
        assert grant.expires_at == START + timedelta(hours=1)
        assert issued.share_url == f"https://medichain.example/view/emergency/{grant.token}"

    _run_with_manager(scenario)


@pytest.mark.parametrize("duration", [0, 0.05, 0.08, -1, 24.0001, 25, 1000, float("nan"), float("inf"), "2", None, True])
def test_issue_rejects_out_of_range_durations(duration):
    async def scenario(manager, _clock, _session):
        with pytest.raises(InvalidDuration):
            await manager.issue("patient-1", "basic", duration)

    _run_with_manager(scenario)


@pytest.mark.parametrize("duration", [0.083, 5 / 60, 1, 24])
def test_issue_accepts_boundary_durations(duration):
    async def scenario(manager, _clock, _session):
        issued = await manager.issue("patient-1", "basic", duration)
        assert issued.grant.expires_at > START

    _run_with_manager(scenario)


@pytest.mark.parametrize("level", ["", "admin", "fullaccess", "emergency ; drop", None])
def test_issue_rejects_unknown_access_levels(level):
    async def scenario(manager, _clock, _session):
        with pytest.raises(InvalidAccessLevel):
            await manager.issue("patient-1", level, 1)

    _run_with_manager(scenario)


def test_issue_requires_owner():
    async def scenario(manager, _clock, _session):
        with pytest.raises(Unauthenticated):
            await manager.issue("", "basic", 1)

    _run_with_manager(scenario)


def test_issue_regenerates_on_token_collision():
    tokens = iter(["dup-token", "dup-token", "fresh-token"])

    async def scenario(manager, _clock, _session):
        first = await manager.issue("patient-1", "basic", 1)
        second = await manager.issue("patient-1", "basic", 1)
        assert first.grant.token == "dup-token"
        assert second.grant.token == "fresh-token"

    _run_with_manager(scenario, token_generator=lambda: next(tokens))


def test_issue_gives_up_after_repeated_collisions():
    async def scenario(manager, _clock, _session):
        await manager.issue("patient-1", "basic", 1)
        with pytest.raises(RuntimeError):
            await manager.issue("patient-1", "basic", 1)

    _run_with_manager(scenario, token_generator=lambda: "always-the-same", collision_retries=2)


# ============================================================================
# Verification
# ============================================================================


def test_verify_round_trip_then_expired():
    async def scenario(manager, clock, _session):
        issued = await manager.issue("owner-42", "emergency", 1)

        result = await manager.verify(issued.grant.token)
        assert result.owner_id == "owner-42"
        assert result.access_level is AccessLevel.EMERGENCY
        assert result.view_count == 1

        clock.advance(hours=1)
        with pytest.raises(GrantExpired):
            await manager.verify(issued.grant.token)

    _run_with_manager(scenario)


def test_five_minute_grant_expires_after_six_minutes():
    async def scenario(manager, clock, _session):
        issued = await manager.issue("patient-1", "basic", 0.083)

        result = await manager.verify(issued.grant.token)
        assert result.access_level is AccessLevel.BASIC

        clock.advance(minutes=6)
        with pytest.raises(GrantExpired):
            await manager.verify(issued.grant.token)

    _run_with_manager(scenario)


def test_verify_sanitizes_presented_token():
    async def scenario(manager, _clock, _session):
        issued = await manager.issue("patient-1", "full", 2)
        result = await manager.verify(f"  {issued.grant.token}\n")
        assert result.grant_id == issued.grant.id

    _run_with_manager(scenario)


@pytest.mark.parametrize("raw", [None, "", "   ", "!!!", "<script>"])
def test_verify_rejects_empty_tokens(raw):
    async def scenario(manager, _clock, _session):
        if raw == "<script>":
            with pytest.raises(GrantNotFound):
                await manager.verify(raw)
        else:
            with pytest.raises(InvalidTokenFormat):
                await manager.verify(raw)

    _run_with_manager(scenario)


def test_verify_unknown_token_is_not_found():
    async def scenario(manager, _clock, _session):
        with pytest.raises(GrantNotFound):
            await manager.verify("does-not-exist")

    _run_with_manager(scenario)


def test_verify_records_audit_entries():
    async def scenario(manager, clock, _session):
        issued = await manager.issue("patient-1", "basic", 2)

        await manager.verify(issued.grant.token, ViewerContext("203.0.113.7", "Scanner/1.0"))
        clock.advance(minutes=10)
        result = await manager.verify(issued.grant.token, ViewerContext("203.0.113.8", "Bad\x00Agent\n"))

        assert result.view_count == 2
        repo = manager.repository
        grant = await repo.get_by_token(issued.grant.token)
        assert grant.last_viewed_at == START + timedelta(minutes=10)
        assert await repo.count_views(grant.id) == 2

        await repo.db.refresh(grant, attribute_names=["views"])
        assert grant.views[-1].ip_address == "203.0.113.8"
        assert grant.views[-1].user_agent == "BadAgent"

    _run_with_manager(scenario)


def test_expired_verification_does_not_touch_audit():
    async def scenario(manager, clock, _session):
        issued = await manager.issue("patient-1", "basic", 1)
        clock.advance(hours=2)

        with pytest.raises(GrantExpired):
            await manager.verify(issued.grant.token, ViewerContext("198.51.100.1", "late"))

        grant = await manager.repository.get_by_token(issued.grant.token)
        assert grant.view_count == 0
        assert grant.last_viewed_at is None
        assert await manager.repository.count_views(grant.id) == 0

    _run_with_manager(scenario)


def test_concurrent_verifications_each_succeed():
    async def scenario(manager, _clock, _session):
        issued = await manager.issue("patient-1", "emergency", 1)
        first = await manager.verify(issued.grant.token)
        second = await manager.verify(issued.grant.token)
        assert {first.view_count, second.view_count} == {1, 2}

    _run_with_manager(scenario)


# ============================================================================
# Revocation and listing
# ============================================================================


def test_revoke_is_idempotent_and_blocks_verification():
    async def scenario(manager, _clock, _session):
        issued = await manager.issue("patient-1", "full", 4)

        await manager.revoke(issued.grant.id, "patient-1")
        await manager.revoke(issued.grant.id, "patient-1")

        grant = await manager.repository.get_by_token(issued.grant.token)
        assert grant.expires_at == START - timedelta(minutes=1)

        with pytest.raises(GrantExpired):
            await manager.verify(issued.grant.token)

    _run_with_manager(scenario)


def test_revoke_requires_ownership():
    async def scenario(manager, _clock, _session):
        issued = await manager.issue("patient-1", "full", 4)

        with pytest.raises(GrantNotFound):
            await manager.revoke(issued.grant.id, "patient-2")
        with pytest.raises(GrantNotFound):
            await manager.revoke("missing-id", "patient-1")

        result = await manager.verify(issued.grant.token)
        assert result.owner_id == "patient-1"

    _run_with_manager(scenario)


def test_list_active_excludes_expired_and_revoked():
    async def scenario(manager, clock, _session):
        short = await manager.issue("patient-1", "basic", 0.5)
        clock.advance(minutes=1)
        revoked = await manager.issue("patient-1", "full", 3)
        clock.advance(minutes=1)
        newest = await manager.issue("patient-1", "emergency", 3)
        await manager.issue("patient-2", "emergency", 3)

        await manager.revoke(revoked.grant.id, "patient-1")
        active = await manager.list_active("patient-1")
        assert [grant.id for grant in active] == [newest.grant.id, short.grant.id]

        clock.advance(hours=1)
        active = await manager.list_active("patient-1")
        assert [grant.id for grant in active] == [newest.grant.id]
        assert manager.share_url(active[0]).startswith("https://medichain.example/view/emergency/")

    _run_with_manager(scenario)
