"""QR join-session lifecycle: single active session, lazy expiry, revocation."""

import pytest
from sqlalchemy import func, select

from conftest import at, make_group
from quizroster.errors import Expired, Gone, NotFound
from quizroster.models import GroupJoinSession
from quizroster.models.join_session import SESSION_ACTIVE, SESSION_EXPIRED, SESSION_REVOKED
from quizroster.services import join_sessions


async def _active_count(session, group_id):
    result = await session.execute(
        select(func.count())
        .select_from(GroupJoinSession)
        .where(GroupJoinSession.group_id == group_id, GroupJoinSession.status == SESSION_ACTIVE)
    )
    return result.scalar_one()


class TestGetOrCreate:
    async def test_first_call_mints_second_reuses(self, session, group, mentor):
        first, created = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(0)
        )
        second, created_again = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(60)
        )
        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert first.token == second.token
        assert len(first.token) == 32
        assert await _active_count(session, group.id) == 1

    async def test_expired_session_replaced(self, session, group, mentor):
        first, _ = await join_sessions.get_or_create_active(session, group.id, mentor.id, now=at(0))
        second, created = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(1800)
        )
        assert created is True
        assert second.id != first.id
        await session.refresh(first)
        assert first.status == SESSION_EXPIRED
        assert await _active_count(session, group.id) == 1

    async def test_lost_insert_race_returns_winner(self, session, group, mentor, monkeypatch):
        winner, _ = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(0)
        )

        real_find_active = join_sessions._find_active
        calls = {"n": 0}

        async def blind_first_lookup(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_find_active(*args, **kwargs)

        monkeypatch.setattr(join_sessions, "_find_active", blind_first_lookup)
        loser, created = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(10)
        )
        assert created is False
        assert loser.id == winner.id
        assert await _active_count(session, group.id) == 1

    async def test_sessions_scoped_per_group(self, session, group, mentor):
        other = await make_group(session, mentor, name="Chemistry")
        first, _ = await join_sessions.get_or_create_active(session, group.id, mentor.id, now=at(0))
        second, created = await join_sessions.get_or_create_active(
            session, other.id, mentor.id, now=at(0)
        )
        assert created is True
        assert first.id != second.id


class TestGetActive:
    async def test_poll_never_mints(self, session, group, mentor):
        assert await join_sessions.get_active(session, group.id, mentor.id, now=at(0)) is None
        assert await _active_count(session, group.id) == 0

    async def test_poll_expires_stale_session(self, session, group, mentor):
        await join_sessions.get_or_create_active(session, group.id, mentor.id, now=at(0))
        assert await join_sessions.get_active(session, group.id, mentor.id, now=at(1799)) is not None
        assert await join_sessions.get_active(session, group.id, mentor.id, now=at(1800)) is None


class TestRedeem:
    async def test_redeem_within_ttl(self, session, group, mentor):
        join_session, _ = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(0)
        )
        redemption = await join_sessions.redeem(session, join_session.token, now=at(1799))
        assert redemption.group_id == group.id
        assert redemption.mentor_id == mentor.id

    async def test_redeem_after_ttl_flips_status(self, session, sessionmaker, group, mentor):
        join_session, _ = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(0)
        )
        with pytest.raises(Expired):
            await join_sessions.redeem(session, join_session.token, now=at(1801))

        async with sessionmaker() as fresh:
            stored = await fresh.get(GroupJoinSession, join_session.id)
            assert stored.status == SESSION_EXPIRED

        with pytest.raises(Gone):
            await join_sessions.redeem(session, join_session.token, now=at(1802))

    async def test_unknown_token(self, session):
        with pytest.raises(NotFound):
            await join_sessions.redeem(session, "0" * 32, now=at(0))


class TestRevoke:
    async def test_revoked_session_cannot_be_redeemed(self, session, group, mentor):
        join_session, _ = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(0)
        )
        await join_sessions.revoke(session, join_session.id, group_id=group.id, mentor_id=mentor.id)
        with pytest.raises(Gone) as exc_info:
            await join_sessions.redeem(session, join_session.token, now=at(1))
        assert not isinstance(exc_info.value, Expired)

    async def test_revoke_is_terminal_and_repeatable(self, session, group, mentor):
        join_session, _ = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(0)
        )
        await join_sessions.revoke(session, join_session.id, group_id=group.id, mentor_id=mentor.id)
        again = await join_sessions.revoke(
            session, join_session.id, group_id=group.id, mentor_id=mentor.id
        )
        assert again.status == SESSION_REVOKED

        fresh, created = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(5)
        )
        assert created is True
        assert fresh.id != join_session.id

    async def test_revoke_unknown_session(self, session, group, mentor):
        with pytest.raises(NotFound):
            await join_sessions.revoke(session, "missing", group_id=group.id, mentor_id=mentor.id)


class TestSessionView:
    async def test_ttl_and_join_url(self, session, group, mentor):
        join_session, _ = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(0)
        )
        view = join_sessions.session_view(
            join_session, base_url="https://quiz.example/", now=at(600.5)
        )
        assert view["ttl_seconds"] == 1199
        assert view["join_url"] == f"https://quiz.example/join/{join_session.token}"

    async def test_ttl_floors_at_zero(self, session, group, mentor):
        join_session, _ = await join_sessions.get_or_create_active(
            session, group.id, mentor.id, now=at(0)
        )
        view = join_sessions.session_view(join_session, base_url="http://x", now=at(4000))
        assert view["ttl_seconds"] == 0
