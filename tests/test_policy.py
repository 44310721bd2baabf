"""
Tests for session policy enforcement.

These tests prove:
- The concurrent-session cap ends the least recently active sessions
- Idle sessions are ended as stale
- Informational rules never revoke
- Re-running enforcement immediately revokes nothing
"""
from datetime import timedelta

from sqlalchemy import select

from quillhaven.core.config import Settings
from quillhaven.models.security_event import SecurityEvent, SecurityEventKind
from quillhaven.models.session import LoginSession
from quillhaven.services.policy import SecurityPolicyEngine, SessionPolicy


def _engine(registry, events, clock, **policy):
    return SecurityPolicyEngine(registry, events, policy=SessionPolicy(**policy), clock=clock)


class TestSessionPolicy:
    def test_from_settings(self):
        cfg = Settings(MAX_CONCURRENT_SESSIONS=3, INACTIVE_SESSION_TIMEOUT_DAYS=7, REQUIRE_REAUTH_HOURS=24)
        p = SessionPolicy.from_settings(cfg)
        assert (p.max_concurrent_sessions, p.inactive_session_timeout_days, p.require_reauthentication_hours) == (3, 7, 24)

    def test_bot_markers_case_insensitive(self):
        p = SessionPolicy()
        assert p.looks_like_bot("Googlebot/2.1")
        assert p.looks_like_bot("Some CRAWLER")
        assert not p.looks_like_bot("Mozilla/5.0")
        assert not p.looks_like_bot(None)


class TestEnforcement:
    async def test_cap_ends_least_recently_active(self, db_session, registry, events, make_session, clock):
        """6 sessions with cap 5: exactly the oldest one is ended."""
        for i in range(6):
            await make_session("user_1", f"sess_{i}", idle=timedelta(minutes=60 - i))

        report = await _engine(registry, events, clock, max_concurrent_sessions=5).enforce("user_1")

        assert report.revoked_sessions == 1
        assert report.total_sessions == 6
        assert report.remaining_sessions == 5
        assert report.actions_performed is True
        assert "too_many_sessions" in report.violations

        ended = (await db_session.execute(
            select(LoginSession).where(LoginSession.is_active.is_(False))
        )).scalars().all()
        assert [s.token for s in ended] == ["sess_0"]
        assert ended[0].end_reason == "policy_violation_concurrent_limit"

    async def test_enforcement_is_idempotent(self, registry, events, make_session, clock):
        for i in range(7):
            await make_session("user_1", f"sess_{i}", idle=timedelta(minutes=60 - i))
        engine = _engine(registry, events, clock, max_concurrent_sessions=5)

        first = await engine.enforce("user_1")
        second = await engine.enforce("user_1")

        assert first.revoked_sessions == 2
        assert second.revoked_sessions == 0
        assert second.violations == []
        assert second.actions_performed is False

    async def test_stale_sessions_ended(self, db_session, registry, events, make_session, clock):
        await make_session("user_1", "recent")
        await make_session("user_1", "stale", idle=timedelta(days=31), expires_in=timedelta(days=60))

        report = await _engine(registry, events, clock).enforce("user_1")

        assert report.violations == ["stale_sessions"]
        assert report.revoked_sessions == 1
        row = (await db_session.execute(
            select(LoginSession).where(LoginSession.token == "stale")
        )).scalar_one()
        assert row.end_reason == "policy_violation_stale"

    async def test_informational_rules_do_not_revoke(self, registry, events, make_session, clock):
        for i, ip in enumerate(["1.1.1.1", "2.2.2.2", "3.3.3.3", "4.4.4.4"]):
            await make_session("user_1", f"sess_{i}", ip_address=ip)
        await make_session("user_1", "bot", user_agent="Googlebot/2.1", ip_address="1.1.1.1")
        await make_session("user_1", "old", age=timedelta(days=8))

        report = await _engine(registry, events, clock, max_concurrent_sessions=10).enforce("user_1")

        assert "multiple_locations" in report.violations
        assert "suspicious_user_agents" in report.violations
        assert "requires_reauthentication" in report.violations
        assert report.revoked_sessions == 0
        assert len(await registry.list_active("user_1")) == 6

    async def test_informational_violations_repeat_on_rerun(self, registry, events, make_session, clock):
        await make_session("user_1", "old", age=timedelta(days=8))
        engine = _engine(registry, events, clock)

        first = await engine.enforce("user_1")
        second = await engine.enforce("user_1")

        assert first.violations == second.violations == ["requires_reauthentication"]
        assert second.revoked_sessions == 0
        assert [s.token for s in await registry.list_active("user_1")] == ["old"]

    async def test_aggregate_event_logged(self, db_session, registry, events, make_session, clock):
        for i in range(6):
            await make_session("user_1", f"sess_{i}", idle=timedelta(minutes=60 - i))
        await _engine(registry, events, clock, max_concurrent_sessions=5).enforce("user_1")

        ev = (await db_session.execute(
            select(SecurityEvent).where(SecurityEvent.kind == SecurityEventKind.SECURITY_POLICY_ENFORCED)
        )).scalar_one()
        assert ev.details["sessions_revoked"] == 1
        assert ev.details["remaining_sessions"] == 5
        assert ev.details["violations"] == ["too_many_sessions"]

        ended = await events.list_for_principal("user_1", kinds=[SecurityEventKind.SESSION_ENDED])
        assert len(ended) == 1

    async def test_clean_account_reports_nothing(self, db_session, registry, events, make_session, clock):
        await make_session("user_1", "only")
        report = await _engine(registry, events, clock).enforce("user_1")
        assert report.violations == []
        assert report.total_sessions == 1
        kinds = [e.kind for e in await events.list_for_principal("user_1")]
        assert SecurityEventKind.SECURITY_POLICY_ENFORCED not in kinds
