"""
Tests for identity provider lifecycle events (forwarded webhooks).
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from quillhaven.models.principal import Principal, PrincipalStatus
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.models.session import LoginSession
from quillhaven.services.lifecycle import LifecycleEventHandler
from quillhaven.services.policy import SecurityPolicyEngine, SessionPolicy
from quillhaven.services.profile_sync import ProfileSyncEngine

USER_DATA = {
    "id": "user_7",
    "first_name": "Lina",
    "last_name": "Poe",
    "primary_email_address_id": "idn_1",
    "email_addresses": [
        {"id": "idn_1", "email_address": "lina@example.com", "verification": {"status": "verified"}},
    ],
    "public_metadata": {},
    "private_metadata": {},
    "updated_at": 1772366400000,
}


@pytest.fixture
def handler(db_session, events, registry, idp, clock):
    policy = SecurityPolicyEngine(registry, events, policy=SessionPolicy(max_concurrent_sessions=2), clock=clock)
    sync = ProfileSyncEngine(db_session, idp, events, clock)
    return LifecycleEventHandler(db_session, events, registry, policy, sync, clock)


class TestUserEvents:
    async def test_user_created(self, db_session, handler, events):
        assert await handler.handle("user.created", USER_DATA) is True

        p = await db_session.get(Principal, "user_7")
        assert p.email == "lina@example.com"
        assert p.email_verified is True
        assert p.preferences is not None
        kinds = [e.kind for e in await events.list_for_principal("user_7")]
        assert SecurityEventKind.USER_CREATED in kinds

    async def test_user_updated_applies_changes(self, db_session, handler):
        await handler.handle("user.created", USER_DATA)
        await handler.handle("user.updated", {**USER_DATA, "last_name": "Poet"})
        assert (await db_session.get(Principal, "user_7")).last_name == "Poet"

    async def test_user_deleted_anonymizes_and_ends_sessions(self, db_session, handler, events, make_session, principal):
        await make_session("user_1", "sess_a")
        await make_session("user_1", "sess_b")

        await handler.handle("user.deleted", {"id": "user_1", "deleted": True})

        p = await db_session.get(Principal, "user_1")
        assert p.status is PrincipalStatus.deleted
        assert p.email.startswith("deleted_") and p.email.endswith("@deleted.local")
        assert (p.first_name, p.last_name) == ("Deleted", "User")

        rows = (await db_session.execute(select(LoginSession))).scalars().all()
        assert all(not s.is_active for s in rows)
        assert {s.end_reason for s in rows} == {"security_revocation"}

        deleted = await events.list_for_principal("user_1", kinds=[SecurityEventKind.USER_DELETED])
        assert deleted[0].details == {"sessions_ended": 2}

    async def test_user_deleted_unknown_is_ignored(self, handler):
        assert await handler.handle("user.deleted", {"id": "nobody"}) is True


class TestSessionEvents:
    async def test_session_created_registers_syncs_and_enforces(self, db_session, handler, idp, make_session, principal, clock):
        idp.add_user("user_1", first_name="Ana", last_name="Writer")
        await make_session("user_1", "old_1", idle=timedelta(hours=3))
        await make_session("user_1", "old_2", idle=timedelta(hours=2))

        await handler.handle("session.created", {
            "id": "sess_new",
            "user_id": "user_1",
            "ip_address": "10.0.0.1",
            "user_agent": "Mozilla/5.0",
        })

        rows = {s.token: s for s in (await db_session.execute(select(LoginSession))).scalars()}
        assert rows["sess_new"].is_active
        # cap 2: la menos reciente se termina
        assert rows["old_1"].end_reason == "policy_violation_concurrent_limit"
        assert ("get_user", "user_1") in idp.calls

    async def test_duplicate_session_created_is_tolerated(self, db_session, handler, idp, principal):
        idp.add_user("user_1")
        data = {"id": "sess_x", "user_id": "user_1"}
        await handler.handle("session.created", data)
        await handler.handle("session.created", data)

        rows = (await db_session.execute(select(LoginSession))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.parametrize("event_type,reason", [
        ("session.ended", "user_logout"),
        ("session.removed", "manual_removal"),
        ("session.revoked", "security_revocation"),
    ])
    async def test_session_end_events(self, db_session, handler, make_session, event_type, reason):
        await make_session("user_1", "sess_a")
        await handler.handle(event_type, {"id": "sess_a", "user_id": "user_1"})

        row = (await db_session.execute(select(LoginSession))).scalar_one()
        assert row.end_reason == reason

    async def test_unknown_event_ignored(self, handler):
        assert await handler.handle("organization.created", {"id": "org_1"}) is False
