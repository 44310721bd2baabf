"""
Tests for the two-factor service.

These tests prove:
- Enabling returns the secret and plaintext codes exactly once
- Re-enabling is refused without touching the existing secret or codes
- A provider failure leaves no local state behind
- TOTP codes cannot be replayed
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from quillhaven.core.errors import ExternalServiceError, ValidationError
from quillhaven.models.backup_code import BackupCode
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.models.totp_secret import TotpSecret
from quillhaven.services import totp
from quillhaven.services.backup_codes import BackupCodeManager
from quillhaven.services.two_factor import TwoFactorService


@pytest.fixture
def service(db_session, idp, events, clock):
    return TwoFactorService(db_session, idp, events, clock=clock)


async def _kinds(events):
    return [e.kind for e in await events.list_for_principal("user_1", limit=100)]


class TestEnable:
    async def test_enable(self, db_session, service, idp, events, principal):
        setup = await service.enable("user_1")

        assert setup.success is True
        assert len(setup.secret) == 32
        assert len(setup.backup_codes) == 10
        assert setup.provisioning_uri.startswith("otpauth://totp/QuillHaven:user_1@example.com?")
        assert setup.qr_code_png
        assert principal.two_factor_enabled is True
        assert idp.users["user_1"].public_metadata["two_factor_enabled"] is True
        assert await totp.TotpSecretStore(db_session).get("user_1") == setup.secret
        assert SecurityEventKind.TWO_FACTOR_ENABLED in await _kinds(events)

    async def test_reenable_guard(self, db_session, service, principal):
        """A second enable is refused and changes nothing."""
        first = await service.enable("user_1")
        hashes_before = set((await db_session.execute(select(BackupCode.code_hash))).scalars())

        again = await service.enable("user_1")

        assert again.success is False
        assert "already enabled" in again.message
        assert again.secret is None
        assert again.backup_codes == []
        assert await totp.TotpSecretStore(db_session).get("user_1") == first.secret
        assert set((await db_session.execute(select(BackupCode.code_hash))).scalars()) == hashes_before

    async def test_provider_failure_leaves_nothing(self, db_session, service, idp, events, principal):
        idp.fail = True
        setup = await service.enable("user_1")

        assert setup.success is False
        assert principal.two_factor_enabled is False
        assert (await db_session.execute(select(TotpSecret))).first() is None
        assert (await db_session.execute(select(BackupCode))).first() is None
        assert SecurityEventKind.TWO_FACTOR_ENABLE_FAILED in await _kinds(events)


class TestVerify:
    async def test_totp_code_accepted_once(self, service, events, clock, principal):
        setup = await service.enable("user_1")
        code = totp.code_at(setup.secret, clock())

        ok = await service.verify("user_1", code)
        replay = await service.verify("user_1", code)

        assert ok.success is True
        assert ok.used_backup_code is False
        assert replay.success is False
        kinds = await _kinds(events)
        assert SecurityEventKind.TWO_FACTOR_VERIFICATION_SUCCESS in kinds
        assert SecurityEventKind.TWO_FACTOR_VERIFICATION_FAILED in kinds

    async def test_next_step_accepted_after_previous(self, service, clock, principal):
        setup = await service.enable("user_1")
        assert (await service.verify("user_1", totp.code_at(setup.secret, clock()))).success
        clock.advance(seconds=30)
        assert (await service.verify("user_1", totp.code_at(setup.secret, clock()))).success

    async def test_code_from_an_hour_ago_rejected(self, service, clock, principal):
        setup = await service.enable("user_1")
        stale = totp.code_at(setup.secret, clock() - timedelta(hours=1))
        result = await service.verify("user_1", stale)
        assert result.success is False
        assert result.error == "invalid_code"

    async def test_backup_code(self, service, principal):
        setup = await service.enable("user_1")
        result = await service.verify("user_1", setup.backup_codes[0], "backup_code")
        assert result.success is True
        assert result.used_backup_code is True
        again = await service.verify("user_1", setup.backup_codes[0], "backup_code")
        assert again.success is False

    async def test_not_configured_is_explicit_failure(self, service, events, principal):
        result = await service.verify("user_1", "123456")
        assert result.success is False
        assert result.error == "not_configured"
        assert "not configured" in result.message

    async def test_failed_attempt_logs_partial_code_only(self, service, events, principal):
        await service.enable("user_1")
        await service.verify("user_1", "12AB34CD", "backup_code")
        failed = await events.list_for_principal(
            "user_1", kinds=[SecurityEventKind.TWO_FACTOR_VERIFICATION_FAILED]
        )
        assert failed[0].details["partial_code"] == "12****"


class TestDisableAndRegenerate:
    async def test_disable_clears_secret_and_codes(self, db_session, service, idp, principal):
        await service.enable("user_1")
        await service.disable("user_1")

        assert principal.two_factor_enabled is False
        assert idp.users["user_1"].public_metadata["two_factor_enabled"] is False
        assert await totp.TotpSecretStore(db_session).get("user_1") is None
        assert await BackupCodeManager(db_session, None).remaining("user_1") == 0

    async def test_disable_with_provider_down_changes_nothing(self, db_session, service, idp, principal):
        await service.enable("user_1")
        idp.fail = True
        with pytest.raises(ExternalServiceError):
            await service.disable("user_1")
        assert principal.two_factor_enabled is True
        assert await totp.TotpSecretStore(db_session).get("user_1") is not None

    async def test_regenerate_requires_2fa(self, service, principal):
        with pytest.raises(ValidationError):
            await service.regenerate_backup_codes("user_1")

    async def test_regenerate(self, db_session, service, principal):
        setup = await service.enable("user_1")
        codes = await service.regenerate_backup_codes("user_1")
        assert set(codes).isdisjoint(setup.backup_codes)
        assert await BackupCodeManager(db_session, None).remaining("user_1") == 10
