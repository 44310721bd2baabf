"""
Tests for single-use backup codes.

These tests prove:
- Only hashes are stored
- A code is accepted exactly once
- Regeneration invalidates the whole previous set
"""
import re

from sqlalchemy import select

from quillhaven.models.backup_code import BackupCode
from quillhaven.models.security_event import SecurityEvent, SecurityEventKind
from quillhaven.services.backup_codes import BackupCodeManager, hash_code


class TestGeneration:
    def test_generates_ten_unique_codes(self):
        codes = BackupCodeManager.generate()
        assert len(codes) == 10
        assert len(set(codes)) == 10
        for c in codes:
            assert re.fullmatch(r"[A-Z0-9]{8}", c)

    def test_hash_is_normalized(self):
        assert hash_code("abcd1234") == hash_code(" ABCD1234 ")
        assert len(hash_code("ABCD1234")) == 64


class TestVerification:
    async def test_only_hashes_persisted(self, db_session, events, clock):
        mgr = BackupCodeManager(db_session, events, clock)
        codes = BackupCodeManager.generate()
        await mgr.store("user_1", codes)
        await db_session.commit()

        rows = (await db_session.execute(select(BackupCode))).scalars().all()
        assert len(rows) == 10
        stored = {r.code_hash for r in rows}
        assert not stored & set(codes)
        assert stored == {hash_code(c) for c in codes}

    async def test_code_is_single_use(self, db_session, events, clock):
        """verify(P, codes[0]) is true once, then false."""
        mgr = BackupCodeManager(db_session, events, clock)
        codes = BackupCodeManager.generate()
        await mgr.store("user_1", codes)
        await db_session.commit()

        assert await mgr.verify("user_1", codes[0]) is True
        assert await mgr.verify("user_1", codes[0]) is False
        assert await mgr.remaining("user_1") == 9

    async def test_code_of_another_principal_rejected(self, db_session, events, clock):
        mgr = BackupCodeManager(db_session, events, clock)
        codes = BackupCodeManager.generate()
        await mgr.store("user_1", codes)
        await db_session.commit()

        assert await mgr.verify("user_2", codes[0]) is False
        assert await mgr.remaining("user_1") == 10

    async def test_lowercase_input_accepted(self, db_session, events, clock):
        mgr = BackupCodeManager(db_session, events, clock)
        codes = BackupCodeManager.generate()
        await mgr.store("user_1", codes)
        assert await mgr.verify("user_1", codes[3].lower())

    async def test_use_is_logged_without_plaintext(self, db_session, events, clock):
        mgr = BackupCodeManager(db_session, events, clock)
        codes = BackupCodeManager.generate()
        await mgr.store("user_1", codes)
        await mgr.verify("user_1", codes[0])

        ev = (await db_session.execute(
            select(SecurityEvent).where(SecurityEvent.kind == SecurityEventKind.BACKUP_CODE_USED)
        )).scalar_one()
        assert ev.details["remaining_codes"] == 9
        assert ev.details["partial_code"] == codes[0][:2] + "****"
        assert codes[0] not in str(ev.details)

    async def test_regenerate_invalidates_old_set(self, db_session, events, clock):
        mgr = BackupCodeManager(db_session, events, clock)
        old = BackupCodeManager.generate()
        await mgr.store("user_1", old)
        await db_session.commit()

        new = await mgr.regenerate("user_1")
        assert len(new) == 10
        assert await mgr.verify("user_1", old[0]) is False
        assert await mgr.verify("user_1", new[0]) is True

        kinds = [e.kind for e in await events.list_for_principal("user_1")]
        assert SecurityEventKind.BACKUP_CODES_REGENERATED in kinds
