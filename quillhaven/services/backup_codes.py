# quillhaven/services/backup_codes.py
import hashlib
import logging
import secrets
import string

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.core.clock import Clock, utcnow
from quillhaven.core.config import settings
from quillhaven.core.security import partial_code
from quillhaven.models.backup_code import BackupCode
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.services.events import SecurityEventLog

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


def gen_code(n: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(n))


def hash_code(code: str) -> str:
    return hashlib.sha256(code.strip().upper().encode()).hexdigest()


class BackupCodeManager:
    """
    Códigos de recuperación de un solo uso.
    En la base solo hay hashes; el texto plano se devuelve una única vez.
    """

    def __init__(self, db: AsyncSession, events: SecurityEventLog, clock: Clock = utcnow):
        self.db = db
        self.events = events
        self.clock = clock

    @staticmethod
    def generate(n: int | None = None) -> list[str]:
        n = n or settings.BACKUP_CODES_COUNT
        codes: set[str] = set()
        # sin duplicados dentro del mismo set (la unique constraint lo exige)
        while len(codes) < n:
            codes.add(gen_code())
        return list(codes)

    async def store(self, principal_id: str, codes: list[str]) -> None:
        """Invalida el set anterior y guarda el nuevo. No hace commit."""
        await self.db.execute(delete(BackupCode).where(BackupCode.principal_id == principal_id))
        now = self.clock()
        self.db.add_all([
            BackupCode(principal_id=principal_id, code_hash=hash_code(c), created_at=now)
            for c in codes
        ])
        await self.db.flush()

    async def clear(self, principal_id: str) -> None:
        await self.db.execute(delete(BackupCode).where(BackupCode.principal_id == principal_id))

    async def remaining(self, principal_id: str) -> int:
        res = await self.db.execute(
            select(func.count(BackupCode.id)).where(
                BackupCode.principal_id == principal_id,
                BackupCode.used.is_(False),
            )
        )
        return int(res.scalar_one())

    async def verify(self, principal_id: str, candidate: str) -> bool:
        if not candidate or not candidate.strip():
            return False

        # leer y marcar en un solo UPDATE: solo un request concurrente gana
        res = await self.db.execute(
            update(BackupCode)
            .where(
                BackupCode.principal_id == principal_id,
                BackupCode.code_hash == hash_code(candidate),
                BackupCode.used.is_(False),
            )
            .values(used=True, used_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            return False
        await self.db.commit()

        left = await self.remaining(principal_id)
        await self.events.record(principal_id, SecurityEventKind.BACKUP_CODE_USED, {
            "partial_code": partial_code(candidate.strip().upper()),
            "remaining_codes": left,
        })
        await self.db.commit()
        if left <= 2:
            logger.warning("principal %s tiene %d códigos de recuperación", principal_id, left)
        return True

    async def regenerate(self, principal_id: str) -> list[str]:
        codes = self.generate()
        await self.store(principal_id, codes)
        await self.events.record(principal_id, SecurityEventKind.BACKUP_CODES_REGENERATED, {
            "count": len(codes),
        })
        await self.db.commit()
        return codes
