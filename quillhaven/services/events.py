# quillhaven/services/events.py
"""
Audit trail de seguridad.

Escribir un evento es best-effort: se hace dentro de un SAVEPOINT y si falla
se loguea y se sigue, nunca aborta la operación principal. Quien llama hace
el commit junto con su propia escritura.
"""
import logging
from datetime import datetime
from typing import Any, Iterable

from fastapi.encoders import jsonable_encoder
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.core.clock import Clock, utcnow
from quillhaven.core.config import settings
from quillhaven.models.security_event import SecurityEvent
from quillhaven.schemas.security import SecurityEventOut

logger = logging.getLogger(__name__)

# claves que nunca deben quedar en la metadata de un evento
_SECRET_KEYS = {"secret", "code", "codes", "backup_codes", "provisioning_uri", "password"}


def _redact(metadata: dict[str, Any]) -> dict[str, Any]:
    return {k: ("[redacted]" if k in _SECRET_KEYS else v) for k, v in metadata.items()}


def to_event_out(event: SecurityEvent) -> SecurityEventOut:
    return SecurityEventOut(
        principal_id=event.principal_id,
        kind=event.kind,
        metadata=event.details or {},
        session_token=event.session_token,
        timestamp=event.created_at,
    )


class SecurityEventLog:
    def __init__(self, db: AsyncSession, clock: Clock = utcnow, enabled: bool | None = None):
        self.db = db
        self.clock = clock
        self.enabled = settings.LOG_SECURITY_EVENTS if enabled is None else enabled

    async def record(
        self,
        principal_id: str,
        kind: str,
        metadata: dict[str, Any] | None = None,
        session_token: str | None = None,
    ) -> SecurityEvent | None:
        if not self.enabled:
            return None

        event = SecurityEvent(
            principal_id=principal_id,
            kind=kind,
            session_token=session_token,
            details=jsonable_encoder(_redact(metadata or {})),
            created_at=self.clock(),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(event)
        except SQLAlchemyError:
            logger.exception("no se pudo registrar el evento %s de %s", kind, principal_id)
            return None

        logger.info("security event %s principal=%s", kind, principal_id)
        return event

    async def recent(
        self,
        principal_id: str,
        kind: str,
        since: datetime,
        limit: int | None = None,
    ) -> list[SecurityEvent]:
        stmt = (
            select(SecurityEvent)
            .where(
                SecurityEvent.principal_id == principal_id,
                SecurityEvent.kind == kind,
                SecurityEvent.created_at >= since,
            )
            .order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        res = await self.db.execute(stmt)
        return list(res.scalars().all())

    async def list_for_principal(
        self,
        principal_id: str,
        limit: int = 50,
        kinds: Iterable[str] | None = None,
    ) -> list[SecurityEvent]:
        stmt = select(SecurityEvent).where(SecurityEvent.principal_id == principal_id)
        if kinds:
            stmt = stmt.where(SecurityEvent.kind.in_(list(kinds)))
        stmt = stmt.order_by(SecurityEvent.created_at.desc(), SecurityEvent.id.desc()).limit(limit)
        res = await self.db.execute(stmt)
        return list(res.scalars().all())

    async def count_since(self, principal_id: str, since: datetime, kind_prefix: str = "") -> int:
        stmt = select(func.count(SecurityEvent.id)).where(
            SecurityEvent.principal_id == principal_id,
            SecurityEvent.created_at >= since,
        )
        if kind_prefix:
            stmt = stmt.where(SecurityEvent.kind.startswith(kind_prefix))
        res = await self.db.execute(stmt)
        return int(res.scalar_one())
