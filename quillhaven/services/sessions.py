# quillhaven/services/sessions.py
"""
Registro de sesiones de login.

Una sesión nunca se borra: termina una sola vez (is_active True -> False)
con un motivo. `end` es un UPDATE condicional, así que dos callers en
carrera no fallan: el segundo es un no-op.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.core.clock import Clock, utcnow
from quillhaven.core.config import Settings, settings
from quillhaven.core.errors import AccessDenied, ConflictError, NotFound
from quillhaven.models.principal import Principal
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.models.session import EndReason, LoginSession
from quillhaven.schemas.security import SessionStatistics, SuspiciousLoginResult
from quillhaven.services.detector import UNKNOWN, SuspiciousLoginDetector
from quillhaven.services.events import SecurityEventLog
from quillhaven.services.identity_provider import IdentityProvider

logger = logging.getLogger(__name__)

STATS_WINDOW = timedelta(days=30)


class SessionRegistry:
    def __init__(
        self,
        db: AsyncSession,
        events: SecurityEventLog,
        detector: SuspiciousLoginDetector | None = None,
        idp: IdentityProvider | None = None,
        clock: Clock = utcnow,
        config: Settings = settings,
    ):
        self.db = db
        self.events = events
        self.detector = detector or SuspiciousLoginDetector(events, clock)
        self.idp = idp
        self.clock = clock
        self.config = config

    async def _get(self, token: str) -> LoginSession | None:
        res = await self.db.execute(select(LoginSession).where(LoginSession.token == token))
        return res.scalar_one_or_none()

    async def create(
        self,
        principal_id: str,
        token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        expires_at: datetime | None = None,
    ) -> tuple[LoginSession, SuspiciousLoginResult]:
        verdict = await self.detector.detect(principal_id, ip_address, user_agent)

        now = self.clock()
        session = LoginSession(
            token=token,
            principal_id=principal_id,
            created_at=now,
            last_active_at=now,
            expires_at=expires_at or now + timedelta(minutes=self.config.SESSION_TIMEOUT_MINUTES),
            ip_address=ip_address,
            user_agent=user_agent,
            is_active=True,
        )
        self.db.add(session)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Session already registered")

        await self.db.execute(
            update(Principal).where(Principal.id == principal_id).values(last_login_at=now)
        )

        await self.events.record(principal_id, SecurityEventKind.SESSION_CREATED, {
            "ip_address": ip_address or UNKNOWN,
            "user_agent": user_agent or UNKNOWN,
            "expires_at": session.expires_at,
            "suspicious": verdict.is_suspicious,
            "risk_level": verdict.risk_level,
            "factors": verdict.factors,
        }, session_token=token)

        if verdict.risk_level == "high" and self.config.ALERT_ON_SUSPICIOUS_ACTIVITY:
            res = await self.db.execute(
                select(Principal.two_factor_enabled).where(Principal.id == principal_id)
            )
            if not res.scalar_one_or_none():
                # solo alerta, no se bloquea el login
                logger.warning("alerta de seguridad: login de alto riesgo sin 2FA principal=%s", principal_id)
                await self.events.record(principal_id, SecurityEventKind.SECURITY_ALERT_SENT, {
                    "alert_type": "high_risk_login",
                    "factors": verdict.factors,
                    "ip_address": ip_address or UNKNOWN,
                }, session_token=token)

        await self.db.commit()
        return session, verdict

    async def update_activity(
        self,
        token: str,
        principal_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> bool:
        values: dict = {"last_active_at": self.clock()}
        if ip_address:
            values["ip_address"] = ip_address
        if user_agent:
            values["user_agent"] = user_agent
        stmt = update(LoginSession).where(LoginSession.token == token, LoginSession.is_active.is_(True))
        if principal_id is not None:
            # solo sesiones propias
            stmt = stmt.where(LoginSession.principal_id == principal_id)
        try:
            res = await self.db.execute(stmt.values(**values))
            await self.db.commit()
        except SQLAlchemyError:
            # camino no crítico: se loguea y se sigue
            logger.exception("no se pudo actualizar la actividad de la sesión")
            await self.db.rollback()
            return False
        return res.rowcount == 1

    async def end(self, token: str, reason: EndReason | str) -> bool:
        """True si esta llamada terminó la sesión; False si no existía o ya estaba terminada."""
        reason = EndReason(reason)
        session = await self._get(token)
        if session is None or not session.is_active:
            return False

        now = self.clock()
        res = await self.db.execute(
            update(LoginSession)
            .where(LoginSession.id == session.id, LoginSession.is_active.is_(True))
            .values(is_active=False, ended_at=now, end_reason=reason.value)
        )
        if res.rowcount != 1:
            # otro caller la terminó entre el SELECT y el UPDATE
            return False

        duration_ms = int((now - session.created_at).total_seconds() * 1000)
        await self.events.record(session.principal_id, SecurityEventKind.SESSION_ENDED, {
            "reason": reason.value,
            "duration_ms": duration_ms,
        }, session_token=token)
        await self.db.commit()
        logger.info("sesión terminada principal=%s motivo=%s", session.principal_id, reason.value)
        return True

    async def list_active(self, principal_id: str) -> list[LoginSession]:
        res = await self.db.execute(
            select(LoginSession)
            .where(
                LoginSession.principal_id == principal_id,
                LoginSession.is_active.is_(True),
                LoginSession.expires_at > self.clock(),
            )
            .order_by(LoginSession.last_active_at.desc())
        )
        return list(res.scalars().all())

    async def cleanup_expired(self, batch_size: int | None = None) -> int:
        now = self.clock()
        idle_cutoff = now - timedelta(days=self.config.INACTIVE_SESSION_TIMEOUT_DAYS)
        res = await self.db.execute(
            select(LoginSession.token)
            .where(
                LoginSession.is_active.is_(True),
                or_(LoginSession.expires_at <= now, LoginSession.last_active_at < idle_cutoff),
            )
            .order_by(LoginSession.id)
            .limit(batch_size or self.config.SESSION_CLEANUP_BATCH_SIZE)
        )
        tokens = list(res.scalars().all())

        ended = 0
        for token in tokens:
            # si otro proceso ya la terminó, end() devuelve False y seguimos
            if await self.end(token, EndReason.expired):
                ended += 1
        logger.info("limpieza de sesiones: %d candidatas, %d terminadas", len(tokens), ended)
        return ended

    async def revoke(self, principal_id: str, token: str) -> bool:
        session = await self._get(token)
        if session is None:
            raise NotFound("Session not found")
        if session.principal_id != principal_id:
            raise AccessDenied("Session belongs to another user")
        if self.idp is not None:
            await self.idp.revoke_session(token)
        return await self.end(token, EndReason.manual_removal)

    async def revoke_all_other(self, principal_id: str, keep_token: str | None) -> int:
        """
        Revoca en el proveedor todas las sesiones salvo `keep_token` y recién
        después las termina localmente. Si el proveedor falla, no se terminó ninguna.
        """
        targets = [s.token for s in await self.list_active(principal_id) if s.token != keep_token]
        if self.idp is not None:
            for token in targets:
                await self.idp.revoke_session(token)

        revoked = 0
        for token in targets:
            if await self.end(token, EndReason.security_revocation):
                revoked += 1

        await self.events.record(principal_id, SecurityEventKind.ALL_SESSIONS_REVOKED, {
            "revoked_count": revoked,
        }, session_token=keep_token)
        await self.db.commit()
        return revoked

    async def statistics(self, principal_id: str) -> SessionStatistics:
        total = await self.db.execute(
            select(func.count(LoginSession.id)).where(LoginSession.principal_id == principal_id)
        )
        active = await self.list_active(principal_id)
        last = await self.db.execute(
            select(LoginSession)
            .where(LoginSession.principal_id == principal_id)
            .order_by(LoginSession.last_active_at.desc())
            .limit(1)
        )
        last_session = last.scalar_one_or_none()
        recent = await self.events.count_since(
            principal_id, self.clock() - STATS_WINDOW, kind_prefix="session_"
        )
        return SessionStatistics(
            total_sessions=int(total.scalar_one()),
            active_sessions=len(active),
            recent_activity=recent,
            last_active_at=last_session.last_active_at if last_session else None,
            last_ip_address=last_session.ip_address if last_session else None,
        )
