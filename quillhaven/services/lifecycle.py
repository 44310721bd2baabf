# quillhaven/services/lifecycle.py
"""
Eventos de ciclo de vida que reenvía la capa de webhooks del proveedor.

La verificación de firma y el transporte quedan afuera: acá solo llega
(tipo, data) ya validado.
"""
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.core.clock import Clock, as_aware_utc, from_epoch_ms, utcnow
from quillhaven.core.errors import ConflictError
from quillhaven.models.principal import Principal, PrincipalStatus
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.models.session import EndReason
from quillhaven.services.events import SecurityEventLog
from quillhaven.services.identity_provider import ExternalUser
from quillhaven.services.policy import SecurityPolicyEngine
from quillhaven.services.profile_sync import ProfileSyncEngine
from quillhaven.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)

SESSION_END_REASONS = {
    "session.ended": EndReason.user_logout,
    "session.removed": EndReason.manual_removal,
    "session.revoked": EndReason.security_revocation,
}


class LifecycleEventHandler:
    def __init__(
        self,
        db: AsyncSession,
        events: SecurityEventLog,
        registry: SessionRegistry,
        policy: SecurityPolicyEngine,
        profile_sync: ProfileSyncEngine,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.events = events
        self.registry = registry
        self.policy = policy
        self.profile_sync = profile_sync
        self.clock = clock

    async def handle(self, event_type: str, data: dict[str, Any]) -> bool:
        """True si el evento se procesó; False si se ignoró."""
        if event_type in ("user.created", "user.updated"):
            await self._user_upserted(event_type, data)
        elif event_type == "user.deleted":
            await self._user_deleted(data)
        elif event_type == "session.created":
            await self._session_created(data)
        elif event_type in SESSION_END_REASONS:
            await self.registry.end(data["id"], SESSION_END_REASONS[event_type])
        else:
            logger.info("evento de ciclo de vida ignorado: %s", event_type)
            return False
        return True

    async def _user_upserted(self, event_type: str, data: dict[str, Any]) -> None:
        external = ExternalUser.from_payload(data)
        changes, conflicts = await self.profile_sync.apply_external(external, force=True)
        if event_type == "user.created" and "user_created" in changes:
            await self.events.record(external.id, SecurityEventKind.USER_CREATED, {
                "email_verified": external.email_verified,
            })
        await self.db.commit()
        logger.info("%s aplicado a %s (%d cambios)", event_type, external.id, len(changes))

    async def _user_deleted(self, data: dict[str, Any]) -> None:
        principal_id = data.get("id")
        if not principal_id:
            return
        principal = await self.db.get(Principal, principal_id)
        if principal is None:
            logger.info("user.deleted para principal desconocido %s", principal_id)
            return

        # las sesiones primero: cada end() hace commit propio
        ended = 0
        for s in await self.registry.list_active(principal_id):
            if await self.registry.end(s.token, EndReason.security_revocation):
                ended += 1

        ts = int(as_aware_utc(self.clock()).timestamp())
        principal.status = PrincipalStatus.deleted
        principal.email = f"deleted_{ts}@deleted.local"
        principal.first_name = "Deleted"
        principal.last_name = "User"
        principal.image_url = ""
        principal.updated_at = self.clock()
        await self.events.record(principal_id, SecurityEventKind.USER_DELETED, {
            "sessions_ended": ended,
        })
        await self.db.commit()

    async def _session_created(self, data: dict[str, Any]) -> None:
        principal_id = data["user_id"]
        token = data["id"]
        try:
            await self.registry.create(
                principal_id,
                token,
                ip_address=data.get("ip_address"),
                user_agent=data.get("user_agent"),
                expires_at=from_epoch_ms(data.get("expire_at")),
            )
        except ConflictError:
            # reentrega del mismo webhook
            logger.info("session.created repetido para %s", token)
            return

        await self.profile_sync.sync_from_external(principal_id)
        await self.policy.enforce(principal_id)
