# quillhaven/services/profile_sync.py
"""
Sincronización de perfil entre el principal local y el proveedor de identidad.

Layout de metadata en el proveedor:
    public_metadata  = {"role": "USER", "two_factor_enabled": bool}
    private_metadata = {"preferences": {...}, "profile": {...}}

Cada intento (éxito o fallo) deja un SyncRecord.
"""
import logging
import time
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.core.clock import Clock, utcnow
from quillhaven.core.errors import ExternalServiceError
from quillhaven.models.principal import (
    Principal, PrincipalPreferences, PrincipalProfile, PrincipalStatus, RoleEnum,
)
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.models.sync_record import SyncDirection, SyncRecord
from quillhaven.schemas.sync import (
    BidirectionalSyncResult, BulkSyncResult, SyncHistoryItem, SyncResult, SyncStatus,
)
from quillhaven.services.events import SecurityEventLog
from quillhaven.services.identity_provider import ExternalUser, IdentityProvider

logger = logging.getLogger(__name__)

PREFERENCE_DEFAULTS: dict[str, Any] = {
    "theme": "system",
    "language": "en",
    "timezone": "UTC",
    "email_notifications": True,
    "marketing_emails": False,
    "weekly_digest": True,
    "auto_save": True,
    "auto_save_interval": 30,
}

PROFILE_DEFAULTS: dict[str, Any] = {
    "bio": None,
    "location": None,
    "website": None,
    "writing_genres": [],
    "experience_level": None,
    "social_links": [],
    "goals": [],
}


def role_from_metadata(public_metadata: dict[str, Any]) -> RoleEnum:
    try:
        return RoleEnum(public_metadata.get("role") or RoleEnum.user.value)
    except ValueError:
        logger.warning("rol inválido en metadata del proveedor: %r", public_metadata.get("role"))
        return RoleEnum.user


def external_fields(external: ExternalUser) -> dict[str, Any]:
    return {
        "email": external.email,
        "first_name": external.first_name,
        "last_name": external.last_name,
        "image_url": external.image_url,
        "email_verified": external.email_verified,
        "two_factor_enabled": external.two_factor_enabled,
        "role": role_from_metadata(external.public_metadata),
    }


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ProfileSyncEngine:
    def __init__(
        self,
        db: AsyncSession,
        idp: IdentityProvider,
        events: SecurityEventLog,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.idp = idp
        self.events = events
        self.clock = clock

    # --- helpers ---

    @staticmethod
    def _apply_dict(target: Any, defaults: dict[str, Any], data: dict[str, Any], prefix: str) -> list[str]:
        changes = []
        for key in defaults:
            if key in data and getattr(target, key) != data[key]:
                setattr(target, key, data[key])
                changes.append(f"{prefix}_{key}")
        return changes

    def _apply_metadata(self, principal: Principal, external: ExternalUser) -> list[str]:
        private = external.private_metadata or {}
        changes: list[str] = []

        if principal.preferences is None:
            principal.preferences = PrincipalPreferences(**PREFERENCE_DEFAULTS)
            changes.append("preferences_created")
        changes += self._apply_dict(
            principal.preferences, PREFERENCE_DEFAULTS, private.get("preferences") or {}, "preferences"
        )

        if principal.profile is None:
            principal.profile = PrincipalProfile(**PROFILE_DEFAULTS)
            changes.append("profile_created")
        changes += self._apply_dict(
            principal.profile, PROFILE_DEFAULTS, private.get("profile") or {}, "profile"
        )
        return changes

    async def _record(
        self,
        principal_id: str,
        direction: SyncDirection,
        started: float,
        changes: list[str] | None = None,
        conflicts: list[str] | None = None,
        error: str | None = None,
    ) -> SyncResult:
        result = SyncResult(
            success=error is None,
            changes=changes or [],
            conflicts=conflicts or [],
            error=error,
            duration_ms=_elapsed_ms(started),
        )
        if error is not None:
            result.message = "Sync failed"
        elif result.changes:
            result.message = f"Synced {len(result.changes)} change(s)"
        else:
            result.message = "Already up to date"

        self.db.add(SyncRecord(
            principal_id=principal_id,
            direction=direction,
            changes=result.changes,
            conflicts=result.conflicts,
            success=result.success,
            error=error,
            duration_ms=result.duration_ms,
            created_at=self.clock(),
        ))
        if result.changes:
            await self.events.record(principal_id, SecurityEventKind.PROFILE_SYNCED, {
                "direction": direction.value,
                "changes": result.changes,
                "conflicts": result.conflicts,
            })
        await self.db.commit()
        return result

    async def _fail(self, principal_id: str, direction: SyncDirection, started: float, error: str) -> SyncResult:
        # nada del intento fallido queda aplicado, solo su registro
        await self.db.rollback()
        logger.warning("sync %s falló para %s: %s", direction.value, principal_id, error)
        return await self._record(principal_id, direction, started, error=error)

    async def _load(self, principal_id: str) -> Principal | None:
        principal = await self.db.get(Principal, principal_id)
        if principal is not None:
            # relaciones cargadas explícitamente: en async no hay lazy load
            await self.db.refresh(principal, attribute_names=["preferences", "profile"])
        return principal

    # --- operaciones ---

    async def apply_external(
        self,
        external: ExternalUser,
        force: bool = False,
        skip_conflicts: bool = False,
    ) -> tuple[list[str], list[str]]:
        """
        Aplica el registro del proveedor sobre el principal local (sin commit).
        Devuelve (changes, conflicts).
        """
        now = self.clock()
        principal = await self._load(external.id)

        if principal is None:
            principal = Principal(
                id=external.id,
                status=PrincipalStatus.active,
                created_at=now,
                updated_at=now,
                **external_fields(external),
            )
            self._apply_metadata(principal, external)
            self.db.add(principal)
            await self.db.flush()
            logger.info("principal %s creado desde el proveedor", external.id)
            return ["user_created", "preferences_created", "profile_created"], []

        local_newer = (
            external.updated_at is not None
            and principal.updated_at is not None
            and principal.updated_at > external.updated_at
        )
        hold = local_newer and not force

        changes: list[str] = []
        conflicts: list[str] = []
        for field, value in external_fields(external).items():
            if getattr(principal, field) == value:
                continue
            if hold:
                conflicts.append(field)
                continue
            setattr(principal, field, value)
            changes.append(field)

        if not (skip_conflicts and hold):
            changes += self._apply_metadata(principal, external)

        if changes:
            principal.updated_at = now
        await self.db.flush()
        return changes, conflicts

    async def sync_from_external(
        self,
        principal_id: str,
        force: bool = False,
        skip_conflicts: bool = False,
    ) -> SyncResult:
        started = time.monotonic()
        direction = SyncDirection.from_external
        try:
            external = await self.idp.get_user(principal_id)
        except ExternalServiceError as e:
            return await self._fail(principal_id, direction, started, e.message)
        if external is None:
            return await self._fail(principal_id, direction, started, "User not found in identity provider")

        try:
            changes, conflicts = await self.apply_external(external, force, skip_conflicts)
        except SQLAlchemyError:
            logger.exception("error de base aplicando sync de %s", principal_id)
            return await self._fail(principal_id, direction, started, "Database error")

        if conflicts:
            logger.info("sync de %s con conflictos: %s", principal_id, conflicts)
        return await self._record(principal_id, direction, started, changes, conflicts)

    def metadata_for(self, principal: Principal) -> tuple[dict[str, Any], dict[str, Any]]:
        public = {
            "role": principal.role.value,
            "two_factor_enabled": principal.two_factor_enabled,
        }
        private: dict[str, Any] = {}
        if principal.preferences is not None:
            private["preferences"] = {k: getattr(principal.preferences, k) for k in PREFERENCE_DEFAULTS}
        if principal.profile is not None:
            private["profile"] = {k: getattr(principal.profile, k) for k in PROFILE_DEFAULTS}
        return public, private

    async def sync_to_external(self, principal_id: str) -> SyncResult:
        started = time.monotonic()
        direction = SyncDirection.to_external
        principal = await self._load(principal_id)
        if principal is None:
            return await self._fail(principal_id, direction, started, "User not found")

        public, private = self.metadata_for(principal)
        try:
            await self.idp.update_user(
                principal_id, first_name=principal.first_name, last_name=principal.last_name
            )
            await self.idp.update_user_metadata(
                principal_id, public_metadata=public, private_metadata=private
            )
        except ExternalServiceError as e:
            return await self._fail(principal_id, direction, started, e.message)

        changes = ["first_name", "last_name", "public_metadata"]
        if private:
            changes.append("private_metadata")
        return await self._record(principal_id, direction, started, changes)

    async def bidirectional_sync(self, principal_id: str, force: bool = False) -> BidirectionalSyncResult:
        # cada dirección es independiente: un fallo no frena a la otra
        inbound = await self.sync_from_external(principal_id, force=force)
        outbound = await self.sync_to_external(principal_id)
        changes = inbound.changes + outbound.changes
        return BidirectionalSyncResult(
            success=inbound.success and outbound.success,
            from_external=inbound,
            to_external=outbound,
            total_changes=len(changes),
            changes=changes,
            conflicts=inbound.conflicts,
        )

    async def bulk_sync(self, principal_ids: list[str], force: bool = False) -> BulkSyncResult:
        # secuencial a propósito: el proveedor tiene rate limit
        results: dict[str, SyncResult] = {}
        for pid in principal_ids:
            results[pid] = await self.sync_from_external(pid, force=force)
        ok = sum(1 for r in results.values() if r.success)
        logger.info("bulk sync: %d ok, %d con error", ok, len(results) - ok)
        return BulkSyncResult(
            total=len(results),
            success_count=ok,
            error_count=len(results) - ok,
            results=results,
        )

    async def sync_history(self, principal_id: str, limit: int = 20) -> SyncStatus:
        res = await self.db.execute(
            select(SyncRecord)
            .where(SyncRecord.principal_id == principal_id)
            .order_by(SyncRecord.created_at.desc(), SyncRecord.id.desc())
            .limit(limit)
        )
        records = list(res.scalars().all())
        history = [
            SyncHistoryItem(
                direction=r.direction.value,
                changes=r.changes or [],
                conflicts=r.conflicts or [],
                success=r.success,
                error=r.error,
                duration_ms=r.duration_ms,
                timestamp=r.created_at,
            )
            for r in records
        ]
        return SyncStatus(
            history=history,
            last_sync=records[0].created_at if records else None,
            total_syncs=len(history),
        )
