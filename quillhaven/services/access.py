# quillhaven/services/access.py
"""
Control de acceso por rol: USER < EDITOR < ADMIN.

Los checks son funciones explícitas que se llaman al inicio de cada handler
(o vía la dependencia `require_roles` de la API).
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.core.clock import Clock, utcnow
from quillhaven.core.errors import AccessDenied, NotFound, ValidationError
from quillhaven.models.principal import ROLE_LEVELS, Principal, RoleEnum
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.services.events import SecurityEventLog
from quillhaven.services.identity_provider import IdentityProvider

logger = logging.getLogger(__name__)

USER_PERMISSIONS = [
    "read_own_profile",
    "update_own_profile",
    "delete_own_account",
    "create_projects",
    "read_own_projects",
    "update_own_projects",
    "delete_own_projects",
]

EDITOR_PERMISSIONS = USER_PERMISSIONS + [
    "read_all_projects",
    "moderate_content",
    "review_flagged_content",
    "view_analytics",
    "view_user_analytics",
]

ADMIN_PERMISSIONS = EDITOR_PERMISSIONS + [
    "update_all_projects",
    "delete_all_projects",
    "manage_users",
    "view_all_users",
    "update_user_roles",
    "suspend_users",
    "delete_users",
    "manage_system_settings",
    "view_system_logs",
    "manage_subscriptions",
    "view_billing_data",
    "manage_security_settings",
    "view_security_logs",
    "force_password_reset",
    "revoke_user_sessions",
    "view_system_analytics",
    "export_analytics",
]

ROLE_PERMISSIONS: dict[RoleEnum, list[str]] = {
    RoleEnum.user: USER_PERMISSIONS,
    RoleEnum.editor: EDITOR_PERMISSIONS,
    RoleEnum.admin: ADMIN_PERMISSIONS,
}


def parse_role(value: str | RoleEnum) -> RoleEnum:
    try:
        return RoleEnum(value)
    except ValueError:
        raise ValidationError(f"Invalid role: {value}")


def has_role_or_higher(role: RoleEnum, required: RoleEnum) -> bool:
    return ROLE_LEVELS[role] >= ROLE_LEVELS[required]


def has_permission(role: RoleEnum, permission: str) -> bool:
    return permission in ROLE_PERMISSIONS[role]


def permissions_for(role: RoleEnum) -> list[str]:
    return list(ROLE_PERMISSIONS[role])


class AccessControl:
    def __init__(
        self,
        db: AsyncSession,
        events: SecurityEventLog,
        idp: IdentityProvider | None = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.events = events
        self.idp = idp
        self.clock = clock

    async def require_role(self, principal: Principal, required: RoleEnum, resource: str = "") -> None:
        if principal.is_active and has_role_or_higher(principal.role, required):
            return
        logger.warning("acceso denegado principal=%s rol=%s requerido=%s", principal.id, principal.role.value, required.value)
        await self.events.record(principal.id, SecurityEventKind.UNAUTHORIZED_ACCESS_ATTEMPT, {
            "required_role": required.value,
            "user_role": principal.role.value,
            "resource": resource,
        })
        await self.db.commit()
        raise AccessDenied("Insufficient permissions")

    async def update_role(self, actor: Principal, target_id: str, new_role: str) -> Principal:
        role = parse_role(new_role)
        await self.require_role(actor, RoleEnum.admin, resource="roles")

        target = await self.db.get(Principal, target_id)
        if target is None:
            raise NotFound("User not found")

        old_role = target.role
        if old_role == role:
            return target

        # primero el proveedor: si falla no se cambia nada local
        if self.idp is not None:
            await self.idp.update_user_metadata(target_id, public_metadata={"role": role.value})

        target.role = role
        target.updated_at = self.clock()
        await self.events.record(target_id, SecurityEventKind.ROLE_CHANGED, {
            "old_role": old_role.value,
            "new_role": role.value,
            "changed_by": actor.id,
        })
        await self.db.commit()
        logger.info("rol de %s cambiado %s -> %s por %s", target_id, old_role.value, role.value, actor.id)
        return target
