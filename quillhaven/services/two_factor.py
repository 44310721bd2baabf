# quillhaven/services/two_factor.py
"""
Alta, baja y verificación de 2FA.

El proveedor de identidad se actualiza ANTES de tocar el estado local: si
falla, no queda nada escrito a medias.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.core.clock import Clock, utcnow
from quillhaven.core.config import settings
from quillhaven.core.errors import ExternalServiceError, NotFound, ValidationError
from quillhaven.core.security import partial_code
from quillhaven.models.principal import Principal
from quillhaven.models.security_event import SecurityEventKind
from quillhaven.schemas.security import TwoFactorSetup, TwoFactorVerification
from quillhaven.services import totp
from quillhaven.services.backup_codes import BackupCodeManager
from quillhaven.services.events import SecurityEventLog
from quillhaven.services.identity_provider import IdentityProvider

logger = logging.getLogger(__name__)

ALREADY_ENABLED = "Two-factor authentication is already enabled"
NOT_CONFIGURED = "Two-factor authentication is not configured"


class TwoFactorService:
    def __init__(
        self,
        db: AsyncSession,
        idp: IdentityProvider,
        events: SecurityEventLog,
        secrets: totp.TotpSecretStore | None = None,
        backup_codes: BackupCodeManager | None = None,
        clock: Clock = utcnow,
        issuer: str | None = None,
    ):
        self.db = db
        self.idp = idp
        self.events = events
        self.secrets = secrets or totp.TotpSecretStore(db, clock)
        self.backup_codes = backup_codes or BackupCodeManager(db, events, clock)
        self.clock = clock
        self.issuer = issuer or settings.TOTP_ISSUER

    async def _principal(self, principal_id: str) -> Principal:
        principal = await self.db.get(Principal, principal_id)
        if principal is None:
            raise NotFound("User not found")
        return principal

    async def enable(self, principal_id: str) -> TwoFactorSetup:
        principal = await self._principal(principal_id)
        if principal.two_factor_enabled:
            return TwoFactorSetup(success=False, message=ALREADY_ENABLED)

        secret = totp.generate_secret()
        uri = totp.build_provisioning_uri(self.issuer, principal.email or principal.id, secret)
        codes = BackupCodeManager.generate()

        try:
            await self.idp.update_user_metadata(
                principal_id, public_metadata={"two_factor_enabled": True}
            )
        except ExternalServiceError as e:
            await self.events.record(principal_id, SecurityEventKind.TWO_FACTOR_ENABLE_FAILED, {
                "error": e.message,
            })
            await self.db.commit()
            return TwoFactorSetup(success=False, message="Failed to enable two-factor authentication")

        await self.secrets.put(principal_id, secret)
        await self.backup_codes.store(principal_id, codes)
        principal.two_factor_enabled = True
        await self.events.record(principal_id, SecurityEventKind.TWO_FACTOR_ENABLED, {
            "backup_codes_count": len(codes),
        })
        await self.db.commit()

        return TwoFactorSetup(
            success=True,
            message="Two-factor authentication enabled",
            secret=secret,
            provisioning_uri=uri,
            qr_code_png=totp.qr_png_base64(uri),
            backup_codes=codes,
        )

    async def disable(self, principal_id: str) -> None:
        principal = await self._principal(principal_id)
        # si el proveedor falla, ExternalServiceError sube y no se tocó nada local
        await self.idp.update_user_metadata(
            principal_id, public_metadata={"two_factor_enabled": False}
        )
        await self.secrets.delete(principal_id)
        await self.backup_codes.clear(principal_id)
        principal.two_factor_enabled = False
        await self.events.record(principal_id, SecurityEventKind.TWO_FACTOR_DISABLED, {})
        await self.db.commit()

    async def verify(self, principal_id: str, code: str, code_type: str = "totp") -> TwoFactorVerification:
        principal = await self._principal(principal_id)
        if not principal.two_factor_enabled:
            return TwoFactorVerification(
                success=False, type=code_type, message=NOT_CONFIGURED, error="not_configured"
            )

        if code_type == "backup_code":
            ok = await self.backup_codes.verify(principal_id, code)
            message = "Backup code accepted" if ok else "Invalid backup code"
        else:
            secret = await self.secrets.get(principal_id)
            if secret is None:
                logger.error("principal %s tiene 2FA activo pero sin secreto legible", principal_id)
                return TwoFactorVerification(
                    success=False, type=code_type, message=NOT_CONFIGURED, error="not_configured"
                )
            step = totp.matching_step(secret, code, for_time=self.clock())
            # un código ya aceptado no vale dos veces
            ok = step is not None and await self.secrets.accept_step(principal_id, step)
            message = "Verification code accepted" if ok else "Invalid verification code"

        kind = (SecurityEventKind.TWO_FACTOR_VERIFICATION_SUCCESS if ok
                else SecurityEventKind.TWO_FACTOR_VERIFICATION_FAILED)
        await self.events.record(principal_id, kind, {
            "type": code_type,
            "partial_code": partial_code(code),
        })
        await self.db.commit()

        return TwoFactorVerification(
            success=ok,
            type=code_type,
            used_backup_code=ok and code_type == "backup_code",
            message=message,
            error=None if ok else "invalid_code",
        )

    async def regenerate_backup_codes(self, principal_id: str) -> list[str]:
        principal = await self._principal(principal_id)
        if not principal.two_factor_enabled:
            raise ValidationError("Two-factor authentication is not enabled")
        return await self.backup_codes.regenerate(principal_id)
