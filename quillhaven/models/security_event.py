"""
Audit trail de seguridad: append-only.

Una vez escrito, un SecurityEvent no se edita ni se borra. El guard de abajo
hace fallar cualquier UPDATE/DELETE que pase por el ORM.
"""
from datetime import datetime
from typing import Any
from sqlalchemy import String, DateTime, JSON, event
from sqlalchemy.orm import Mapped, mapped_column
from quillhaven.core.clock import utcnow
from quillhaven.core.db import Base


class AppendOnlyViolation(RuntimeError):
    pass


def append_only(cls):
    """Registra listeners que prohíben UPDATE/DELETE sobre el modelo."""
    def _refuse(mapper, connection, target):
        raise AppendOnlyViolation(f"{cls.__name__} is append-only")

    event.listen(cls, "before_update", _refuse)
    event.listen(cls, "before_delete", _refuse)
    return cls


@append_only
class SecurityEvent(Base):
    __tablename__ = "security_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    principal_id: Mapped[str] = mapped_column(String(64), index=True)
    kind: Mapped[str] = mapped_column(String(64), index=True)
    session_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    # "metadata" está reservado en los modelos declarativos
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, index=True)


class SecurityEventKind:
    # 2FA
    TWO_FACTOR_ENABLED = "two_factor_enabled"
    TWO_FACTOR_ENABLE_FAILED = "two_factor_enable_failed"
    TWO_FACTOR_DISABLED = "two_factor_disabled"
    TWO_FACTOR_VERIFICATION_SUCCESS = "two_factor_verification_success"
    TWO_FACTOR_VERIFICATION_FAILED = "two_factor_verification_failed"
    BACKUP_CODE_USED = "backup_code_used"
    BACKUP_CODES_REGENERATED = "backup_codes_regenerated"

    # sesiones
    SESSION_CREATED = "session_created"
    SESSION_ENDED = "session_ended"
    ALL_SESSIONS_REVOKED = "all_sessions_revoked"
    SUSPICIOUS_LOGIN = "suspicious_login"
    SECURITY_ALERT_SENT = "security_alert_sent"
    SECURITY_POLICY_ENFORCED = "security_policy_enforced"

    # cuenta / roles
    USER_CREATED = "user_created"
    USER_DELETED = "user_deleted"
    ROLE_CHANGED = "role_changed"
    UNAUTHORIZED_ACCESS_ATTEMPT = "unauthorized_access_attempt"
    PROFILE_SYNCED = "profile_synced"
