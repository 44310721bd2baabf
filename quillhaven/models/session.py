# quillhaven/models/session.py
import enum
from datetime import datetime
from sqlalchemy import String, Text, DateTime, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from quillhaven.core.clock import utcnow
from quillhaven.core.db import Base

class EndReason(str, enum.Enum):
    user_logout = "user_logout"
    manual_removal = "manual_removal"
    security_revocation = "security_revocation"
    policy_violation_concurrent_limit = "policy_violation_concurrent_limit"
    policy_violation_stale = "policy_violation_stale"
    expired = "expired"

class LoginSession(Base):
    """
    Sesión de login. Created -> Active -> Ended (terminal).
    Nunca se borra; `is_active` solo pasa de True a False.
    """
    __tablename__ = "login_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    principal_id: Mapped[str] = mapped_column(String(64), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    last_active_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), index=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    end_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
