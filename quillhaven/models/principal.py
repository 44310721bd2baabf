import enum
from datetime import datetime
from sqlalchemy import String, Enum, Boolean, DateTime, ForeignKey, Integer, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from quillhaven.core.clock import utcnow
from quillhaven.core.db import Base

class RoleEnum(str, enum.Enum):
    user = "USER"
    editor = "EDITOR"
    admin = "ADMIN"

# jerarquía estricta: USER < EDITOR < ADMIN
ROLE_LEVELS: dict[RoleEnum, int] = {
    RoleEnum.user: 1,
    RoleEnum.editor: 2,
    RoleEnum.admin: 3,
}

class PrincipalStatus(str, enum.Enum):
    active = "ACTIVE"
    suspended = "SUSPENDED"
    deleted = "DELETED"

class Principal(Base):
    """
    Usuario autenticado visto por la app. El id ES el id del proveedor de identidad.
    Nunca se borra físicamente: pasa a status DELETED.
    """
    __tablename__ = "principals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), index=True, default="")
    first_name: Mapped[str] = mapped_column(String(255), default="")
    last_name: Mapped[str] = mapped_column(String(255), default="")
    image_url: Mapped[str] = mapped_column(String(512), default="")
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    role: Mapped[RoleEnum] = mapped_column(Enum(RoleEnum), default=RoleEnum.user)
    status: Mapped[PrincipalStatus] = mapped_column(Enum(PrincipalStatus), default=PrincipalStatus.active)

    two_factor_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)

    preferences = relationship(
        "PrincipalPreferences",
        back_populates="principal",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    profile = relationship(
        "PrincipalProfile",
        back_populates="principal",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_active(self) -> bool:
        return self.status == PrincipalStatus.active


class PrincipalPreferences(Base):
    __tablename__ = "principal_preferences"

    principal_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("principals.id", ondelete="CASCADE"), primary_key=True
    )
    theme: Mapped[str] = mapped_column(String(16), default="system")
    language: Mapped[str] = mapped_column(String(16), default="en")
    timezone: Mapped[str] = mapped_column(String(64), default="UTC")
    email_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    marketing_emails: Mapped[bool] = mapped_column(Boolean, default=False)
    weekly_digest: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_save: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_save_interval: Mapped[int] = mapped_column(Integer, default=30)   # segundos

    principal = relationship("Principal", back_populates="preferences")


class PrincipalProfile(Base):
    __tablename__ = "principal_profiles"

    principal_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("principals.id", ondelete="CASCADE"), primary_key=True
    )
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    writing_genres: Mapped[list] = mapped_column(JSON, default=list)
    experience_level: Mapped[str | None] = mapped_column(String(64), nullable=True)
    social_links: Mapped[list] = mapped_column(JSON, default=list)
    goals: Mapped[list] = mapped_column(JSON, default=list)

    principal = relationship("Principal", back_populates="profile")
