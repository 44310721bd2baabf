# quillhaven/models/backup_code.py
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, DateTime, Boolean, UniqueConstraint
from quillhaven.core.clock import utcnow
from quillhaven.core.db import Base

class BackupCode(Base):
    """
    Código de recuperación de un solo uso. Se guarda SOLO el hash (sha256);
    `used` pasa de False a True una única vez (UPDATE condicional).
    """
    __tablename__ = "backup_codes"
    __table_args__ = (
        UniqueConstraint("principal_id", "code_hash", name="uq_backup_code_principal_hash"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    principal_id: Mapped[str] = mapped_column(String(64), index=True)
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, nullable=False)
