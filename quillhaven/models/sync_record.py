# quillhaven/models/sync_record.py
import enum
from datetime import datetime
from sqlalchemy import String, Text, DateTime, Boolean, Integer, JSON, Enum
from sqlalchemy.orm import Mapped, mapped_column
from quillhaven.core.clock import utcnow
from quillhaven.core.db import Base
from quillhaven.models.security_event import append_only

class SyncDirection(str, enum.Enum):
    from_external = "from_external"
    to_external = "to_external"

@append_only
class SyncRecord(Base):
    """Un registro por intento de sincronización (éxito o fallo). Append-only."""
    __tablename__ = "sync_records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    principal_id: Mapped[str] = mapped_column(String(64), index=True)
    direction: Mapped[SyncDirection] = mapped_column(Enum(SyncDirection))
    changes: Mapped[list] = mapped_column(JSON, default=list)
    conflicts: Mapped[list] = mapped_column(JSON, default=list)
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, index=True)
