# quillhaven/models/totp_secret.py
from datetime import datetime
from sqlalchemy import String, Text, DateTime, BigInteger
from sqlalchemy.orm import Mapped, mapped_column
from quillhaven.core.clock import utcnow
from quillhaven.core.db import Base


class TotpSecret(Base):
    """
    Secreto TOTP vivo de un principal (uno por principal: la PK lo garantiza).
    Separado de la metadata de perfil del proveedor de identidad y cifrado (Fernet).
    """
    __tablename__ = "totp_secrets"

    principal_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    encrypted_secret: Mapped[str] = mapped_column(Text, nullable=False)
    # último time-step aceptado: un código ya usado no se vuelve a aceptar
    last_used_step: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, nullable=False)
