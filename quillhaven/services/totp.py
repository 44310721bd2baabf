# quillhaven/services/totp.py
"""
Motor TOTP (RFC 6238 sobre HOTP / RFC 4226, vía pyotp).

Las funciones de módulo son puras: (secreto, instante, código) -> resultado.
`TotpSecretStore` guarda el secreto cifrado y el último step aceptado.
"""
import base64
from datetime import datetime
from io import BytesIO
from urllib.parse import quote, urlencode

import pyotp
import qrcode
from pyotp.utils import strings_equal
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.core.clock import Clock, as_aware_utc, utcnow
from quillhaven.core.security import decrypt_secret, encrypt_secret
from quillhaven.models.totp_secret import TotpSecret

DIGITS = 6
PERIOD = 30
ALGORITHM = "SHA1"


def generate_secret() -> str:
    # 32 chars base32 = 160 bits
    return pyotp.random_base32(length=32)


def build_provisioning_uri(issuer: str, account_label: str, secret: str) -> str:
    label = f"{quote(issuer, safe='')}:{quote(account_label, safe='@')}"
    query = urlencode(
        {
            "secret": secret,
            "issuer": issuer,
            "algorithm": ALGORITHM,
            "digits": DIGITS,
            "period": PERIOD,
        },
        quote_via=quote,
    )
    return f"otpauth://totp/{label}?{query}"


def _normalize(candidate: str | None) -> str:
    return (candidate or "").replace(" ", "").strip()


def matching_step(
    secret: str,
    candidate: str | None,
    for_time: datetime | None = None,
    window: int = 1,
) -> int | None:
    """
    Devuelve el time-step que coincide con `candidate` dentro de
    [step - window, step + window], o None.
    """
    code = _normalize(candidate)
    if len(code) != DIGITS or not code.isdigit():
        return None

    totp = pyotp.TOTP(secret, digits=DIGITS, interval=PERIOD)
    # pyotp toma las fechas naive como hora local
    step = totp.timecode(as_aware_utc(for_time or utcnow()))
    try:
        for offset in range(-window, window + 1):
            counter = step + offset
            if counter < 0:
                continue
            if strings_equal(code, totp.generate_otp(counter)):
                return counter
    except ValueError:
        # secreto base32 corrupto
        return None
    return None


def verify(secret: str, candidate: str | None, for_time: datetime | None = None, window: int = 1) -> bool:
    return matching_step(secret, candidate, for_time=for_time, window=window) is not None


def code_at(secret: str, for_time: datetime) -> str:
    return pyotp.TOTP(secret, digits=DIGITS, interval=PERIOD).at(as_aware_utc(for_time))


def qr_png_base64(text: str) -> str:
    img = qrcode.make(text)
    buf = BytesIO()
    img.save(buf, "PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


class TotpSecretStore:
    """Un secreto vivo por principal, cifrado con Fernet."""

    def __init__(self, db: AsyncSession, clock: Clock = utcnow, key_material: str | None = None):
        self.db = db
        self.clock = clock
        self.key_material = key_material

    async def get(self, principal_id: str) -> str | None:
        row = await self.db.get(TotpSecret, principal_id)
        if row is None:
            return None
        return decrypt_secret(row.encrypted_secret, self.key_material)

    async def put(self, principal_id: str, secret: str) -> None:
        encrypted = encrypt_secret(secret, self.key_material)
        row = await self.db.get(TotpSecret, principal_id)
        if row is None:
            self.db.add(TotpSecret(
                principal_id=principal_id,
                encrypted_secret=encrypted,
                created_at=self.clock(),
            ))
        else:
            # rotación: el secreto nuevo arranca sin steps usados
            row.encrypted_secret = encrypted
            row.last_used_step = None
            row.created_at = self.clock()
        await self.db.flush()

    async def delete(self, principal_id: str) -> None:
        row = await self.db.get(TotpSecret, principal_id)
        if row is not None:
            await self.db.delete(row)
            await self.db.flush()

    async def accept_step(self, principal_id: str, step: int) -> bool:
        """
        Marca `step` como usado. False si ya se aceptó ese step u otro posterior
        (código repetido). El UPDATE condicional decide entre requests concurrentes.
        """
        res = await self.db.execute(
            update(TotpSecret)
            .where(
                TotpSecret.principal_id == principal_id,
                or_(TotpSecret.last_used_step.is_(None), TotpSecret.last_used_step < step),
            )
            .values(last_used_step=step)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1

    async def last_used_step(self, principal_id: str) -> int | None:
        res = await self.db.execute(
            select(TotpSecret.last_used_step).where(TotpSecret.principal_id == principal_id)
        )
        return res.scalar_one_or_none()
