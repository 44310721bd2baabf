import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from jose import jwt, JWTError

from quillhaven.core.config import settings
from quillhaven.core.errors import AuthenticationRequired

# --- tokens de sesión del proveedor de identidad ---

def decode_session_token(token: str) -> dict:
    """
    Valida el JWT de sesión emitido por el proveedor de identidad.
    Devuelve los claims; `sub` es el principal y `sid` el token de sesión.
    """
    options = {"verify_aud": False, "verify_iss": settings.JWT_ISSUER is not None}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=settings.JWT_ISSUER,
            options=options,
        )
    except JWTError:
        raise AuthenticationRequired("Invalid or expired session token")

    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise AuthenticationRequired("Invalid token payload")
    return payload

# --- cifrado del secreto TOTP ---

@lru_cache
def _fernet(key_material: str) -> Fernet:
    # cualquier string sirve como material: lo llevamos a 32 bytes url-safe
    key = base64.urlsafe_b64encode(hashlib.sha256(key_material.encode()).digest())
    return Fernet(key)

def encrypt_secret(plain: str, key_material: str | None = None) -> str:
    f = _fernet(key_material or settings.TOTP_ENCRYPTION_KEY)
    return f.encrypt(plain.encode()).decode("ascii")

def decrypt_secret(token: str, key_material: str | None = None) -> str | None:
    """None si el secreto fue cifrado con otra clave (rotación sin migrar)."""
    f = _fernet(key_material or settings.TOTP_ENCRYPTION_KEY)
    try:
        return f.decrypt(token.encode()).decode()
    except InvalidToken:
        return None

# --- helpers de auditoría ---

def partial_code(code: str) -> str:
    # nunca se loguea un código completo
    return (code or "")[:2] + "****"
