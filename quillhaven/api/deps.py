from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.core.clock import Clock, utcnow
from quillhaven.core.db import get_db
from quillhaven.core.errors import AccessDenied, AuthenticationRequired
from quillhaven.core.security import decode_session_token
from quillhaven.models.principal import Principal, RoleEnum
from quillhaven.services.access import AccessControl
from quillhaven.services.events import SecurityEventLog
from quillhaven.services.identity_provider import IdentityProvider
from quillhaven.services.policy import SecurityPolicyEngine
from quillhaven.services.profile_sync import ProfileSyncEngine
from quillhaven.services.sessions import SessionRegistry
from quillhaven.services.two_factor import TwoFactorService

# auto_error=False: sin header respondemos 401 con nuestro formato de error
bearer = HTTPBearer(auto_error=False)


async def get_claims(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> dict:
    if creds is None:
        raise AuthenticationRequired("Authentication required")
    return decode_session_token(creds.credentials)


async def get_current_principal(
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    principal = await db.get(Principal, claims["sub"])
    if principal is None:
        raise AuthenticationRequired("User not found")
    if not principal.is_active:
        raise AccessDenied("User is not active")
    return principal


def get_session_token(claims: dict = Depends(get_claims)) -> str | None:
    # `sid` = token de la sesión actual en el proveedor
    return claims.get("sid")


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


# --- colaboradores ---

def get_clock() -> Clock:
    return utcnow


def get_idp(request: Request) -> IdentityProvider:
    return request.app.state.idp


def get_events(db: AsyncSession = Depends(get_db), clock: Clock = Depends(get_clock)) -> SecurityEventLog:
    return SecurityEventLog(db, clock)


def get_registry(
    db: AsyncSession = Depends(get_db),
    events: SecurityEventLog = Depends(get_events),
    idp: IdentityProvider = Depends(get_idp),
    clock: Clock = Depends(get_clock),
) -> SessionRegistry:
    return SessionRegistry(db, events, idp=idp, clock=clock)


def get_policy_engine(
    registry: SessionRegistry = Depends(get_registry),
    events: SecurityEventLog = Depends(get_events),
    clock: Clock = Depends(get_clock),
) -> SecurityPolicyEngine:
    return SecurityPolicyEngine(registry, events, clock=clock)


def get_two_factor(
    db: AsyncSession = Depends(get_db),
    idp: IdentityProvider = Depends(get_idp),
    events: SecurityEventLog = Depends(get_events),
    clock: Clock = Depends(get_clock),
) -> TwoFactorService:
    return TwoFactorService(db, idp, events, clock=clock)


def get_profile_sync(
    db: AsyncSession = Depends(get_db),
    idp: IdentityProvider = Depends(get_idp),
    events: SecurityEventLog = Depends(get_events),
    clock: Clock = Depends(get_clock),
) -> ProfileSyncEngine:
    return ProfileSyncEngine(db, idp, events, clock)


def get_access(
    db: AsyncSession = Depends(get_db),
    events: SecurityEventLog = Depends(get_events),
    idp: IdentityProvider = Depends(get_idp),
    clock: Clock = Depends(get_clock),
) -> AccessControl:
    return AccessControl(db, events, idp, clock)


# --- Role-based dependency ---
def require_roles(minimum: RoleEnum, resource: str = ""):
    async def _guard(
        principal: Principal = Depends(get_current_principal),
        access: AccessControl = Depends(get_access),
    ) -> Principal:
        await access.require_role(principal, minimum, resource)
        return principal
    return _guard
