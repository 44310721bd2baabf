from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from quillhaven.api.deps import (
    client_ip, get_current_principal, get_events, get_policy_engine, get_registry,
    get_session_token, get_two_factor, require_roles,
)
from quillhaven.core.clock import utcnow
from quillhaven.core.db import get_db
from quillhaven.models.principal import Principal, RoleEnum
from quillhaven.schemas.security import (
    BackupCodesOut, PolicyReport, RevokeOthersOut, RevokeSessionIn, SecurityEventOut,
    SecurityOverview, SessionOut, SuspiciousLoginResult, TwoFactorSetup,
    TwoFactorVerification, TwoFactorVerifyIn,
)
from quillhaven.services.backup_codes import BackupCodeManager
from quillhaven.services.events import SecurityEventLog, to_event_out
from quillhaven.services.policy import SecurityPolicyEngine
from quillhaven.services.sessions import SessionRegistry
from quillhaven.services.two_factor import TwoFactorService

router = APIRouter(prefix="/security", tags=["security"])


def _sessions_out(sessions, current_token: str | None) -> list[SessionOut]:
    out = []
    for s in sessions:
        item = SessionOut.model_validate(s)
        item.is_current = s.token == current_token
        out.append(item)
    return out


@router.get("", response_model=SecurityOverview)
async def overview(
    principal: Principal = Depends(get_current_principal),
    current_token: str | None = Depends(get_session_token),
    registry: SessionRegistry = Depends(get_registry),
    events: SecurityEventLog = Depends(get_events),
    db: AsyncSession = Depends(get_db),
):
    sessions = await registry.list_active(principal.id)
    recent = await events.list_for_principal(principal.id, limit=20)
    stats = await registry.statistics(principal.id)
    remaining = await BackupCodeManager(db, events).remaining(principal.id)
    return SecurityOverview(
        two_factor_enabled=principal.two_factor_enabled,
        backup_codes_remaining=remaining,
        sessions=_sessions_out(sessions, current_token),
        security_events=[to_event_out(e) for e in recent],
        session_stats=stats,
        timestamp=utcnow(),
    )


# ---------- 2FA ----------
@router.post("/2fa/enable", response_model=TwoFactorSetup)
async def enable_two_factor(
    principal: Principal = Depends(get_current_principal),
    svc: TwoFactorService = Depends(get_two_factor),
):
    # única respuesta donde viaja el secreto y los códigos en claro
    return await svc.enable(principal.id)


@router.post("/2fa/disable")
async def disable_two_factor(
    principal: Principal = Depends(get_current_principal),
    svc: TwoFactorService = Depends(get_two_factor),
):
    await svc.disable(principal.id)
    return {"success": True, "message": "Two-factor authentication disabled"}


@router.post("/2fa/verify", response_model=TwoFactorVerification)
async def verify_two_factor(
    body: TwoFactorVerifyIn,
    principal: Principal = Depends(get_current_principal),
    svc: TwoFactorService = Depends(get_two_factor),
):
    return await svc.verify(principal.id, body.code, body.type)


@router.post("/backup-codes/regenerate", response_model=BackupCodesOut)
async def regenerate_backup_codes(
    principal: Principal = Depends(get_current_principal),
    svc: TwoFactorService = Depends(get_two_factor),
):
    codes = await svc.regenerate_backup_codes(principal.id)
    return BackupCodesOut(backup_codes=codes)


# ---------- sesiones ----------
@router.get("/sessions", response_model=list[SessionOut])
async def list_sessions(
    principal: Principal = Depends(get_current_principal),
    current_token: str | None = Depends(get_session_token),
    registry: SessionRegistry = Depends(get_registry),
):
    return _sessions_out(await registry.list_active(principal.id), current_token)


@router.post("/sessions/revoke")
async def revoke_session(
    body: RevokeSessionIn,
    principal: Principal = Depends(get_current_principal),
    registry: SessionRegistry = Depends(get_registry),
):
    ended = await registry.revoke(principal.id, body.token)
    return {"success": True, "ended": ended}


@router.post("/sessions/revoke-others", response_model=RevokeOthersOut)
async def revoke_other_sessions(
    principal: Principal = Depends(get_current_principal),
    current_token: str | None = Depends(get_session_token),
    registry: SessionRegistry = Depends(get_registry),
):
    revoked = await registry.revoke_all_other(principal.id, current_token)
    return RevokeOthersOut(revoked=revoked)


@router.post("/policies/enforce", response_model=PolicyReport)
async def enforce_policies(
    principal: Principal = Depends(get_current_principal),
    engine: SecurityPolicyEngine = Depends(get_policy_engine),
):
    return await engine.enforce(principal.id)


@router.get("/suspicious-login", response_model=SuspiciousLoginResult)
async def check_suspicious_login(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    registry: SessionRegistry = Depends(get_registry),
    db: AsyncSession = Depends(get_db),
):
    result = await registry.detector.detect(
        principal.id, client_ip(request), request.headers.get("user-agent")
    )
    await db.commit()
    return result


# ---------- eventos ----------
@router.get("/events", response_model=list[SecurityEventOut])
async def list_events(
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
    events: SecurityEventLog = Depends(get_events),
):
    return [to_event_out(e) for e in await events.list_for_principal(principal.id, limit=limit)]


@router.get("/events/{principal_id}", response_model=list[SecurityEventOut])
async def list_events_for(
    principal_id: str,
    limit: int = Query(50, ge=1, le=200),
    _admin: Principal = Depends(require_roles(RoleEnum.admin, "security_events")),
    events: SecurityEventLog = Depends(get_events),
):
    return [to_event_out(e) for e in await events.list_for_principal(principal_id, limit=limit)]
