from fastapi import APIRouter, Depends, Request

from quillhaven.api.deps import client_ip, get_current_principal, get_registry, get_session_token
from quillhaven.core.errors import ValidationError
from quillhaven.models.principal import Principal
from quillhaven.schemas.security import SessionActivityIn, SessionStatistics
from quillhaven.services.sessions import SessionRegistry

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("/activity")
async def session_activity(
    request: Request,
    body: SessionActivityIn | None = None,
    principal: Principal = Depends(get_current_principal),
    current_token: str | None = Depends(get_session_token),
    registry: SessionRegistry = Depends(get_registry),
):
    if body and body.session_id and body.session_id != current_token:
        raise ValidationError("Session ID mismatch")
    if not current_token:
        raise ValidationError("Session ID is required")
    updated = await registry.update_activity(
        current_token,
        principal_id=principal.id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return {"success": updated}


@router.get("/statistics", response_model=SessionStatistics)
async def session_statistics(
    principal: Principal = Depends(get_current_principal),
    registry: SessionRegistry = Depends(get_registry),
):
    return await registry.statistics(principal.id)
