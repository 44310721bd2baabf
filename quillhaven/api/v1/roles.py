from fastapi import APIRouter, Depends

from quillhaven.api.deps import get_access, get_current_principal
from quillhaven.models.principal import Principal
from quillhaven.schemas.principal import PrincipalOut, RoleInfo, RoleUpdateIn
from quillhaven.services.access import AccessControl, has_permission, permissions_for

router = APIRouter(prefix="/roles", tags=["roles"])


@router.get("", response_model=RoleInfo)
async def current_role(principal: Principal = Depends(get_current_principal)):
    return RoleInfo(
        role=principal.role,
        permissions=permissions_for(principal.role),
        status=principal.status,
        can_manage_users=has_permission(principal.role, "manage_users"),
        can_edit_content=has_permission(principal.role, "moderate_content"),
        can_view_analytics=has_permission(principal.role, "view_analytics"),
    )


@router.put("", response_model=PrincipalOut)
async def change_role(
    body: RoleUpdateIn,
    principal: Principal = Depends(get_current_principal),
    access: AccessControl = Depends(get_access),
):
    # update_role valida el rol y exige ADMIN
    return await access.update_role(principal, body.principal_id, body.role)
