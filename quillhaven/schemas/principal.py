from datetime import datetime
from pydantic import BaseModel
from quillhaven.models.principal import PrincipalStatus, RoleEnum

class PrincipalOut(BaseModel):
    id: str
    # sin EmailStr: las cuentas anonimizadas usan un dominio .local
    email: str
    first_name: str
    last_name: str
    image_url: str
    email_verified: bool
    role: RoleEnum
    status: PrincipalStatus
    two_factor_enabled: bool
    last_login_at: datetime | None = None

    class Config:
        from_attributes = True

class RoleInfo(BaseModel):
    role: RoleEnum
    permissions: list[str]
    status: PrincipalStatus
    can_manage_users: bool
    can_edit_content: bool
    can_view_analytics: bool

class RoleUpdateIn(BaseModel):
    principal_id: str
    role: str      # se valida en el servicio (ValidationError si no es USER/EDITOR/ADMIN)
