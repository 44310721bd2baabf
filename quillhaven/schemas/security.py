from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, Field

RiskLevel = Literal["low", "medium", "high"]
VerificationType = Literal["totp", "backup_code"]

# --- 2FA ---
class TwoFactorSetup(BaseModel):
    success: bool
    message: str
    secret: str | None = None
    provisioning_uri: str | None = None
    qr_code_png: str | None = None      # base64
    backup_codes: list[str] = Field(default_factory=list)

class TwoFactorVerifyIn(BaseModel):
    code: str = Field(..., min_length=6, max_length=16)
    type: VerificationType = "totp"

class TwoFactorVerification(BaseModel):
    success: bool
    type: VerificationType
    used_backup_code: bool = False
    message: str
    error: str | None = None

class BackupCodesOut(BaseModel):
    success: bool = True
    backup_codes: list[str]
    message: str = "Backup codes regenerated successfully"

# --- riesgo de login ---
class SuspiciousLoginResult(BaseModel):
    is_suspicious: bool
    factors: list[str] = Field(default_factory=list)
    risk_level: RiskLevel = "low"

# --- sesiones ---
class SessionOut(BaseModel):
    token: str
    principal_id: str
    created_at: datetime
    last_active_at: datetime
    expires_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    is_active: bool
    is_current: bool = False

    class Config:
        from_attributes = True

class SessionActivityIn(BaseModel):
    session_id: str | None = None

class RevokeSessionIn(BaseModel):
    token: str = Field(..., min_length=1)

class RevokeOthersOut(BaseModel):
    success: bool = True
    revoked: int

class SessionStatistics(BaseModel):
    total_sessions: int = 0
    active_sessions: int = 0
    recent_activity: int = 0
    last_active_at: datetime | None = None
    last_ip_address: str | None = None

# --- políticas ---
class PolicyReport(BaseModel):
    violations: list[str] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)
    actions_performed: bool = False
    revoked_sessions: int = 0
    remaining_sessions: int = 0
    total_sessions: int = 0

# --- eventos ---
class SecurityEventOut(BaseModel):
    principal_id: str
    kind: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    session_token: str | None = None
    timestamp: datetime

class SecurityOverview(BaseModel):
    two_factor_enabled: bool
    backup_codes_remaining: int
    sessions: list[SessionOut]
    security_events: list[SecurityEventOut]
    session_stats: SessionStatistics
    timestamp: datetime
