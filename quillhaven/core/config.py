# quillhaven/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore")

    APP_NAME: str = "QuillHaven Security API"
    SECURITY_LEVEL: str = "development"   # development | staging | production
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000"

    # tokens de sesión emitidos por el proveedor de identidad
    JWT_SECRET: str = Field(default="change-me-in-prod")
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str | None = None

    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "quillhaven"
    DB_PASSWORD: str = "quillhaven"
    DB_NAME: str = "quillhaven"
    DATABASE_URL: str | None = None   # si está, gana sobre DB_*

    # --- proveedor de identidad externo ---
    IDP_API_URL: str = "https://api.clerk.com/v1"
    IDP_SECRET_KEY: str = ""
    IDP_TIMEOUT_SECONDS: float = 10.0

    # --- 2FA ---
    TOTP_ISSUER: str = "QuillHaven"
    TOTP_ENCRYPTION_KEY: str = Field(default="change-me-totp-key")
    BACKUP_CODES_COUNT: int = 10

    # --- políticas de sesión ---
    MAX_CONCURRENT_SESSIONS: int = 5
    SESSION_TIMEOUT_MINUTES: int = 1440        # 24h
    INACTIVE_SESSION_TIMEOUT_DAYS: int = 30
    REQUIRE_REAUTH_HOURS: int = 168            # 7 días
    SESSION_CLEANUP_BATCH_SIZE: int = 500

    # --- monitoreo ---
    LOG_SECURITY_EVENTS: bool = True
    ALERT_ON_SUSPICIOUS_ACTIVITY: bool = True

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()  # type: ignore[call-arg]
