# quillhaven/services/identity_provider.py
"""
Cliente del proveedor de identidad externo (API REST estilo Clerk).

Todo error de red, timeout o respuesta >= 400 se traduce a
ExternalServiceError, así el caller puede hacer rollback completo.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx

from quillhaven.core.clock import from_epoch_ms
from quillhaven.core.config import settings
from quillhaven.core.errors import ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass
class ExternalUser:
    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    image_url: str = ""
    email_verified: bool = False
    two_factor_enabled: bool = False
    public_metadata: dict[str, Any] = field(default_factory=dict)
    private_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ExternalUser":
        emails = data.get("email_addresses") or []
        primary_id = data.get("primary_email_address_id")
        primary = next((e for e in emails if e.get("id") == primary_id), emails[0] if emails else {})
        verification = primary.get("verification") or {}
        public = data.get("public_metadata") or {}
        return cls(
            id=data["id"],
            email=primary.get("email_address") or "",
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            image_url=data.get("image_url") or "",
            email_verified=verification.get("status") == "verified",
            # el flag nativo o el espejo que escribimos nosotros en public_metadata
            two_factor_enabled=bool(data.get("two_factor_enabled") or public.get("two_factor_enabled")),
            public_metadata=public,
            private_metadata=data.get("private_metadata") or {},
            created_at=from_epoch_ms(data.get("created_at")),
            updated_at=from_epoch_ms(data.get("updated_at")),
        )


@dataclass
class ExternalSession:
    id: str
    user_id: str
    status: str = "active"
    last_active_at: datetime | None = None
    expire_at: datetime | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ExternalSession":
        return cls(
            id=data["id"],
            user_id=data.get("user_id") or "",
            status=data.get("status") or "active",
            last_active_at=from_epoch_ms(data.get("last_active_at")),
            expire_at=from_epoch_ms(data.get("expire_at")),
        )


class IdentityProvider(Protocol):
    async def get_user(self, principal_id: str) -> ExternalUser | None: ...

    async def update_user(self, principal_id: str, **fields: Any) -> ExternalUser: ...

    async def update_user_metadata(
        self,
        principal_id: str,
        public_metadata: dict[str, Any] | None = None,
        private_metadata: dict[str, Any] | None = None,
    ) -> ExternalUser: ...

    async def list_sessions(self, principal_id: str) -> list[ExternalSession]: ...

    async def revoke_session(self, token: str) -> None: ...


class IdentityProviderClient:
    def __init__(
        self,
        base_url: str | None = None,
        secret_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.IDP_API_URL).rstrip("/"),
            headers={"Authorization": f"Bearer {secret_key if secret_key is not None else settings.IDP_SECRET_KEY}"},
            timeout=timeout or settings.IDP_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            r = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            logger.warning("timeout del proveedor de identidad: %s %s", method, path)
            raise ExternalServiceError("Identity provider timed out")
        except httpx.HTTPError as e:
            logger.warning("proveedor de identidad inalcanzable: %s %s (%s)", method, path, e)
            raise ExternalServiceError("Identity provider unreachable")
        return r

    @staticmethod
    def _ensure_ok(r: httpx.Response) -> None:
        if r.status_code >= 400:
            logger.warning("proveedor de identidad respondió %s en %s", r.status_code, r.request.url.path)
            raise ExternalServiceError(f"Identity provider rejected the request ({r.status_code})")

    async def get_user(self, principal_id: str) -> ExternalUser | None:
        r = await self._request("GET", f"/users/{principal_id}")
        if r.status_code == 404:
            return None
        self._ensure_ok(r)
        return ExternalUser.from_payload(r.json())

    async def update_user(self, principal_id: str, **fields: Any) -> ExternalUser:
        r = await self._request("PATCH", f"/users/{principal_id}", json=fields)
        self._ensure_ok(r)
        return ExternalUser.from_payload(r.json())

    async def update_user_metadata(
        self,
        principal_id: str,
        public_metadata: dict[str, Any] | None = None,
        private_metadata: dict[str, Any] | None = None,
    ) -> ExternalUser:
        body: dict[str, Any] = {}
        if public_metadata is not None:
            body["public_metadata"] = public_metadata
        if private_metadata is not None:
            body["private_metadata"] = private_metadata
        r = await self._request("PATCH", f"/users/{principal_id}/metadata", json=body)
        self._ensure_ok(r)
        return ExternalUser.from_payload(r.json())

    async def list_sessions(self, principal_id: str) -> list[ExternalSession]:
        r = await self._request("GET", "/sessions", params={"user_id": principal_id, "status": "active"})
        self._ensure_ok(r)
        data = r.json()
        items = data.get("data", []) if isinstance(data, dict) else data
        return [ExternalSession.from_payload(s) for s in items]

    async def revoke_session(self, token: str) -> None:
        r = await self._request("POST", f"/sessions/{token}/revoke")
        if r.status_code == 404:
            # ya no existe del otro lado: nada que revocar
            logger.info("sesión %s ya no existe en el proveedor", token)
            return
        self._ensure_ok(r)
