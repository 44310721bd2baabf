"""Pytest configuration and shared fixtures."""
import os

# antes de importar quillhaven: settings se instancia al importar
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("TOTP_ENCRYPTION_KEY", "test-totp-key")
os.environ.setdefault("IDP_SECRET_KEY", "sk_test")

from datetime import datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from quillhaven.core.db import Base
from quillhaven.core.errors import ExternalServiceError
from quillhaven.models.principal import Principal, PrincipalStatus, RoleEnum
from quillhaven.models.session import LoginSession
from quillhaven.services.events import SecurityEventLog
from quillhaven.services.identity_provider import ExternalSession, ExternalUser
from quillhaven.services.sessions import SessionRegistry

START = datetime(2026, 3, 1, 12, 0, 0)


class FakeClock:
    """Reloj controlable (UTC naive)."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeIdentityProvider:
    """Proveedor de identidad en memoria con la misma interfaz que el cliente HTTP."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.users: dict[str, ExternalUser] = {}
        self.sessions: list[ExternalSession] = []
        self.revoked: list[str] = []
        self.fail = False
        self.calls: list[tuple[str, str]] = []

    def _check(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        if self.fail:
            raise ExternalServiceError("Identity provider timed out")

    def add_user(self, user_id: str, **fields: Any) -> ExternalUser:
        fields.setdefault("email", f"{user_id}@example.com")
        fields.setdefault("updated_at", self.clock() - timedelta(days=1))
        user = ExternalUser(id=user_id, **fields)
        self.users[user_id] = user
        return user

    async def get_user(self, principal_id: str) -> ExternalUser | None:
        self._check("get_user", principal_id)
        return self.users.get(principal_id)

    async def update_user(self, principal_id: str, **fields: Any) -> ExternalUser:
        self._check("update_user", principal_id)
        user = self.users.setdefault(principal_id, ExternalUser(id=principal_id))
        for k, v in fields.items():
            setattr(user, k, v)
        user.updated_at = self.clock()
        return user

    async def update_user_metadata(self, principal_id, public_metadata=None, private_metadata=None):
        self._check("update_user_metadata", principal_id)
        user = self.users.setdefault(principal_id, ExternalUser(id=principal_id))
        if public_metadata is not None:
            user.public_metadata = {**user.public_metadata, **public_metadata}
            if "two_factor_enabled" in public_metadata:
                user.two_factor_enabled = bool(public_metadata["two_factor_enabled"])
        if private_metadata is not None:
            user.private_metadata = {**user.private_metadata, **private_metadata}
        user.updated_at = self.clock()
        return user

    async def list_sessions(self, principal_id: str) -> list[ExternalSession]:
        self._check("list_sessions", principal_id)
        return [s for s in self.sessions if s.user_id == principal_id]

    async def revoke_session(self, token: str) -> None:
        self._check("revoke_session", token)
        self.revoked.append(token)


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database for each test."""
    eng = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    # pysqlite no emite BEGIN por su cuenta: sin esto los SAVEPOINT no funcionan
    @event.listens_for(eng.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def idp(clock):
    return FakeIdentityProvider(clock)


@pytest.fixture
def events(db_session, clock):
    return SecurityEventLog(db_session, clock, enabled=True)


@pytest.fixture
def registry(db_session, events, idp, clock):
    return SessionRegistry(db_session, events, idp=idp, clock=clock)


async def _add_principal(db_session, clock, principal_id: str, role: RoleEnum, **fields) -> Principal:
    p = Principal(
        id=principal_id,
        email=fields.pop("email", f"{principal_id}@example.com"),
        first_name=fields.pop("first_name", "Ana"),
        last_name=fields.pop("last_name", "Writer"),
        image_url="",
        email_verified=True,
        role=role,
        status=PrincipalStatus.active,
        two_factor_enabled=fields.pop("two_factor_enabled", False),
        created_at=clock(),
        updated_at=clock(),
        **fields,
    )
    db_session.add(p)
    await db_session.commit()
    return p


@pytest_asyncio.fixture
async def principal(db_session, clock):
    """A plain USER principal."""
    return await _add_principal(db_session, clock, "user_1", RoleEnum.user)


@pytest_asyncio.fixture
async def admin(db_session, clock):
    return await _add_principal(db_session, clock, "admin_1", RoleEnum.admin, first_name="Root")


@pytest.fixture
def make_session(db_session, clock):
    """Inserta sesiones directamente, sin pasar por el detector."""
    async def _make(
        principal_id: str,
        token: str,
        idle: timedelta = timedelta(0),
        age: timedelta | None = None,
        ip_address: str | None = "10.0.0.1",
        user_agent: str | None = "Mozilla/5.0",
        expires_in: timedelta = timedelta(days=1),
    ) -> LoginSession:
        now = clock()
        s = LoginSession(
            token=token,
            principal_id=principal_id,
            created_at=now - (age if age is not None else idle),
            last_active_at=now - idle,
            expires_at=now + expires_in,
            ip_address=ip_address,
            user_agent=user_agent,
            is_active=True,
        )
        db_session.add(s)
        await db_session.commit()
        return s
    return _make
