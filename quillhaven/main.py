from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quillhaven.api.v1.profile_sync import router as profile_sync_router
from quillhaven.api.v1.roles import router as roles_router
from quillhaven.api.v1.security import router as security_router
from quillhaven.api.v1.sessions import router as sessions_router
from quillhaven.core.config import settings
from quillhaven.core.errors import register_exception_handlers
from quillhaven.core.logging import setup_logging
from quillhaven.services.identity_provider import IdentityProviderClient

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # un solo cliente httpx para todo el proceso
    if not hasattr(app.state, "idp"):
        app.state.idp = IdentityProviderClient()
    yield
    close = getattr(app.state.idp, "aclose", None)
    if close is not None:
        await close()


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

app.include_router(security_router)
app.include_router(sessions_router)
app.include_router(profile_sync_router)
app.include_router(roles_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
