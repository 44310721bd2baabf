# quillhaven/core/errors.py
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class SecurityError(Exception):
    """Base de los errores del núcleo de seguridad (cada uno sabe su status HTTP)."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "security_error"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class AuthenticationRequired(SecurityError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "authentication_required"


class NotFound(SecurityError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class AccessDenied(SecurityError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "access_denied"


class ValidationError(SecurityError):
    status_code = 422
    code = "validation_error"


class ExternalServiceError(SecurityError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "external_service_error"


class ConflictError(SecurityError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


async def security_error_handler(request: Request, exc: SecurityError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


async def unexpected_error_handler(request: Request, exc: Exception):
    # sin detalles internos hacia afuera
    logger.exception("error no controlado en %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_error", "detail": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SecurityError, security_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unexpected_error_handler)
