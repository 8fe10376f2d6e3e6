"""
Mappatura delle eccezioni multitenant su risposte HTTP.
Registrare con register_exception_handlers(app).
"""
from typing import Dict, Type
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .exceptions import (
    ConnectionFailure,
    MultitenantError,
    ProvisioningFailure,
    TenantAlreadyExists,
    TenantNotFound,
    TenantNotResolved,
)

logger = logging.getLogger(__name__)

_ERROR_STATUS: Dict[Type[MultitenantError], int] = {
    TenantNotResolved: status.HTTP_401_UNAUTHORIZED,
    TenantNotFound: status.HTTP_404_NOT_FOUND,
    TenantAlreadyExists: status.HTTP_409_CONFLICT,
    ProvisioningFailure: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ConnectionFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _status_for(exc: MultitenantError) -> int:
    for exc_type, code in _ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def register_exception_handlers(app: FastAPI, retry_after_seconds: int = 5):

    async def _multitenant_exception_handler(request: Request, exc: MultitenantError) -> JSONResponse:
        code = _status_for(exc)
        headers = {}
        if exc.retryable:
            headers["Retry-After"] = str(retry_after_seconds)
        if code >= 500:
            logger.error(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"{exc.error_code} on {request.method} {request.url.path}")
        return JSONResponse(status_code=code, content=exc.to_dict(), headers=headers)

    app.add_exception_handler(MultitenantError, _multitenant_exception_handler)
