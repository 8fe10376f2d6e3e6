"""
Tenant corrente per richiesta/task, via contextvars.
Il middleware lo imposta; servizi e job in background lo leggono da qui.
"""
from contextvars import ContextVar, Token
from typing import Awaitable, Optional, TypeVar
import logging

from .exceptions import TenantNotResolved

logger = logging.getLogger(__name__)

T = TypeVar("T")

current_tenant_id: ContextVar[Optional[str]] = ContextVar("current_tenant_id", default=None)


class TenantContext:

    @staticmethod
    def set_tenant_id(tenant_id: Optional[str]) -> Token:
        logger.debug(f"Tenant context -> {tenant_id}")
        return current_tenant_id.set(tenant_id)

    @staticmethod
    def get_tenant_id() -> Optional[str]:
        return current_tenant_id.get()

    @staticmethod
    def clear():
        current_tenant_id.set(None)

    @staticmethod
    def require_tenant_id() -> str:
        """Come get_tenant_id ma solleva TenantNotResolved se la richiesta non e' scopata"""
        tenant_id = current_tenant_id.get()
        if tenant_id is None:
            raise TenantNotResolved()
        return tenant_id


class TenantContextManager:
    """with TenantContextManager("acme01"): ... ripristina il tenant precedente all'uscita"""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self._token: Optional[Token] = None

    def __enter__(self) -> "TenantContextManager":
        self._token = TenantContext.set_tenant_id(self.tenant_id)
        return self

    def __exit__(self, *exc_info):
        if self._token is not None:
            current_tenant_id.reset(self._token)
            self._token = None


async def run_with_tenant_context(tenant_id: str, awaitable: Awaitable[T]) -> T:
    with TenantContextManager(tenant_id):
        return await awaitable
