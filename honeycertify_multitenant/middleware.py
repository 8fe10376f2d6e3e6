from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from .context import TenantContext, current_tenant_id
from .resolver import TenantResolver


class MultitenantMiddleware(BaseHTTPMiddleware):
    """
    Risolve il tenant per ogni richiesta e lo propaga a valle:
    header sintetico, request.state.tenant_id e context var.
    Senza tenant la richiesta prosegue non scopata.
    """

    def __init__(self, app, resolver: TenantResolver, header_name: str = "x-company-id"):
        super().__init__(app)
        self.resolver = resolver
        self.header_key = header_name.lower().encode("latin-1")

    async def dispatch(self, request: Request, call_next):
        tenant_id = self.resolver.resolve(request)

        # L'header arriva solo dal resolver, mai dal client
        headers = [
            (key, value) for key, value in request.scope["headers"]
            if key.lower() != self.header_key
        ]
        if tenant_id:
            headers.append((self.header_key, tenant_id.encode("latin-1")))
        request.scope["headers"] = headers

        request.state.tenant_id = tenant_id
        token = TenantContext.set_tenant_id(tenant_id)
        try:
            return await call_next(request)
        finally:
            current_tenant_id.reset(token)
