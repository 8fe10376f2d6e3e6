from fastapi import APIRouter, Depends
from typing import Callable, List, Optional
from .dependencies import require_tenant_id


class MultitenantRouter:
    """APIRouter le cui route richiedono sempre un tenant risolto"""

    def __init__(self, prefix: str = "", tags: Optional[list] = None):
        self.router = APIRouter(prefix=prefix, tags=tags)
        self.tenant_dependency = require_tenant_id

    def add_route(self, path: str, methods: List[str], endpoint: Callable, **kwargs):
        """Registra la route aggiungendo la dipendenza tenant in testa"""
        dependencies = [Depends(self.tenant_dependency)] + list(kwargs.pop("dependencies", None) or [])
        self.router.add_api_route(
            path,
            endpoint,
            methods=methods,
            dependencies=dependencies,
            **kwargs
        )

    def _route(self, method: str, path: str, **kwargs):
        def decorator(func):
            self.add_route(path, [method], func, **kwargs)
            return func
        return decorator

    def get(self, path: str, **kwargs):
        return self._route("GET", path, **kwargs)

    def post(self, path: str, **kwargs):
        return self._route("POST", path, **kwargs)

    def put(self, path: str, **kwargs):
        return self._route("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs):
        return self._route("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs):
        return self._route("DELETE", path, **kwargs)
