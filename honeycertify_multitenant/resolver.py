"""
Risoluzione del tenant dalla richiesta HTTP.

Le sorgenti sono valutate in ordine (host, path, claim di sessione, query);
l'ultima che produce un valore vince. Nessun I/O.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging

from jose import JWTError, jwt
from starlette.requests import Request

from .config import Settings
from .utils import extract_subdomain, validate_tenant_id

logger = logging.getLogger(__name__)

TenantSource = Callable[[Request], Optional[str]]
ClaimsReader = Callable[[Request], Optional[Dict[str, Any]]]


def subdomain_source(base_domain: str, reserved: Iterable[str] = ("www", "localhost")) -> TenantSource:
    """Primo label dell'header Host"""
    reserved = tuple(reserved)

    def source(request: Request) -> Optional[str]:
        return extract_subdomain(request.headers.get("host"), base_domain, reserved)

    source.__name__ = "subdomain"
    return source


def path_source(request: Request) -> Optional[str]:
    """/company/<id>/..."""
    segments = request.url.path.split("/")
    if len(segments) > 2 and segments[1] == "company" and segments[2]:
        return segments[2]
    return None


def query_source(param: str = "company") -> TenantSource:
    def source(request: Request) -> Optional[str]:
        return request.query_params.get(param) or None

    source.__name__ = "query"
    return source


def session_claim_source(claims_reader: ClaimsReader, claim_names: Iterable[str]) -> TenantSource:
    """Claim company/tenant dalla sessione autenticata"""
    claim_names = tuple(claim_names)

    def source(request: Request) -> Optional[str]:
        claims = claims_reader(request)
        if not claims:
            return None
        for name in claim_names:
            value = claims.get(name)
            if value:
                return str(value)
        return None

    source.__name__ = "session"
    return source


class JwtSessionClaims:
    """
    Legge i claim della sessione da un JWT firmato.
    Token cercato in Authorization: Bearer, poi nel cookie di sessione.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", cookie_name: str = "session_token"):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.cookie_name = cookie_name

    def _token(self, request: Request) -> Optional[str]:
        auth = request.headers.get("authorization")
        if auth and auth.lower().startswith("bearer "):
            return auth[7:].strip() or None
        return request.cookies.get(self.cookie_name)

    def __call__(self, request: Request) -> Optional[Dict[str, Any]]:
        token = self._token(request)
        if not token or not self.secret_key:
            return None
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug(f"Ignoring invalid session token: {e}")
            return None


class TenantResolver:
    """Merge ordinato delle sorgenti: vince l'ultimo valore non vuoto"""

    def __init__(self, sources: List[TenantSource]):
        self.sources = list(sources)

    def resolve(self, request: Request) -> Optional[str]:
        tenant_id = None
        for source in self.sources:
            value = source(request)
            if not value:
                continue
            if not validate_tenant_id(value):
                logger.debug(f"Discarding invalid tenant id from {source.__name__}: {value!r}")
                continue
            tenant_id = value
        return tenant_id

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        claims_reader: Optional[ClaimsReader] = None,
    ) -> "TenantResolver":
        if claims_reader is None:
            claims_reader = JwtSessionClaims(
                settings.secret_key.get_secret_value(),
                settings.algorithm,
                settings.session_cookie_name,
            )
        return cls([
            subdomain_source(settings.base_domain, settings.reserved_subdomains),
            path_source,
            session_claim_source(claims_reader, settings.session_claim_names),
            query_source("company"),
        ])
