import hashlib
import ipaddress
import re
import time
from typing import Iterable, Optional

TENANT_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')


def validate_tenant_id(tenant_id: Optional[str]) -> bool:
    """Valida che l'ID tenant sia alfanumerico e sicuro"""
    if not tenant_id or len(tenant_id) > 50:
        return False
    return TENANT_ID_PATTERN.fullmatch(tenant_id) is not None


def extract_subdomain(
    host: Optional[str],
    base_domain: str,
    reserved: Iterable[str] = ("www", "localhost"),
) -> Optional[str]:
    """
    Estrae il primo label dall'host (porta esclusa).
    Scarta label riservati, IP e label che contengono il nome del dominio base.
    """
    if not host:
        return None

    hostname = host.strip().lower()
    if hostname.startswith("["):
        # IPv6 letterale
        return None
    hostname = hostname.rsplit(":", 1)[0] if ":" in hostname else hostname

    try:
        ipaddress.ip_address(hostname)
        return None
    except ValueError:
        pass

    label = hostname.split(".")[0]
    base_name = base_domain.lower().split(".")[0]

    if not label or label in {r.lower() for r in reserved}:
        return None
    if base_name and base_name in label:
        return None
    return label


def create_tenant_database_name(tenant_id: str, base_name: str = "tenant") -> str:
    """Crea un nome database sicuro per il tenant"""
    safe_id = re.sub(r'[^a-zA-Z0-9]', '_', tenant_id)
    return f"{base_name}_{safe_id}"


def build_database_url(base_url: str, database_name: str) -> str:
    return f"{base_url.rstrip('/')}/{database_name}"


def generate_tenant_id(company_name: str, length: int = 8, now_ms: Optional[int] = None) -> str:
    """ID deterministico da nome azienda + timestamp (md5 troncato)"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    digest = hashlib.md5(f"{company_name}{now_ms}".encode()).hexdigest()
    return digest[:length]
