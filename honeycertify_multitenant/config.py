"""
Configurazione applicazione multitenant.
Caricata da environment e .env tramite pydantic-settings.
"""
from functools import lru_cache
from typing import List, Optional
import logging

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings da environment (case insensitive) e file .env"""

    # App
    app_name: str = "honeycertify"
    debug: bool = False
    log_level: str = "INFO"

    # Database: registry master, base URL per i DB tenant, admin per CREATE DATABASE
    master_database_url: str = "postgresql+asyncpg://localhost/honeycertify_master"
    database_base_url: str = "postgresql+asyncpg://localhost"
    postgres_admin_url: str = "postgresql+asyncpg://localhost/postgres"
    database_echo: bool = False
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 3600

    # Risoluzione tenant
    base_domain: str = "example.com"
    reserved_subdomains: List[str] = ["www", "localhost"]
    tenant_header_name: str = "x-company-id"
    session_cookie_name: str = "session_token"
    session_claim_names: List[str] = ["companyId", "company_id", "tenant_id"]

    # Sessione JWT
    secret_key: SecretStr = SecretStr("")
    algorithm: str = "HS256"

    # Provisioning
    tenant_id_length: int = 8
    migration_command: str = "alembic upgrade head"

    # Directory e handle cache
    directory_cache_size: int = 1000
    directory_cache_ttl_seconds: int = 300
    directory_lookup_timeout_seconds: float = 5.0
    handle_cache_capacity: Optional[int] = None
    verify_connections: bool = True
    retry_after_seconds: int = 5

    # Admin API
    admin_token: SecretStr = SecretStr("")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """Settings condivise dal processo (cache_clear() nei test)"""
    return Settings()


def configure_logging(level: str = "INFO"):
    """Configura logging root per l'app"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
