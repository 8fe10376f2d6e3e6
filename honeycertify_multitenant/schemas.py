from pydantic import BaseModel, Field, field_validator
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from typing import Optional, List, Dict, Any, Protocol
from datetime import datetime
from enum import Enum


class ProvisioningState(str, Enum):
    REQUESTED = "requested"
    STORE_CREATED = "store_created"
    REGISTERED = "registered"
    MIGRATIONS_APPLIED = "migrations_applied"
    READY = "ready"
    FAILED = "failed"
    TORN_DOWN = "torn_down"


class TenantConfig(BaseModel):
    id: str
    company_name: str
    database_url: str
    subdomain: str
    created_at: datetime
    is_active: bool = True
    status: ProvisioningState = ProvisioningState.REQUESTED
    updated_at: Optional[datetime] = None

    @property
    def is_ready(self) -> bool:
        return self.is_active and self.status == ProvisioningState.READY

    @property
    def database_name(self) -> str:
        # Postgres: nome del database; SQLite: path del file, ne teniamo il nome
        database = make_url(self.database_url).database or ""
        return database.rsplit("/", 1)[-1]


class TenantCreate(BaseModel):
    """Schema per provisioning nuovo tenant"""
    company_name: str = Field(..., min_length=1, max_length=100)
    subdomain: str = Field(..., min_length=1, max_length=63, pattern=r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")

    class Config:
        json_schema_extra = {
            "example": {
                "company_name": "Acme Honey",
                "subdomain": "acme",
            }
        }


class TenantUpdate(BaseModel):
    """Solo stato attivo e connection descriptor sono modificabili"""
    is_active: Optional[bool] = None
    database_url: Optional[str] = Field(None, min_length=1)

    @field_validator("database_url")
    @classmethod
    def check_database_url(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                make_url(value)
            except ArgumentError as e:
                raise ValueError(f"Invalid connection descriptor: {e}") from e
        return value


class TenantResponse(BaseModel):
    id: str
    company_name: str
    subdomain: str
    database_name: str
    is_active: bool
    status: ProvisioningState
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: TenantConfig) -> "TenantResponse":
        return cls(
            id=config.id,
            company_name=config.company_name,
            subdomain=config.subdomain,
            database_name=config.database_name,
            is_active=config.is_active,
            status=config.status,
            created_at=config.created_at,
            updated_at=config.updated_at,
        )


class ProvisioningJobInfo(BaseModel):
    tenant_id: str
    company_name: str
    subdomain: str
    state: ProvisioningState
    last_completed_state: ProvisioningState
    created_at: datetime
    updated_at: datetime
    errors: List[Dict[str, Any]] = []


class TenantRegistryProtocol(Protocol):
    async def get(self, tenant_id: str) -> Optional[TenantConfig]: ...
    async def get_by_subdomain(self, subdomain: str) -> Optional[TenantConfig]: ...
    async def upsert(self, config: TenantConfig) -> TenantConfig: ...
    async def update_status(self, tenant_id: str, status: ProvisioningState) -> Optional[TenantConfig]: ...
    async def set_active(self, tenant_id: str, is_active: bool) -> Optional[TenantConfig]: ...
    async def rotate_database_url(self, tenant_id: str, database_url: str) -> Optional[TenantConfig]: ...
    async def list(self, skip: int = 0, limit: int = 100, active_only: bool = False) -> List[TenantConfig]: ...
