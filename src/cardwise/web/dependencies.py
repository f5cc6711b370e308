"""Dependency injection for FastAPI routes."""

from functools import lru_cache

from fastapi import Header, HTTPException

from cardwise.core.config import Settings, configure_logging
from cardwise.core.service import CardwiseService


@lru_cache
def get_settings() -> Settings:
    """Get settings from the environment (singleton)."""
    return Settings()


@lru_cache
def get_service() -> CardwiseService:
    """Get the service instance (singleton)."""
    settings = get_settings()
    configure_logging(settings.log_level)
    return CardwiseService(settings)


def get_tenant(x_tenant_id: str | None = Header(default=None)) -> str:
    """Tenant identifier from the ``X-Tenant-ID`` header."""
    if x_tenant_id is None or not x_tenant_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Tenant-ID header")
    return x_tenant_id.strip()


def parse_tags(tags: str | None) -> list[str]:
    """Split a comma-separated ``tags`` query parameter."""
    if not tags:
        return []
    return [t.strip() for t in tags.split(",") if t.strip()]
