"""Shared CLI helpers."""

from rich.console import Console

from cardwise.core.config import Settings, configure_logging
from cardwise.core.service import CardwiseService

console = Console()

# Global service instance (initialized lazily)
_service: CardwiseService | None = None


def get_service() -> CardwiseService:
    """Get or create the service instance."""
    global _service
    if _service is None:
        settings = Settings()
        configure_logging(settings.log_level)
        _service = CardwiseService(settings)
    return _service


def split_tags(raw: str | None) -> list[str]:
    """Split a comma-separated tag option."""
    if not raw:
        return []
    return [t.strip() for t in raw.split(",") if t.strip()]


def truncate(text: str, width: int = 60) -> str:
    return text[:width] + "..." if len(text) > width else text
