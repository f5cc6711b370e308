"""Statistics route."""

from fastapi import APIRouter, Depends

from cardwise.core.service import CardwiseService
from cardwise.web.dependencies import get_service, get_tenant, parse_tags

router = APIRouter()


@router.get("")
async def stats(
    tags: str | None = None,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
):
    """Counts, streaks and (without a tag filter) per-tag rollups."""
    return service.stats.get_stats(tenant_id, parse_tags(tags)).model_dump(exclude_none=True)
