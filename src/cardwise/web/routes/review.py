"""Review, undo and due-card routes."""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, model_validator

from cardwise.core.models import Card, ReviewOutcome
from cardwise.core.service import CardwiseService
from cardwise.web.dependencies import get_service, get_tenant, parse_tags

router = APIRouter()


class ReviewRequest(BaseModel):
    """A single review (``card_id``/``rating``) or a batch (``reviews``).

    Ratings are validated by the review engine so out-of-range values get
    the same message on both paths.
    """

    card_id: int | None = None
    rating: int | None = None
    reviews: list[dict] | None = None

    @model_validator(mode="after")
    def _single_or_batch(self):
        if self.reviews is None and (self.card_id is None or self.rating is None):
            raise ValueError("either 'card_id' and 'rating' or 'reviews' must be provided")
        return self


@router.get("/due-cards")
async def due_cards(
    limit: int | None = Query(default=None, ge=0),
    tags: str | None = None,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
) -> dict[str, list[Card]]:
    """Cards due now, the ones closest to being forgotten first."""
    return {"cards": service.reviews.get_due_cards(tenant_id, limit, parse_tags(tags))}


@router.post("/review")
async def submit_review(
    body: ReviewRequest,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
):
    """Rate a card (1=Again, 2=Hard, 3=Good, 4=Easy), or a batch of cards."""
    if body.reviews is not None:
        return service.reviews.submit_reviews(tenant_id, body.reviews).model_dump(
            mode="json", exclude_none=True
        )
    outcome: ReviewOutcome = service.reviews.submit_review(tenant_id, body.card_id, body.rating)
    return outcome.model_dump(mode="json")


@router.post("/review/{card_id}/undo")
async def undo_review(
    card_id: int,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
):
    """Undo the most recent review of a card."""
    if not service.reviews.undo_review(tenant_id, card_id):
        raise HTTPException(status_code=404, detail=f"No review to undo for card {card_id}")
    return {"card_id": card_id, "undone": True}
