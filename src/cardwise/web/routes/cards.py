"""Card CRUD and search routes."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, model_validator

from cardwise.core.models import Card
from cardwise.core.service import CardwiseService
from cardwise.web.dependencies import get_service, get_tenant, parse_tags

router = APIRouter()


class CreateCardsRequest(BaseModel):
    """A single card (``instructions``/``tags``) or a batch (``cards``)."""

    instructions: str | None = None
    tags: list[str] = []
    # Items are validated one at a time so a bad item only fails itself
    cards: list[dict] | None = None

    @model_validator(mode="after")
    def _single_or_batch(self):
        if self.instructions is None and self.cards is None:
            raise ValueError("either 'instructions' or 'cards' must be provided")
        return self


class EditCardRequest(BaseModel):
    instructions: str | None = None
    tags: list[str] | None = None


class EditCardsRequest(BaseModel):
    cards: list[dict]


class DeleteCardsRequest(BaseModel):
    card_ids: list[int]


class SearchManyRequest(BaseModel):
    queries: list[str]
    tags: list[str] = []


@router.post("", status_code=201)
async def create_cards(
    body: CreateCardsRequest,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
):
    """Create one card, or a batch when ``cards`` is given."""
    if body.cards is not None:
        return service.cards.create_cards(tenant_id, body.cards).model_dump(exclude_none=True)
    card_id = service.cards.create_card(tenant_id, body.instructions, body.tags)
    return {"card_id": card_id}


@router.get("")
async def list_cards(
    tags: str | None = None,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
) -> dict[str, list[Card]]:
    """List all cards, optionally filtered by comma-separated tags."""
    return {"cards": service.cards.get_all_cards(tenant_id, parse_tags(tags))}


@router.get("/search")
async def search_cards(
    q: str = "",
    tags: str | None = None,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
) -> dict[str, list[Card]]:
    """Full-text search over card instructions."""
    return {"cards": service.cards.search_cards(tenant_id, q, parse_tags(tags))}


@router.post("/search")
async def search_many(
    body: SearchManyRequest,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
):
    """Run several searches in one call."""
    return service.cards.search_many(tenant_id, body.queries, body.tags).model_dump(
        exclude_none=True
    )


@router.patch("")
async def edit_cards(
    body: EditCardsRequest,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
):
    """Edit several cards; missing cards are reported as failures."""
    return service.cards.edit_cards(tenant_id, body.cards).model_dump(exclude_none=True)


@router.post("/delete")
async def delete_cards(
    body: DeleteCardsRequest,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
):
    """Delete several cards; missing cards are reported as failures."""
    return service.cards.delete_cards(tenant_id, body.card_ids).model_dump(exclude_none=True)


@router.get("/{card_id}")
async def get_card(
    card_id: int,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
) -> Card:
    card = service.cards.get_card(tenant_id, card_id)
    if card is None:
        raise HTTPException(status_code=404, detail=f"Card {card_id} not found")
    return card


@router.patch("/{card_id}")
async def edit_card(
    card_id: int,
    body: EditCardRequest,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
):
    """Edit a card's instructions and/or replace its tags."""
    if not service.cards.edit_card(tenant_id, card_id, body.instructions, body.tags):
        raise HTTPException(status_code=404, detail=f"Card {card_id} not found")
    return {"card_id": card_id}


@router.delete("/{card_id}")
async def delete_card(
    card_id: int,
    tenant_id: str = Depends(get_tenant),
    service: CardwiseService = Depends(get_service),
):
    """Delete a card with its tags and review history."""
    if not service.cards.delete_card(tenant_id, card_id):
        raise HTTPException(status_code=404, detail=f"Card {card_id} not found")
    return {"card_id": card_id}
