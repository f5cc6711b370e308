"""Pydantic models for Cardwise cards, schedule state and results."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from enum import IntEnum, StrEnum
from typing import Generic, TypeVar

from fsrs import State
from pydantic import BaseModel, Field, field_validator

T = TypeVar("T")


def utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to UTC, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class ReviewRating(IntEnum):
    """Rating enum matching FSRS with friendlier names."""

    AGAIN = 1  # Forgot completely
    HARD = 2  # Remembered with significant difficulty
    GOOD = 3  # Remembered with some effort
    EASY = 4  # Remembered effortlessly


class CardPhase(StrEnum):
    """Coarse memory phase of a card.

    FSRS has no separate "new" state: a card that was never reviewed is a
    fresh FSRS card in the learning state. ``NEW`` exists so callers can
    tell unreviewed cards apart.
    """

    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"

    @classmethod
    def from_fsrs(cls, state: State) -> CardPhase:
        """Convert from FSRS State enum."""
        mapping = {
            State.Learning: cls.LEARNING,
            State.Review: cls.REVIEW,
            State.Relearning: cls.RELEARNING,
        }
        return mapping.get(state, cls.LEARNING)

    def to_fsrs(self) -> State:
        """Convert to FSRS State enum."""
        mapping = {
            CardPhase.NEW: State.Learning,
            CardPhase.LEARNING: State.Learning,
            CardPhase.REVIEW: State.Review,
            CardPhase.RELEARNING: State.Relearning,
        }
        return mapping.get(self, State.Learning)


class ScheduleState(BaseModel):
    """Current memory-model state of one card."""

    phase: CardPhase = CardPhase.NEW
    due: datetime
    stability: float = Field(default=0.0, ge=0.0)
    difficulty: float = 0.0
    elapsed_days: int = 0
    scheduled_days: int = 0
    learning_steps: int = 0
    reps: int = 0
    lapses: int = 0
    last_review: datetime | None = None

    @field_validator("due", "last_review")
    @classmethod
    def _normalize_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @classmethod
    def initial(cls, now: datetime) -> ScheduleState:
        """State of a freshly created card: new and due immediately."""
        return cls(due=now)


class Card(BaseModel):
    """A card as returned to callers."""

    id: int
    instructions: str
    tags: list[str] = Field(default_factory=list)
    due: str


class CardDraft(BaseModel):
    """Input for creating a card."""

    instructions: str
    tags: list[str] = Field(default_factory=list)


class CardEdit(BaseModel):
    """Input for editing a card. Fields left as None are unchanged."""

    card_id: int
    instructions: str | None = None
    tags: list[str] | None = None


class ReviewItem(BaseModel):
    """One (card, rating) pair of a batch review."""

    card_id: int
    rating: ReviewRating


class ReviewOutcome(BaseModel):
    """Result of reviewing a card."""

    next_review_date: date
    interval_days: int = Field(ge=0)


class CardRef(BaseModel):
    """Per-item output of batch create, edit and delete."""

    card_id: int


class ReviewedCard(ReviewOutcome):
    """Per-item output of a batch review."""

    card_id: int


class SearchHit(BaseModel):
    """Per-item output of a batch search."""

    query: str
    cards: list[Card] = Field(default_factory=list)


class BatchFailure(BaseModel):
    """A failed batch item, identified by card id or input position."""

    card_id: int | None = None
    index: int | None = None
    error: str


class BatchResult(BaseModel, Generic[T]):
    """Partial-failure result of a batch operation."""

    successful: list[T] = Field(default_factory=list)
    failed: list[BatchFailure] = Field(default_factory=list)


class TagStats(BaseModel):
    """Card counts for one tag."""

    total: int = 0
    due: int = 0


class Stats(BaseModel):
    """Aggregate statistics for a tenant."""

    due_today: int = 0
    total: int = 0
    cards_reviewed_last_24h: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    total_reviews: int = 0
    by_tag: dict[str, TagStats] | None = None


def due_label(due: datetime, today: date) -> str:
    """Human-relative label for a due timestamp."""
    due_day = as_utc(due).date()
    if due_day == today:
        return "today"
    if due_day == today + timedelta(days=1):
        return "tomorrow"
    return due_day.isoformat()


def normalize_tags(tags: list[str] | None) -> list[str]:
    """Trim labels, drop empty ones and remove duplicates, keeping order."""
    seen: list[str] = []
    for tag in tags or []:
        label = tag.strip()
        if label and label not in seen:
            seen.append(label)
    return seen
