"""Core library for Cardwise."""

from cardwise.core.config import SchedulerConfig, Settings
from cardwise.core.errors import CardNotFoundError, CardwiseError, InvalidInputError
from cardwise.core.models import (
    BatchFailure,
    BatchResult,
    Card,
    CardDraft,
    CardEdit,
    CardPhase,
    ReviewItem,
    ReviewOutcome,
    ReviewRating,
    ScheduleState,
    Stats,
)
from cardwise.core.repository import CardRepository
from cardwise.core.review import ReviewEngine
from cardwise.core.scheduler import CardScheduler
from cardwise.core.service import CardwiseService
from cardwise.core.stats import StatisticsEngine
from cardwise.core.storage import CardDatabase

__all__ = [
    # Models
    "BatchFailure",
    "BatchResult",
    "Card",
    "CardDraft",
    "CardEdit",
    "CardPhase",
    "ReviewItem",
    "ReviewOutcome",
    "ReviewRating",
    "ScheduleState",
    "Stats",
    # Errors
    "CardNotFoundError",
    "CardwiseError",
    "InvalidInputError",
    # Config
    "SchedulerConfig",
    "Settings",
    # Engines
    "CardDatabase",
    "CardRepository",
    "CardScheduler",
    "CardwiseService",
    "ReviewEngine",
    "StatisticsEngine",
]
