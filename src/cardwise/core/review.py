"""Review engine: applies ratings, keeps the undo log and ranks due cards."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from pydantic import ValidationError

from cardwise.core.errors import CardNotFoundError, InvalidInputError, error_message
from cardwise.core.models import (
    BatchFailure,
    BatchResult,
    Card,
    ReviewedCard,
    ReviewItem,
    ReviewOutcome,
    ReviewRating,
    ScheduleState,
    as_utc,
    normalize_tags,
    utcnow,
)
from cardwise.core.repository import ITEM_ERRORS, row_to_card
from cardwise.core.scheduler import CardScheduler
from cardwise.core.storage import CardDatabase, state_from_row, tag_filter_clause, to_db_timestamp

logger = logging.getLogger(__name__)


def coerce_rating(rating: ReviewRating | int | str) -> ReviewRating:
    """Validate a caller-supplied rating against the four FSRS grades."""
    if isinstance(rating, ReviewRating):
        return rating
    if isinstance(rating, str):
        key = rating.strip()
        if key.upper() in ReviewRating.__members__:
            return ReviewRating[key.upper()]
        if not key.isdigit():
            raise InvalidInputError("rating must be 1, 2, 3, or 4")
        rating = int(key)
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidInputError("rating must be 1, 2, 3, or 4")
    try:
        return ReviewRating(rating)
    except ValueError:
        raise InvalidInputError("rating must be 1, 2, 3, or 4")


class ReviewEngine:
    """Wraps the scheduler with persistence, undo and due-card ranking."""

    def __init__(
        self,
        db: CardDatabase,
        scheduler: CardScheduler,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.scheduler = scheduler
        self.clock = clock

    def submit_review(
        self,
        tenant_id: str,
        card_id: int,
        rating: ReviewRating | int | str,
        now: datetime | None = None,
    ) -> ReviewOutcome:
        """Review a card and update its state.

        The pre-review snapshot and the new state are written in a single
        transaction holding the write lock, so concurrent reviews of the same
        card are serialized.

        Raises:
            InvalidInputError: rating is not one of the four grades
            CardNotFoundError: the tenant has no such card
        """
        rating = coerce_rating(rating)
        now = as_utc(now or self.clock())

        with self.db.transaction() as conn:
            # 1. Load current state
            state = self.db.get_schedule_state(conn, tenant_id, card_id)
            if state is None:
                raise CardNotFoundError(card_id)

            # 2. Snapshot the pre-review state for undo and statistics
            self.db.append_snapshot(conn, tenant_id, card_id, state, rating.value, now)

            # 3. Schedule
            new_state, interval_days = self.scheduler.review(state, rating, now)

            # 4. Persist
            self.db.update_schedule_state(conn, tenant_id, card_id, new_state)

        logger.debug(
            "Reviewed card %s for tenant %s: %s -> %s, due %s",
            card_id,
            tenant_id,
            rating.name,
            new_state.phase,
            new_state.due.isoformat(),
        )
        return ReviewOutcome(next_review_date=new_state.due.date(), interval_days=interval_days)

    def undo_review(self, tenant_id: str, card_id: int) -> bool:
        """Restore the most recent snapshot of a card and consume it.

        Returns False when the card has no review left to undo.
        """
        with self.db.transaction() as conn:
            snapshot = self.db.latest_snapshot(conn, tenant_id, card_id)
            if snapshot is None:
                return False
            self.db.update_schedule_state(conn, tenant_id, card_id, state_from_row(snapshot))
            conn.execute("DELETE FROM review_history WHERE id = ?", (snapshot["id"],))

        logger.info("Undid review %s of card %s for tenant %s", snapshot["id"], card_id, tenant_id)
        return True

    def get_schedule_state(self, tenant_id: str, card_id: int) -> ScheduleState | None:
        """Get the current schedule state for a card."""
        with self.db.connection() as conn:
            return self.db.get_schedule_state(conn, tenant_id, card_id)

    def get_due_cards(
        self,
        tenant_id: str,
        limit: int | None = None,
        tags: list[str] | None = None,
        now: datetime | None = None,
    ) -> list[Card]:
        """Cards due at ``now``, the ones closest to being forgotten first.

        The whole due set is ranked by ascending retrievability (ties broken
        by earlier due date, then id) before ``limit`` is applied.
        """
        if limit is not None and limit < 0:
            raise InvalidInputError("limit must not be negative")
        now = as_utc(now or self.clock())

        clause, params = tag_filter_clause(tenant_id, normalize_tags(tags))
        with self.db.connection() as conn:
            rows = self.db.fetch_cards(
                conn,
                tenant_id,
                f" AND s.due <= ?{clause}",
                [to_db_timestamp(now), *params],
                order_by="s.due ASC, c.id ASC",
            )

        ranked = sorted(
            rows,
            key=lambda row: (
                self.scheduler.retrievability(state_from_row(row), now),
                row["due"],
                row["id"],
            ),
        )
        if limit is not None:
            ranked = ranked[:limit]
        return [row_to_card(row, now) for row in ranked]

    def submit_reviews(
        self,
        tenant_id: str,
        items: list[ReviewItem | dict],
        now: datetime | None = None,
    ) -> BatchResult[ReviewedCard]:
        """Review several cards; one failing item never aborts the others."""
        result = BatchResult[ReviewedCard]()
        for index, item in enumerate(items):
            try:
                review = ReviewItem.model_validate(item)
            except ValidationError as exc:
                result.failed.append(BatchFailure(index=index, error=error_message(exc)))
                continue
            try:
                outcome = self.submit_review(tenant_id, review.card_id, review.rating, now)
            except ITEM_ERRORS as exc:
                result.failed.append(
                    BatchFailure(card_id=review.card_id, error=error_message(exc))
                )
                continue
            result.successful.append(ReviewedCard(card_id=review.card_id, **outcome.model_dump()))
        logger.info(
            "Batch review for tenant %s: %d ok, %d failed",
            tenant_id,
            len(result.successful),
            len(result.failed),
        )
        return result
