"""Tests for reviewing, undo and the due queue."""

import sqlite3
import tempfile
import threading
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from cardwise.core.config import Settings
from cardwise.core.errors import CardNotFoundError, InvalidInputError
from cardwise.core.models import CardPhase, ReviewRating, ScheduleState
from cardwise.core.review import coerce_rating
from cardwise.core.service import CardwiseService

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def service(temp_dir):
    """Service with the default policy and a fixed clock."""
    return CardwiseService(Settings(db_path=temp_dir / "cardwise.db"), clock=lambda: NOW)


@pytest.fixture
def graduating_service(temp_dir):
    """Service whose new cards skip the learning steps."""
    settings = Settings(db_path=temp_dir / "cardwise.db", learning_steps=[])
    return CardwiseService(settings, clock=lambda: NOW)


def _history_count(service: CardwiseService, card_id: int) -> int:
    with service.db.connection() as conn:
        return conn.execute(
            "SELECT COUNT(*) FROM review_history WHERE card_id = ?", (card_id,)
        ).fetchone()[0]


def _review_state(stability: float, last_review: datetime, due: datetime) -> ScheduleState:
    return ScheduleState(
        phase=CardPhase.REVIEW,
        due=due,
        stability=stability,
        difficulty=5.0,
        scheduled_days=1,
        reps=3,
        last_review=last_review,
    )


class TestCoerceRating:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (1, ReviewRating.AGAIN),
            (ReviewRating.HARD, ReviewRating.HARD),
            ("3", ReviewRating.GOOD),
            ("easy", ReviewRating.EASY),
            (" Again ", ReviewRating.AGAIN),
        ],
    )
    def test_accepted(self, raw, expected):
        assert coerce_rating(raw) == expected

    @pytest.mark.parametrize("raw", [0, 5, -1, "five", "", True, 2.5])
    def test_rejected(self, raw):
        with pytest.raises(InvalidInputError, match="rating must be 1, 2, 3, or 4"):
            coerce_rating(raw)


class TestSubmitReview:
    def test_review_updates_state(self, service):
        card_id = service.cards.create_card("alice", "Practice scales")
        outcome = service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)

        state = service.reviews.get_schedule_state("alice", card_id)
        assert state.reps == 1
        assert state.phase == CardPhase.LEARNING
        assert state.last_review == NOW
        assert outcome.next_review_date == state.due.date()
        assert outcome.interval_days == 0

    def test_review_writes_one_snapshot(self, service):
        card_id = service.cards.create_card("alice", "Q")
        service.reviews.submit_review("alice", card_id, 3)
        service.reviews.submit_review("alice", card_id, 3)
        assert _history_count(service, card_id) == 2

    def test_missing_card(self, service):
        with pytest.raises(CardNotFoundError, match="Card 42 not found"):
            service.reviews.submit_review("alice", 42, ReviewRating.GOOD)

    def test_other_tenant_card_is_missing(self, service):
        card_id = service.cards.create_card("alice", "Q")
        with pytest.raises(CardNotFoundError):
            service.reviews.submit_review("bob", card_id, ReviewRating.GOOD)
        assert _history_count(service, card_id) == 0

    def test_invalid_rating_leaves_card_untouched(self, service):
        card_id = service.cards.create_card("alice", "Q")
        before = service.reviews.get_schedule_state("alice", card_id)

        with pytest.raises(InvalidInputError):
            service.reviews.submit_review("alice", card_id, 5)

        assert service.reviews.get_schedule_state("alice", card_id) == before
        assert _history_count(service, card_id) == 0

    def test_explicit_review_time(self, service):
        card_id = service.cards.create_card("alice", "Q")
        later = NOW + timedelta(days=2)
        service.reviews.submit_review("alice", card_id, ReviewRating.GOOD, now=later)
        assert service.reviews.get_schedule_state("alice", card_id).last_review == later


class TestUndo:
    def test_undo_restores_previous_state(self, service):
        card_id = service.cards.create_card("alice", "Q")
        before = service.reviews.get_schedule_state("alice", card_id)

        service.reviews.submit_review("alice", card_id, ReviewRating.EASY)
        assert service.reviews.undo_review("alice", card_id) is True

        assert service.reviews.get_schedule_state("alice", card_id) == before
        assert _history_count(service, card_id) == 0

    def test_second_undo_has_nothing_left(self, service):
        card_id = service.cards.create_card("alice", "Q")
        service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)

        assert service.reviews.undo_review("alice", card_id) is True
        assert service.reviews.undo_review("alice", card_id) is False

    def test_never_reviewed(self, service):
        card_id = service.cards.create_card("alice", "Q")
        assert service.reviews.undo_review("alice", card_id) is False

    def test_undo_walks_back_one_review_at_a_time(self, service):
        card_id = service.cards.create_card("alice", "Q")
        initial = service.reviews.get_schedule_state("alice", card_id)

        service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)
        after_first = service.reviews.get_schedule_state("alice", card_id)
        service.reviews.submit_review("alice", card_id, ReviewRating.GOOD, now=NOW + timedelta(hours=1))

        assert service.reviews.undo_review("alice", card_id) is True
        assert service.reviews.get_schedule_state("alice", card_id) == after_first
        assert service.reviews.undo_review("alice", card_id) is True
        assert service.reviews.get_schedule_state("alice", card_id) == initial

    def test_undo_scoped_to_tenant(self, service):
        card_id = service.cards.create_card("alice", "Q")
        service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)

        assert service.reviews.undo_review("bob", card_id) is False
        assert service.reviews.get_schedule_state("alice", card_id).reps == 1


class TestDueCards:
    def test_new_cards_are_due(self, service):
        card_id = service.cards.create_card("alice", "Q")
        assert [c.id for c in service.reviews.get_due_cards("alice")] == [card_id]

    def test_future_cards_not_due(self, service):
        card_id = service.cards.create_card("alice", "Q")
        with service.db.connection() as conn:
            service.db.update_schedule_state(
                conn, "alice", card_id, ScheduleState(due=NOW + timedelta(hours=1))
            )
        assert service.reviews.get_due_cards("alice") == []

    def test_least_retrievable_first(self, service):
        a = service.cards.create_card("alice", "A")
        b = service.cards.create_card("alice", "B")
        c = service.cards.create_card("alice", "C")
        states = {
            a: _review_state(100.0, NOW - timedelta(days=5), NOW - timedelta(days=1)),
            b: _review_state(10.0, NOW - timedelta(days=10), NOW - timedelta(hours=2)),
            c: _review_state(1.0, NOW - timedelta(days=30), NOW - timedelta(hours=1)),
        }
        with service.db.connection() as conn:
            for card_id, state in states.items():
                service.db.update_schedule_state(conn, "alice", card_id, state)

        assert [card.id for card in service.reviews.get_due_cards("alice")] == [c, b, a]
        assert [card.id for card in service.reviews.get_due_cards("alice", limit=2)] == [c, b]

    def test_limit_zero(self, service):
        service.cards.create_card("alice", "Q")
        assert service.reviews.get_due_cards("alice", limit=0) == []

    def test_negative_limit_rejected(self, service):
        with pytest.raises(InvalidInputError):
            service.reviews.get_due_cards("alice", limit=-1)

    def test_tag_filter(self, service):
        tagged = service.cards.create_card("alice", "A", ["python"])
        service.cards.create_card("alice", "B", ["rust"])

        due = service.reviews.get_due_cards("alice", tags=["python"])
        assert [c.id for c in due] == [tagged]

    def test_reviewed_card_leaves_queue(self, service):
        card_id = service.cards.create_card("alice", "Q")
        service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)
        assert service.reviews.get_due_cards("alice") == []

    def test_scoped_to_tenant(self, service):
        service.cards.create_card("alice", "Q")
        assert service.reviews.get_due_cards("bob") == []


class TestDeletion:
    def test_delete_removes_history(self, service):
        card_id = service.cards.create_card("alice", "Q")
        service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)

        assert service.cards.delete_card("alice", card_id) is True
        assert _history_count(service, card_id) == 0
        assert service.reviews.get_schedule_state("alice", card_id) is None
        assert service.reviews.undo_review("alice", card_id) is False
        with pytest.raises(CardNotFoundError):
            service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)


class TestBatchReview:
    def test_partial_failure(self, service):
        card_id = service.cards.create_card("alice", "Q")
        result = service.reviews.submit_reviews(
            "alice",
            [
                {"card_id": card_id, "rating": 3},
                {"card_id": 99999, "rating": 3},
                {"card_id": card_id, "rating": 7},
            ],
        )

        assert [r.card_id for r in result.successful] == [card_id]
        assert result.successful[0].interval_days == 0
        assert result.failed[0].card_id == 99999
        assert result.failed[0].error == "Card 99999 not found"
        assert result.failed[1].index == 2
        assert service.reviews.get_schedule_state("alice", card_id).reps == 1

    def test_invalid_rating_error_is_one_line(self, service):
        card_id = service.cards.create_card("alice", "Q")
        result = service.reviews.submit_reviews("alice", [{"card_id": card_id, "rating": 7}])

        error = result.failed[0].error
        assert error.startswith("rating: ")
        assert "\n" not in error

    def test_locked_database_fails_items_not_batch(self, temp_dir):
        settings = Settings(db_path=temp_dir / "cardwise.db", db_timeout=0.1)
        service = CardwiseService(settings, clock=lambda: NOW)
        first = service.cards.create_card("alice", "A")
        second = service.cards.create_card("alice", "B")

        lock = sqlite3.connect(settings.db_path)
        try:
            lock.execute("BEGIN IMMEDIATE")
            result = service.reviews.submit_reviews(
                "alice",
                [{"card_id": first, "rating": 3}, {"card_id": second, "rating": 3}],
            )
        finally:
            lock.rollback()
            lock.close()

        assert result.successful == []
        assert [f.card_id for f in result.failed] == [first, second]
        assert all("locked" in f.error for f in result.failed)

        retry = service.reviews.submit_reviews("alice", [{"card_id": first, "rating": 3}])
        assert [r.card_id for r in retry.successful] == [first]


class TestReviewLifecycle:
    """A card graduating straight to review and then lapsing."""

    def test_graduate_then_lapse(self, graduating_service):
        service = graduating_service
        card_id = service.cards.create_card("alice", "Explain quicksort")

        first = service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)
        state = service.reviews.get_schedule_state("alice", card_id)
        assert state.phase == CardPhase.REVIEW
        assert state.reps == 1
        assert first.interval_days >= 1
        assert first.next_review_date > NOW.date()

        later = state.due
        second = service.reviews.submit_review("alice", card_id, ReviewRating.AGAIN, now=later)
        state = service.reviews.get_schedule_state("alice", card_id)
        assert state.phase == CardPhase.RELEARNING
        assert state.lapses == 1
        assert state.reps == 2
        assert state.due == later + timedelta(minutes=10)
        assert second.interval_days == 0
        assert second.next_review_date == later.date()

    def test_again_on_new_card_is_due_immediately(self, graduating_service):
        service = graduating_service
        card_id = service.cards.create_card("alice", "Q")

        outcome = service.reviews.submit_review("alice", card_id, ReviewRating.AGAIN)
        assert outcome.next_review_date == date(2025, 6, 15)
        assert outcome.interval_days == 0
        assert [c.id for c in service.reviews.get_due_cards("alice")] == [card_id]


class TestReviewAtomicity:
    def test_concurrent_reviews_are_serialized(self, service):
        card_id = service.cards.create_card("alice", "Q")
        workers = 8
        errors = []

        def review():
            try:
                service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=review) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert service.reviews.get_schedule_state("alice", card_id).reps == workers
        assert _history_count(service, card_id) == workers

    def test_scheduler_failure_rolls_back_snapshot(self, service):
        card_id = service.cards.create_card("alice", "Q")
        before = service.reviews.get_schedule_state("alice", card_id)

        with patch.object(service.reviews.scheduler, "review", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError, match="boom"):
                service.reviews.submit_review("alice", card_id, ReviewRating.GOOD)

        assert _history_count(service, card_id) == 0
        assert service.reviews.get_schedule_state("alice", card_id) == before
        assert service.reviews.undo_review("alice", card_id) is False
