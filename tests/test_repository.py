"""Tests for tenant-scoped card CRUD and search."""

import sqlite3
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from cardwise.core.errors import InvalidInputError
from cardwise.core.models import CardPhase, ScheduleState
from cardwise.core.repository import CardRepository
from cardwise.core.storage import CardDatabase

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_dir):
    return CardDatabase(temp_dir / "cardwise.db")


@pytest.fixture
def repo(db):
    """Create a CardRepository with a fixed clock."""
    return CardRepository(db, clock=lambda: NOW)


def _set_due(db: CardDatabase, tenant_id: str, card_id: int, due: datetime) -> None:
    with db.connection() as conn:
        db.update_schedule_state(conn, tenant_id, card_id, ScheduleState(due=due))


class TestCreateCard:
    def test_create_returns_id(self, repo):
        card_id = repo.create_card("alice", "Practice scales", ["music"])
        card = repo.get_card("alice", card_id)

        assert card is not None
        assert card.id == card_id
        assert card.instructions == "Practice scales"
        assert card.tags == ["music"]
        assert card.due == "today"

    def test_initial_schedule_state(self, repo, db):
        card_id = repo.create_card("alice", "Q")
        with db.connection() as conn:
            state = db.get_schedule_state(conn, "alice", card_id)

        assert state == ScheduleState.initial(NOW)
        assert state.phase == CardPhase.NEW
        assert state.reps == 0
        assert state.last_review is None

    def test_tags_trimmed_and_deduplicated(self, repo):
        card_id = repo.create_card("alice", "Q", [" b ", "a", "b", ""])
        assert repo.get_card("alice", card_id).tags == ["a", "b"]

    def test_blank_instructions_rejected(self, repo):
        with pytest.raises(InvalidInputError):
            repo.create_card("alice", "   ")
        assert repo.get_all_cards("alice") == []

    def test_ids_are_unique_across_tenants(self, repo):
        a = repo.create_card("alice", "Same text")
        b = repo.create_card("bob", "Same text")
        assert a != b


class TestEditCard:
    def test_edit_instructions(self, repo):
        card_id = repo.create_card("alice", "Old", ["x"])
        assert repo.edit_card("alice", card_id, instructions="New") is True

        card = repo.get_card("alice", card_id)
        assert card.instructions == "New"
        assert card.tags == ["x"]

    def test_tags_replace_all(self, repo):
        card_id = repo.create_card("alice", "Q", ["x", "y"])
        repo.edit_card("alice", card_id, tags=["z"])
        assert repo.get_card("alice", card_id).tags == ["z"]

    def test_empty_tag_list_clears_tags(self, repo):
        card_id = repo.create_card("alice", "Q", ["x"])
        repo.edit_card("alice", card_id, tags=[])
        assert repo.get_card("alice", card_id).tags == []

    def test_missing_card_returns_false(self, repo):
        assert repo.edit_card("alice", 999, instructions="New") is False

    def test_blank_instructions_rejected(self, repo):
        card_id = repo.create_card("alice", "Q")
        with pytest.raises(InvalidInputError):
            repo.edit_card("alice", card_id, instructions=" ")


class TestDeleteCard:
    def test_delete(self, repo):
        card_id = repo.create_card("alice", "Q", ["x"])
        assert repo.delete_card("alice", card_id) is True
        assert repo.get_card("alice", card_id) is None
        assert repo.get_all_cards("alice") == []

    def test_delete_missing_returns_false(self, repo):
        assert repo.delete_card("alice", 12345) is False

    def test_deleted_card_not_searchable(self, repo):
        card_id = repo.create_card("alice", "Unique giraffe phrase")
        repo.delete_card("alice", card_id)
        assert repo.search_cards("alice", "giraffe") == []


class TestListing:
    def test_newest_first(self, db):
        times = iter([NOW, NOW + timedelta(minutes=1)])
        repo = CardRepository(db, clock=lambda: next(times))
        first = repo.create_card("alice", "First")
        second = repo.create_card("alice", "Second")

        # The clock is exhausted; listing only needs "today"
        repo.clock = lambda: NOW
        assert [c.id for c in repo.get_all_cards("alice")] == [second, first]

    def test_tag_filter_matches_any(self, repo):
        a = repo.create_card("alice", "A", ["x"])
        b = repo.create_card("alice", "B", ["y"])
        repo.create_card("alice", "C", ["z"])

        ids = {c.id for c in repo.get_all_cards("alice", ["x", "y"])}
        assert ids == {a, b}

    def test_filtered_cards_keep_all_tags(self, repo):
        card_id = repo.create_card("alice", "A", ["x", "y"])
        cards = repo.get_all_cards("alice", ["x"])
        assert cards[0].id == card_id
        assert cards[0].tags == ["x", "y"]


class TestDueLabels:
    def test_today(self, repo):
        card_id = repo.create_card("alice", "Q")
        assert repo.get_card("alice", card_id).due == "today"

    def test_tomorrow(self, repo, db):
        card_id = repo.create_card("alice", "Q")
        _set_due(db, "alice", card_id, NOW + timedelta(days=1))
        assert repo.get_card("alice", card_id).due == "tomorrow"

    def test_later_is_iso_date(self, repo, db):
        card_id = repo.create_card("alice", "Q")
        _set_due(db, "alice", card_id, NOW + timedelta(days=5))
        assert repo.get_card("alice", card_id).due == "2025-06-20"

    def test_overdue_is_iso_date(self, repo, db):
        card_id = repo.create_card("alice", "Q")
        _set_due(db, "alice", card_id, NOW - timedelta(days=3))
        assert repo.get_card("alice", card_id).due == "2025-06-12"


class TestSearch:
    def test_search_by_word(self, repo):
        hit = repo.create_card("alice", "Practice Python decorators")
        repo.create_card("alice", "Learn Rust lifetimes")

        assert [c.id for c in repo.search_cards("alice", "decorators")] == [hit]

    def test_search_intersects_tags(self, repo):
        tagged = repo.create_card("alice", "Python generators", ["python"])
        repo.create_card("alice", "Python packaging", ["tooling"])

        results = repo.search_cards("alice", "python", ["python"])
        assert [c.id for c in results] == [tagged]

    def test_empty_query_lists_all(self, repo):
        repo.create_card("alice", "One")
        repo.create_card("alice", "Two")
        assert len(repo.search_cards("alice", "  ")) == 2

    def test_no_match(self, repo):
        repo.create_card("alice", "One")
        assert repo.search_cards("alice", "zebra") == []


class TestTenantIsolation:
    def test_other_tenant_sees_nothing(self, repo):
        a = repo.create_card("alice", "Shared instructions", ["x"])
        b = repo.create_card("bob", "Shared instructions", ["x"])

        assert [c.id for c in repo.get_all_cards("bob")] == [b]
        assert [c.id for c in repo.search_cards("bob", "shared")] == [b]
        assert [c.id for c in repo.get_all_cards("bob", ["x"])] == [b]
        assert repo.get_card("bob", a) is None

    def test_other_tenant_cannot_edit_or_delete(self, repo):
        card_id = repo.create_card("alice", "Mine", ["x"])

        assert repo.edit_card("bob", card_id, instructions="Stolen", tags=["y"]) is False
        assert repo.delete_card("bob", card_id) is False

        card = repo.get_card("alice", card_id)
        assert card.instructions == "Mine"
        assert card.tags == ["x"]


class TestBatches:
    def test_create_batch_partial_failure(self, repo):
        result = repo.create_cards(
            "alice",
            [
                {"instructions": "One", "tags": ["x"]},
                {"instructions": "   "},
                {"tags": ["missing instructions"]},
                {"instructions": "Two"},
            ],
        )

        assert len(result.successful) == 2
        assert [f.index for f in result.failed] == [1, 2]
        assert len(repo.get_all_cards("alice")) == 2

    def test_validation_error_is_one_line(self, repo):
        result = repo.create_cards("alice", [{"tags": ["x"]}])
        assert result.failed[0].error == "instructions: Field required"

    def test_edit_batch_item_without_card_id(self, repo):
        result = repo.edit_cards("alice", [{"instructions": "x"}])
        assert result.failed[0].index == 0
        assert result.failed[0].error == "card_id: Field required"

    def test_edit_batch(self, repo):
        card_id = repo.create_card("alice", "Q")
        result = repo.edit_cards(
            "alice",
            [{"card_id": card_id, "instructions": "Edited"}, {"card_id": 999999, "tags": []}],
        )

        assert [r.card_id for r in result.successful] == [card_id]
        assert result.failed[0].card_id == 999999
        assert result.failed[0].error == "not found"
        assert repo.get_card("alice", card_id).instructions == "Edited"

    def test_delete_batch_partial_failure(self, repo):
        valid = repo.create_card("alice", "Q")
        result = repo.delete_cards("alice", [valid, 999999])

        assert result.model_dump(exclude_none=True) == {
            "successful": [{"card_id": valid}],
            "failed": [{"card_id": 999999, "error": "not found"}],
        }
        assert repo.get_card("alice", valid) is None

    def test_delete_batch_on_locked_database(self, temp_dir):
        db = CardDatabase(temp_dir / "locked.db", timeout=0.1)
        repo = CardRepository(db, clock=lambda: NOW)
        ids = [repo.create_card("alice", "A"), repo.create_card("alice", "B")]

        lock = sqlite3.connect(db.db_path)
        try:
            lock.execute("BEGIN IMMEDIATE")
            result = repo.delete_cards("alice", ids)
        finally:
            lock.rollback()
            lock.close()

        assert result.successful == []
        assert [f.card_id for f in result.failed] == ids
        assert all("locked" in f.error for f in result.failed)
        assert len(repo.get_all_cards("alice")) == 2

    def test_all_succeed_reports_empty_failures(self, repo):
        a = repo.create_card("alice", "A")
        result = repo.delete_cards("alice", [a])
        assert result.failed == []

    def test_search_many(self, repo):
        hit = repo.create_card("alice", "Python decorators")
        result = repo.search_many("alice", ["decorators", "zebra"])

        assert [h.query for h in result.successful] == ["decorators", "zebra"]
        assert [c.id for c in result.successful[0].cards] == [hit]
        assert result.successful[1].cards == []
