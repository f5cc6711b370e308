"""Tenant-scoped card CRUD, tag management and text search."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime

from pydantic import ValidationError

from cardwise.core.errors import CardwiseError, InvalidInputError, error_message
from cardwise.core.models import (
    BatchFailure,
    BatchResult,
    Card,
    CardDraft,
    CardEdit,
    CardRef,
    ScheduleState,
    SearchHit,
    due_label,
    normalize_tags,
    utcnow,
)
from cardwise.core.storage import (
    TAG_SEPARATOR,
    CardDatabase,
    from_db_timestamp,
    tag_filter_clause,
    to_db_timestamp,
)

logger = logging.getLogger(__name__)

NOT_FOUND = "not found"

# Errors a single batch item may raise without affecting its siblings,
# including a busy or locked database
ITEM_ERRORS = (CardwiseError, ValueError, ValidationError, sqlite3.Error)


def row_to_card(row: sqlite3.Row, now: datetime) -> Card:
    """Convert a row from ``CardDatabase.fetch_cards`` into a Card."""
    tags = sorted(row["tags"].split(TAG_SEPARATOR)) if row["tags"] else []
    return Card(
        id=row["id"],
        instructions=row["instructions"],
        tags=tags,
        due=due_label(from_db_timestamp(row["due"]), now.date()),
    )


class CardRepository:
    """Creates, edits, deletes and finds cards for one tenant at a time.

    Every method takes the tenant id first; rows belonging to another tenant
    are never read or written.
    """

    def __init__(self, db: CardDatabase, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def create_card(self, tenant_id: str, instructions: str, tags: list[str] | None = None) -> int:
        """Create a card with its tags and initial schedule state.

        All three are written in one transaction.
        """
        instructions = (instructions or "").strip()
        if not instructions:
            raise InvalidInputError("instructions must not be empty")

        now = self.clock()
        with self.db.connection() as conn:
            cursor = conn.execute(
                "INSERT INTO cards (tenant_id, instructions, created_at) VALUES (?, ?, ?)",
                (tenant_id, instructions, to_db_timestamp(now)),
            )
            card_id = cursor.lastrowid
            self.db.replace_tags(conn, tenant_id, card_id, normalize_tags(tags))
            self.db.insert_schedule_state(conn, tenant_id, card_id, ScheduleState.initial(now))

        logger.debug("Created card %s for tenant %s", card_id, tenant_id)
        return card_id

    def edit_card(
        self,
        tenant_id: str,
        card_id: int,
        instructions: str | None = None,
        tags: list[str] | None = None,
    ) -> bool:
        """Edit a card's instructions and/or tags.

        ``tags`` replaces the whole tag set. Returns False when the tenant has
        no such card.
        """
        if instructions is not None:
            instructions = instructions.strip()
            if not instructions:
                raise InvalidInputError("instructions must not be empty")

        with self.db.connection() as conn:
            if not self.db.card_exists(conn, tenant_id, card_id):
                return False
            if instructions is not None:
                conn.execute(
                    "UPDATE cards SET instructions = ? WHERE id = ? AND tenant_id = ?",
                    (instructions, card_id, tenant_id),
                )
            if tags is not None:
                self.db.replace_tags(conn, tenant_id, card_id, normalize_tags(tags))

        logger.debug("Edited card %s for tenant %s", card_id, tenant_id)
        return True

    def delete_card(self, tenant_id: str, card_id: int) -> bool:
        """Delete a card; tags, schedule state and history go with it."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM cards WHERE id = ? AND tenant_id = ?", (card_id, tenant_id)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug("Deleted card %s for tenant %s", card_id, tenant_id)
        return deleted

    def get_card(self, tenant_id: str, card_id: int) -> Card | None:
        now = self.clock()
        with self.db.connection() as conn:
            rows = self.db.fetch_cards(conn, tenant_id, " AND c.id = ?", [card_id])
        return row_to_card(rows[0], now) if rows else None

    def get_all_cards(self, tenant_id: str, tags: list[str] | None = None) -> list[Card]:
        """All of a tenant's cards, newest first, optionally tag-filtered (ANY tag)."""
        now = self.clock()
        clause, params = tag_filter_clause(tenant_id, normalize_tags(tags))
        with self.db.connection() as conn:
            rows = self.db.fetch_cards(conn, tenant_id, clause, params)
        return [row_to_card(row, now) for row in rows]

    def search_cards(self, tenant_id: str, query: str, tags: list[str] | None = None) -> list[Card]:
        """Full-text search over instructions, best match first.

        An empty query lists all cards, like ``get_all_cards``.
        """
        if not (query or "").strip():
            return self.get_all_cards(tenant_id, tags)

        now = self.clock()
        clause, params = tag_filter_clause(tenant_id, normalize_tags(tags))
        with self.db.connection() as conn:
            ids = self.db.search_card_ids(conn, tenant_id, query)
            if not ids:
                return []
            placeholders = ",".join("?" for _ in ids)
            rows = self.db.fetch_cards(
                conn, tenant_id, f" AND c.id IN ({placeholders}){clause}", [*ids, *params]
            )

        by_id = {row["id"]: row for row in rows}
        return [row_to_card(by_id[cid], now) for cid in ids if cid in by_id]

    # Batch variants: items are independent, results keep input order

    def create_cards(self, tenant_id: str, items: list[CardDraft | dict]) -> BatchResult[CardRef]:
        result = BatchResult[CardRef]()
        for index, item in enumerate(items):
            try:
                draft = CardDraft.model_validate(item)
                card_id = self.create_card(tenant_id, draft.instructions, draft.tags)
            except ITEM_ERRORS as exc:
                result.failed.append(BatchFailure(index=index, error=error_message(exc)))
                continue
            result.successful.append(CardRef(card_id=card_id))
        logger.info(
            "Batch create for tenant %s: %d ok, %d failed",
            tenant_id,
            len(result.successful),
            len(result.failed),
        )
        return result

    def edit_cards(self, tenant_id: str, items: list[CardEdit | dict]) -> BatchResult[CardRef]:
        result = BatchResult[CardRef]()
        for index, item in enumerate(items):
            try:
                edit = CardEdit.model_validate(item)
            except ValidationError as exc:
                result.failed.append(BatchFailure(index=index, error=error_message(exc)))
                continue
            try:
                edited = self.edit_card(tenant_id, edit.card_id, edit.instructions, edit.tags)
            except ITEM_ERRORS as exc:
                result.failed.append(BatchFailure(card_id=edit.card_id, error=error_message(exc)))
                continue
            if edited:
                result.successful.append(CardRef(card_id=edit.card_id))
            else:
                result.failed.append(BatchFailure(card_id=edit.card_id, error=NOT_FOUND))
        logger.info(
            "Batch edit for tenant %s: %d ok, %d failed",
            tenant_id,
            len(result.successful),
            len(result.failed),
        )
        return result

    def delete_cards(self, tenant_id: str, card_ids: list[int]) -> BatchResult[CardRef]:
        result = BatchResult[CardRef]()
        for card_id in card_ids:
            try:
                deleted = self.delete_card(tenant_id, card_id)
            except ITEM_ERRORS as exc:
                result.failed.append(BatchFailure(card_id=card_id, error=error_message(exc)))
                continue
            if deleted:
                result.successful.append(CardRef(card_id=card_id))
            else:
                result.failed.append(BatchFailure(card_id=card_id, error=NOT_FOUND))
        logger.info(
            "Batch delete for tenant %s: %d ok, %d failed",
            tenant_id,
            len(result.successful),
            len(result.failed),
        )
        return result

    def search_many(
        self, tenant_id: str, queries: list[str], tags: list[str] | None = None
    ) -> BatchResult[SearchHit]:
        result = BatchResult[SearchHit]()
        for index, query in enumerate(queries):
            try:
                cards = self.search_cards(tenant_id, query, tags)
            except ITEM_ERRORS as exc:
                result.failed.append(BatchFailure(index=index, error=error_message(exc)))
                continue
            result.successful.append(SearchHit(query=query, cards=cards))
        return result
