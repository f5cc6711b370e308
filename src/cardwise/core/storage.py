"""SQLite storage for cards, tags, schedule state and review history."""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from cardwise.core.models import CardPhase, ScheduleState, as_utc

logger = logging.getLogger(__name__)

# FTS5 operators that indicate the user is writing an explicit FTS query
_FTS5_OPERATORS = re.compile(r'\b(AND|OR|NOT|NEAR)\b|["*]')

# Separator for GROUP_CONCAT of tag labels (ASCII unit separator)
TAG_SEPARATOR = "\x1f"

SCHEDULE_COLUMNS = (
    "phase",
    "due",
    "stability",
    "difficulty",
    "elapsed_days",
    "scheduled_days",
    "learning_steps",
    "reps",
    "lapses",
    "last_review",
)

SCHEMA = """
-- Cards, owned by exactly one tenant
CREATE TABLE IF NOT EXISTS cards (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tenant_id TEXT NOT NULL,
    instructions TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tags (
    card_id INTEGER NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    tenant_id TEXT NOT NULL,
    tag TEXT NOT NULL,
    PRIMARY KEY (card_id, tag)
);

-- Current FSRS state, one row per card
CREATE TABLE IF NOT EXISTS schedule_states (
    card_id INTEGER PRIMARY KEY REFERENCES cards(id) ON DELETE CASCADE,
    tenant_id TEXT NOT NULL,
    phase TEXT NOT NULL DEFAULT 'new',
    due TEXT NOT NULL,
    stability REAL NOT NULL DEFAULT 0.0,
    difficulty REAL NOT NULL DEFAULT 0.0,
    elapsed_days INTEGER NOT NULL DEFAULT 0,
    scheduled_days INTEGER NOT NULL DEFAULT 0,
    learning_steps INTEGER NOT NULL DEFAULT 0,
    reps INTEGER NOT NULL DEFAULT 0,
    lapses INTEGER NOT NULL DEFAULT 0,
    last_review TEXT
);

-- Pre-review snapshots (append-only, consumed by undo)
CREATE TABLE IF NOT EXISTS review_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    card_id INTEGER NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    tenant_id TEXT NOT NULL,
    rating INTEGER NOT NULL,
    phase TEXT NOT NULL,
    due TEXT NOT NULL,
    stability REAL NOT NULL,
    difficulty REAL NOT NULL,
    elapsed_days INTEGER NOT NULL,
    scheduled_days INTEGER NOT NULL,
    learning_steps INTEGER NOT NULL,
    reps INTEGER NOT NULL,
    lapses INTEGER NOT NULL,
    last_review TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cards_tenant ON cards(tenant_id);
CREATE INDEX IF NOT EXISTS idx_tags_tenant_tag ON tags(tenant_id, tag);
CREATE INDEX IF NOT EXISTS idx_schedule_states_tenant_due ON schedule_states(tenant_id, due);
CREATE INDEX IF NOT EXISTS idx_review_history_card ON review_history(card_id, id);
CREATE INDEX IF NOT EXISTS idx_review_history_tenant_created
    ON review_history(tenant_id, created_at);

-- Full-text index over instructions, kept in sync by triggers
CREATE VIRTUAL TABLE IF NOT EXISTS cards_fts USING fts5(
    instructions,
    tenant_id UNINDEXED,
    content='cards',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS cards_ai AFTER INSERT ON cards BEGIN
    INSERT INTO cards_fts(rowid, instructions, tenant_id)
    VALUES (new.id, new.instructions, new.tenant_id);
END;

CREATE TRIGGER IF NOT EXISTS cards_ad AFTER DELETE ON cards BEGIN
    INSERT INTO cards_fts(cards_fts, rowid, instructions, tenant_id)
    VALUES ('delete', old.id, old.instructions, old.tenant_id);
END;

CREATE TRIGGER IF NOT EXISTS cards_au AFTER UPDATE ON cards BEGIN
    INSERT INTO cards_fts(cards_fts, rowid, instructions, tenant_id)
    VALUES ('delete', old.id, old.instructions, old.tenant_id);
    INSERT INTO cards_fts(rowid, instructions, tenant_id)
    VALUES (new.id, new.instructions, new.tenant_id);
END;
"""


def to_db_timestamp(value: datetime | None) -> str | None:
    """Serialize a datetime as fixed-width UTC ISO text so strings sort by time."""
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def from_db_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


def state_from_row(row: sqlite3.Row) -> ScheduleState:
    """Build a ScheduleState from a schedule_states or review_history row."""
    return ScheduleState(
        phase=CardPhase(row["phase"]),
        due=from_db_timestamp(row["due"]),
        stability=row["stability"],
        difficulty=row["difficulty"],
        elapsed_days=row["elapsed_days"],
        scheduled_days=row["scheduled_days"],
        learning_steps=row["learning_steps"],
        reps=row["reps"],
        lapses=row["lapses"],
        last_review=from_db_timestamp(row["last_review"]),
    )


def state_to_params(state: ScheduleState) -> tuple:
    """Column values for SCHEDULE_COLUMNS, in order."""
    return (
        state.phase.value,
        to_db_timestamp(state.due),
        state.stability,
        state.difficulty,
        state.elapsed_days,
        state.scheduled_days,
        state.learning_steps,
        state.reps,
        state.lapses,
        to_db_timestamp(state.last_review),
    )


def tag_filter_clause(tenant_id: str, tags: list[str] | None, column: str = "c.id") -> tuple[str, list]:
    """SQL fragment restricting ``column`` to cards carrying ANY of ``tags``."""
    if not tags:
        return "", []
    placeholders = ",".join("?" for _ in tags)
    clause = (
        f" AND {column} IN (SELECT card_id FROM tags WHERE tenant_id = ? AND tag IN ({placeholders}))"
    )
    return clause, [tenant_id, *tags]


def build_match_query(query: str) -> str:
    """Turn user text into an FTS5 MATCH expression.

    If the query contains no FTS5 operators, each word is quoted and treated
    as a prefix match (e.g. ``binary search`` -> ``"binary"* "search"*``) so
    that ``mono`` matches ``monotonic``.
    """
    query = query.strip()
    if _FTS5_OPERATORS.search(query):
        return query
    words = [w.replace('"', '""') for w in query.split() if w]
    return " ".join(f'"{w}"*' for w in words)


class CardDatabase:
    """SQLite database holding every tenant's cards and review state."""

    def __init__(self, db_path: Path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)
        logger.debug("Initialized card database at %s", self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections.

        Everything executed inside the block commits together or not at all.
        """
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Like ``connection`` but takes the write lock before the first read.

        Used for read-modify-write sequences so two writers never act on the
        same pre-state.
        """
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield conn

    def card_exists(self, conn: sqlite3.Connection, tenant_id: str, card_id: int) -> bool:
        row = conn.execute(
            "SELECT 1 FROM cards WHERE id = ? AND tenant_id = ?", (card_id, tenant_id)
        ).fetchone()
        return row is not None

    def replace_tags(
        self, conn: sqlite3.Connection, tenant_id: str, card_id: int, tags: list[str]
    ) -> None:
        """Replace all tag associations of a card."""
        conn.execute("DELETE FROM tags WHERE card_id = ? AND tenant_id = ?", (card_id, tenant_id))
        conn.executemany(
            "INSERT OR IGNORE INTO tags (card_id, tenant_id, tag) VALUES (?, ?, ?)",
            [(card_id, tenant_id, tag) for tag in tags],
        )

    def get_schedule_state(
        self, conn: sqlite3.Connection, tenant_id: str, card_id: int
    ) -> ScheduleState | None:
        row = conn.execute(
            "SELECT * FROM schedule_states WHERE card_id = ? AND tenant_id = ?",
            (card_id, tenant_id),
        ).fetchone()
        return state_from_row(row) if row else None

    def insert_schedule_state(
        self, conn: sqlite3.Connection, tenant_id: str, card_id: int, state: ScheduleState
    ) -> None:
        columns = ", ".join(SCHEDULE_COLUMNS)
        placeholders = ", ".join("?" for _ in SCHEDULE_COLUMNS)
        conn.execute(
            f"INSERT INTO schedule_states (card_id, tenant_id, {columns}) "
            f"VALUES (?, ?, {placeholders})",
            (card_id, tenant_id, *state_to_params(state)),
        )

    def update_schedule_state(
        self, conn: sqlite3.Connection, tenant_id: str, card_id: int, state: ScheduleState
    ) -> None:
        assignments = ", ".join(f"{col} = ?" for col in SCHEDULE_COLUMNS)
        conn.execute(
            f"UPDATE schedule_states SET {assignments} WHERE card_id = ? AND tenant_id = ?",
            (*state_to_params(state), card_id, tenant_id),
        )

    def append_snapshot(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        card_id: int,
        state: ScheduleState,
        rating: int,
        created_at: datetime,
    ) -> int:
        """Append a pre-review snapshot and return its id."""
        columns = ", ".join(SCHEDULE_COLUMNS)
        placeholders = ", ".join("?" for _ in SCHEDULE_COLUMNS)
        cursor = conn.execute(
            f"INSERT INTO review_history (card_id, tenant_id, rating, {columns}, created_at) "
            f"VALUES (?, ?, ?, {placeholders}, ?)",
            (card_id, tenant_id, rating, *state_to_params(state), to_db_timestamp(created_at)),
        )
        return cursor.lastrowid

    def latest_snapshot(
        self, conn: sqlite3.Connection, tenant_id: str, card_id: int
    ) -> sqlite3.Row | None:
        """Most recently appended snapshot for a card."""
        return conn.execute(
            """
            SELECT * FROM review_history
            WHERE card_id = ? AND tenant_id = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (card_id, tenant_id),
        ).fetchone()

    def fetch_cards(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        where: str = "",
        params: list | None = None,
        order_by: str = "c.created_at DESC, c.id DESC",
    ) -> list[sqlite3.Row]:
        """Fetch card rows with their tags and schedule state.

        ``where`` is appended to the tenant condition and must start with AND.
        """
        rows = conn.execute(
            f"""
            SELECT c.id, c.instructions, c.created_at,
                   GROUP_CONCAT(t.tag, char(31)) AS tags,
                   s.phase, s.due, s.stability, s.difficulty, s.elapsed_days,
                   s.scheduled_days, s.learning_steps, s.reps, s.lapses, s.last_review
            FROM cards c
            JOIN schedule_states s ON s.card_id = c.id
            LEFT JOIN tags t ON t.card_id = c.id AND t.tenant_id = c.tenant_id
            WHERE c.tenant_id = ?{where}
            GROUP BY c.id
            ORDER BY {order_by}
            """,
            [tenant_id, *(params or [])],
        ).fetchall()
        return rows

    def search_card_ids(self, conn: sqlite3.Connection, tenant_id: str, query: str) -> list[int]:
        """Full-text search for a tenant's cards, best match first.

        Malformed FTS5 queries are logged and return an empty list.
        """
        match = build_match_query(query)
        if not match:
            return []
        try:
            rows = conn.execute(
                """
                SELECT c.id FROM cards_fts
                JOIN cards c ON c.id = cards_fts.rowid
                WHERE cards_fts MATCH ? AND c.tenant_id = ?
                ORDER BY rank
                """,
                (match, tenant_id),
            ).fetchall()
        except sqlite3.OperationalError as exc:
            logger.warning("Malformed search query %r: %s", query, exc)
            return []
        return [row["id"] for row in rows]
