"""Statistics derived from schedule states and the review history log."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta

from cardwise.core.models import Stats, TagStats, as_utc, normalize_tags, utcnow
from cardwise.core.storage import CardDatabase, tag_filter_clause, to_db_timestamp


def current_streak(review_dates: set[date], today: date) -> int:
    """Consecutive review days walking backward from ``today``.

    A day without reviews ends the run, so a streak is 0 until today has
    at least one review.
    """
    check = today
    streak = 0
    while check in review_dates:
        streak += 1
        check -= timedelta(days=1)
    return streak


def longest_streak(review_dates: set[date]) -> int:
    """Longest run of consecutive review days over all time."""
    if not review_dates:
        return 0
    ordered = sorted(review_dates)
    longest = 1
    streak = 1
    for i in range(1, len(ordered)):
        if ordered[i] - ordered[i - 1] == timedelta(days=1):
            streak += 1
            longest = max(longest, streak)
        else:
            streak = 1
    return longest


class StatisticsEngine:
    """Read-only aggregate views for a tenant."""

    def __init__(self, db: CardDatabase, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def get_review_heatmap(self, tenant_id: str, now: datetime | None = None) -> dict[str, int]:
        """Get review counts per UTC day up to ``now``.

        Returns a dict mapping ISO date strings to review counts.
        """
        now = as_utc(now or self.clock())
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT substr(created_at, 1, 10) AS review_date, COUNT(*) AS cnt
                FROM review_history
                WHERE tenant_id = ? AND created_at <= ?
                GROUP BY substr(created_at, 1, 10)
                """,
                (tenant_id, to_db_timestamp(now)),
            ).fetchall()
            return {row["review_date"]: row["cnt"] for row in rows}

    def get_streak_info(self, tenant_id: str, now: datetime | None = None) -> dict[str, int]:
        """Compute current and longest review streaks as of ``now``."""
        now = as_utc(now or self.clock())
        review_dates = {date.fromisoformat(d) for d in self.get_review_heatmap(tenant_id, now)}
        return {
            "current_streak": current_streak(review_dates, now.date()),
            "longest_streak": longest_streak(review_dates),
        }

    def get_stats(
        self,
        tenant_id: str,
        tags: list[str] | None = None,
        now: datetime | None = None,
    ) -> Stats:
        """Get statistics; per-tag rollups only when no tag filter is given."""
        now = as_utc(now or self.clock())
        now_str = to_db_timestamp(now)
        tags = normalize_tags(tags)
        clause, params = tag_filter_clause(tenant_id, tags)

        with self.db.connection() as conn:
            due_today = conn.execute(
                f"""
                SELECT COUNT(*) FROM cards c
                JOIN schedule_states s ON s.card_id = c.id
                WHERE c.tenant_id = ? AND s.due <= ?{clause}
                """,
                [tenant_id, now_str, *params],
            ).fetchone()[0]
            total = conn.execute(
                f"SELECT COUNT(*) FROM cards c WHERE c.tenant_id = ?{clause}",
                [tenant_id, *params],
            ).fetchone()[0]
            reviewed_24h = conn.execute(
                """
                SELECT COUNT(DISTINCT card_id) FROM review_history
                WHERE tenant_id = ? AND created_at > ? AND created_at <= ?
                """,
                (tenant_id, to_db_timestamp(now - timedelta(hours=24)), now_str),
            ).fetchone()[0]
            total_reviews = conn.execute(
                "SELECT COUNT(*) FROM review_history WHERE tenant_id = ? AND created_at <= ?",
                (tenant_id, now_str),
            ).fetchone()[0]

            by_tag = None
            if not tags:
                rows = conn.execute(
                    """
                    SELECT t.tag,
                           COUNT(DISTINCT c.id) AS total_cards,
                           SUM(CASE WHEN s.due <= ? THEN 1 ELSE 0 END) AS due_cards
                    FROM tags t
                    JOIN cards c ON c.id = t.card_id
                    JOIN schedule_states s ON s.card_id = c.id
                    WHERE t.tenant_id = ?
                    GROUP BY t.tag
                    ORDER BY t.tag
                    """,
                    (now_str, tenant_id),
                ).fetchall()
                by_tag = {
                    row["tag"]: TagStats(total=row["total_cards"] or 0, due=row["due_cards"] or 0)
                    for row in rows
                }

        streaks = self.get_streak_info(tenant_id, now)
        return Stats(
            due_today=due_today,
            total=total,
            cards_reviewed_last_24h=reviewed_24h,
            current_streak=streaks["current_streak"],
            longest_streak=streaks["longest_streak"],
            total_reviews=total_reviews,
            by_tag=by_tag,
        )
