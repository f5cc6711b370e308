"""FSRS scheduler wrapper for Cardwise.

The scheduler is pure: it maps a schedule state, a rating and a review time
to the next schedule state. Persistence lives in ``cardwise.core.review``.
"""

from __future__ import annotations

import math
import random
from datetime import datetime, timedelta

from fsrs import Card as FSRSCard
from fsrs import Rating, State
from fsrs import Scheduler as FSRSScheduler

from cardwise.core.config import SchedulerConfig
from cardwise.core.models import CardPhase, ReviewRating, ScheduleState, as_utc

SECONDS_PER_DAY = 86400

# Same spread FSRS applies when it fuzzes review intervals
FUZZ_RANGES = (
    (2.5, 7.0, 0.15),
    (7.0, 20.0, 0.1),
    (20.0, math.inf, 0.05),
)


def interval_days_between(start: datetime, end: datetime) -> int:
    """Whole days from ``start`` to ``end``, rounded and never negative."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    return max(0, round(seconds / SECONDS_PER_DAY))


class CardScheduler:
    """Wraps py-fsrs Scheduler behind a pure state transition."""

    def __init__(self, config: SchedulerConfig | None = None, rng: random.Random | None = None):
        """Initialize scheduler.

        Args:
            config: Scheduling policy (retention, steps, interval cap, fuzz)
            rng: Random source for interval fuzz; seeded from
                ``config.fuzz_seed`` when omitted
        """
        self.config = config or SchedulerConfig()
        self.rng = rng or random.Random(self.config.fuzz_seed)
        # Fuzz is applied here with self.rng, never by FSRS's module-level random
        self.fsrs = FSRSScheduler(
            desired_retention=self.config.desired_retention,
            learning_steps=self.config.learning_deltas(),
            relearning_steps=self.config.relearning_deltas(),
            maximum_interval=self.config.maximum_interval,
            enable_fuzzing=False,
        )

    def review(
        self,
        state: ScheduleState,
        rating: ReviewRating,
        now: datetime,
    ) -> tuple[ScheduleState, int]:
        """Apply a rating to a schedule state.

        Returns the new state and the interval in whole days until it is due.
        """
        now = as_utc(now)
        rating = ReviewRating(rating)

        reviewed, _review_log = self.fsrs.review_card(
            self._to_fsrs_card(state), Rating(rating.value), now
        )

        phase = CardPhase.from_fsrs(reviewed.state)
        step = reviewed.step or 0
        due = as_utc(reviewed.due)

        # Without learning steps FSRS graduates every first rating, but a
        # forgotten card must stay in learning
        if (
            not self.config.learning_steps
            and rating == ReviewRating.AGAIN
            and state.phase in (CardPhase.NEW, CardPhase.LEARNING)
        ):
            phase = CardPhase.LEARNING
            step = 0
            due = now

        if phase == CardPhase.REVIEW and self.config.enable_fuzzing:
            due = now + self._fuzz(due - now)

        lapses = state.lapses
        if state.phase == CardPhase.REVIEW and rating == ReviewRating.AGAIN:
            lapses += 1

        elapsed_days = 0
        if state.last_review is not None:
            elapsed_days = max(0, (now - state.last_review).days)

        new_state = ScheduleState(
            phase=phase,
            due=due,
            stability=reviewed.stability or 0.0,
            difficulty=reviewed.difficulty or 0.0,
            elapsed_days=elapsed_days,
            scheduled_days=interval_days_between(now, due),
            learning_steps=step,
            reps=state.reps + 1,
            lapses=lapses,
            last_review=now,
        )
        return new_state, interval_days_between(now, due)

    def retrievability(self, state: ScheduleState, now: datetime) -> float:
        """Probability of recall at ``now``; 0.0 for cards never reviewed."""
        if state.phase == CardPhase.NEW or state.last_review is None or state.stability <= 0:
            return 0.0
        return float(self.fsrs.get_card_retrievability(self._to_fsrs_card(state), as_utc(now)))

    def _to_fsrs_card(self, state: ScheduleState) -> FSRSCard:
        """Convert a schedule state to an FSRS Card object."""
        if state.phase == CardPhase.NEW:
            return FSRSCard(card_id=0, due=state.due)  # New card with default values

        fsrs_state = state.phase.to_fsrs()
        return FSRSCard(
            card_id=0,
            state=fsrs_state,
            step=None if fsrs_state == State.Review else state.learning_steps,
            stability=state.stability or None,
            difficulty=state.difficulty or None,
            due=state.due,
            last_review=state.last_review,
        )

    def _fuzz(self, interval: timedelta) -> timedelta:
        """Spread a review interval over the FSRS fuzz range using ``self.rng``."""
        interval_days = interval.total_seconds() / SECONDS_PER_DAY
        if interval_days < 2.5:
            return interval

        delta = 1.0
        for start, end, factor in FUZZ_RANGES:
            delta += factor * max(min(interval_days, end) - start, 0.0)

        max_ivl = min(int(round(interval_days + delta)), self.config.maximum_interval)
        min_ivl = min(max(2, int(round(interval_days - delta))), max_ivl)

        fuzzed = self.rng.random() * (max_ivl - min_ivl + 1) + min_ivl
        return timedelta(days=min(round(fuzzed), self.config.maximum_interval))
