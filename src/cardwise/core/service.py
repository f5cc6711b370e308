"""Service facade wiring storage, scheduler and engines together."""

from __future__ import annotations

import random
from collections.abc import Callable
from datetime import datetime

from cardwise.core.config import Settings
from cardwise.core.models import utcnow
from cardwise.core.repository import CardRepository
from cardwise.core.review import ReviewEngine
from cardwise.core.scheduler import CardScheduler
from cardwise.core.stats import StatisticsEngine
from cardwise.core.storage import CardDatabase


class CardwiseService:
    """Combined entry point for the web and command line front ends."""

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ):
        self.settings = settings or Settings()
        self.db = CardDatabase(self.settings.db_path, timeout=self.settings.db_timeout)
        self.scheduler = CardScheduler(self.settings.scheduler, rng=rng)
        self.cards = CardRepository(self.db, clock=clock)
        self.reviews = ReviewEngine(self.db, self.scheduler, clock=clock)
        self.stats = StatisticsEngine(self.db, clock=clock)
