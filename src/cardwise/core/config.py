"""Configuration for the scheduler and service, read from the environment."""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, Field, PrivateAttr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class SchedulerConfig(BaseModel):
    """Scheduling policy handed to ``CardScheduler`` at construction.

    Steps are expressed in minutes.
    """

    desired_retention: float = Field(default=0.9, gt=0.0, lt=1.0)
    learning_steps: list[float] = Field(default_factory=lambda: [1.0, 10.0])
    relearning_steps: list[float] = Field(default_factory=lambda: [10.0], min_length=1)
    maximum_interval: int = Field(default=36500, ge=1)
    enable_fuzzing: bool = False
    fuzz_seed: int | None = None

    @field_validator("learning_steps", "relearning_steps")
    @classmethod
    def _positive_steps(cls, steps: list[float]) -> list[float]:
        if any(step <= 0 for step in steps):
            raise ValueError("steps must be positive numbers of minutes")
        return steps

    def learning_deltas(self) -> tuple[timedelta, ...]:
        return tuple(timedelta(minutes=m) for m in self.learning_steps)

    def relearning_deltas(self) -> tuple[timedelta, ...]:
        return tuple(timedelta(minutes=m) for m in self.relearning_steps)


class Settings(BaseSettings):
    """Service settings read from ``CARDWISE_*`` environment variables.

    Scheduler variables are flat (``CARDWISE_DESIRED_RETENTION``,
    ``CARDWISE_LEARNING_STEPS``...) and validated into ``scheduler``.
    """

    model_config = SettingsConfigDict(env_prefix="CARDWISE_", extra="ignore")

    db_path: Path = Field(default_factory=lambda: Path.cwd() / ".cardwise" / "cardwise.db")
    db_timeout: float = 5.0
    log_level: str = "WARNING"

    desired_retention: float = 0.9
    learning_steps: Annotated[list[float], NoDecode] = [1.0, 10.0]
    relearning_steps: Annotated[list[float], NoDecode] = [10.0]
    maximum_interval: int = 36500
    enable_fuzzing: bool = False
    fuzz_seed: int | None = None

    _scheduler: SchedulerConfig = PrivateAttr()

    @field_validator("learning_steps", "relearning_steps", mode="before")
    @classmethod
    def _parse_steps(cls, value: object) -> object:
        """Accept a comma-separated list of minutes; an empty string means no steps."""
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("fuzz_seed", mode="before")
    @classmethod
    def _blank_seed(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def model_post_init(self, __context) -> None:
        self._scheduler = SchedulerConfig(
            desired_retention=self.desired_retention,
            learning_steps=self.learning_steps,
            relearning_steps=self.relearning_steps,
            maximum_interval=self.maximum_interval,
            enable_fuzzing=self.enable_fuzzing,
            fuzz_seed=self.fuzz_seed,
        )

    @property
    def scheduler(self) -> SchedulerConfig:
        """The scheduling policy for ``CardScheduler``."""
        return self._scheduler


def configure_logging(level: str = "WARNING") -> None:
    """Configure root logging for command line and server entry points."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.WARNING), format=LOG_FORMAT)
    logger.debug("Logging configured at %s", level)
