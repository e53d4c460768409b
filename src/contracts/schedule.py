"""Schedule Contract - Business hours, breaks and priority ranking."""

from datetime import time
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, model_validator

from src.contracts.appointment import PriorityTier

DEFAULT_TIER_RANK: dict[PriorityTier, int] = {
    PriorityTier.URGENT: 0,
    PriorityTier.HIGH: 1,
    PriorityTier.NORMAL: 2,
    PriorityTier.LOW: 3,
}


class BreakInterval(BaseModel):
    """A recurring daily break (e.g. lunch) during which nobody is served."""

    start: time = Field(..., description="Break start (inclusive)")
    end: time = Field(..., description="Break end (exclusive)")

    @model_validator(mode="after")
    def _check_order(self) -> "BreakInterval":
        if self.end <= self.start:
            raise ValueError(
                f"break end {self.end.isoformat()} must be after start "
                f"{self.start.isoformat()}"
            )
        return self

    @classmethod
    def parse(cls, value: str) -> "BreakInterval":
        """Parse a ``HH:MM-HH:MM`` string."""
        start, _, end = value.strip().partition("-")
        return cls(start=time.fromisoformat(start), end=time.fromisoformat(end))


class ScheduleConfig(BaseModel):
    """Business hours, breaks and tier ranking for one shop.

    Supplied as configuration, never hard-coded in the engine.
    """

    business_start: time = Field(default=time(8, 0))
    business_end: time = Field(default=time(17, 0))
    breaks: list[BreakInterval] = Field(
        default_factory=lambda: [BreakInterval(start=time(12, 0), end=time(13, 0))]
    )
    tier_rank: dict[PriorityTier, int] = Field(
        default_factory=lambda: dict(DEFAULT_TIER_RANK)
    )
    buffer_minutes: int = Field(default=0, ge=0)
    default_duration_minutes: int = Field(default=30, gt=0)
    max_queue_capacity: int = Field(default=15, gt=0)
    timezone: str = Field(default="UTC", description="IANA zone of the shop")

    @model_validator(mode="after")
    def _check_config(self) -> "ScheduleConfig":
        if self.business_end <= self.business_start:
            raise ValueError("business_end must be after business_start")
        missing = set(PriorityTier) - set(self.tier_rank)
        if missing:
            names = ", ".join(sorted(tier.value for tier in missing))
            raise ValueError(f"tier_rank is missing tiers: {names}")
        self.breaks = sorted(self.breaks, key=lambda b: b.start)
        return self

    def rank(self, tier: PriorityTier) -> int:
        return self.tier_rank[tier]

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)
