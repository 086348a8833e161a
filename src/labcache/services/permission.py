"""Permission window deciding when the reporting service may be queried."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PermissionWindow(BaseModel):
    """Time-of-day, weekday and blackout-date constraints on fetching.

    Hour ranges are half-open ``[start, end)``; an end of 24 means midnight and
    a start greater than the end wraps past midnight. Empty hour or weekday
    lists impose no constraint.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = "always"
    allowed_hours: List[Tuple[int, int]] = Field(default_factory=list)
    allowed_weekdays: List[int] = Field(default_factory=list)
    blackout_dates: List[date] = Field(default_factory=list)

    @field_validator("allowed_hours")
    @classmethod
    def _check_hours(cls, value: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
        for start, end in value:
            if not (0 <= start <= 23 and 0 <= end <= 24):
                raise ValueError(f"Hour range ({start}, {end}) is outside 0-24.")
            if start == end:
                raise ValueError(f"Hour range ({start}, {end}) is empty.")
        return value

    @field_validator("allowed_weekdays")
    @classmethod
    def _check_weekdays(cls, value: List[int]) -> List[int]:
        bad = [day for day in value if not 0 <= day <= 6]
        if bad:
            raise ValueError(f"Weekdays must be 0 (Monday) to 6 (Sunday), got {bad}.")
        return value

    @classmethod
    def always_open(cls) -> "PermissionWindow":
        return cls(name="always")

    def within_window(self, now: datetime) -> bool:
        """Return True if fetching is permitted at `now`."""

        if now.date() in self.blackout_dates:
            return False
        if self.allowed_weekdays and now.weekday() not in self.allowed_weekdays:
            return False
        if not self.allowed_hours:
            return True
        return any(_hour_in_range(now.hour, start, end) for start, end in self.allowed_hours)

    def within_window_now(self) -> bool:
        return self.within_window(datetime.now())


def _hour_in_range(hour: int, start: int, end: int) -> bool:
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


__all__ = ["PermissionWindow"]
