"""Pydantic models for check-in monitor config and ingestion responses."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


# =============================================================================
# Monitor Config Models
# =============================================================================

IntervalUnit = Literal["year", "month", "week", "day", "hour", "minute"]


class MonitorSchedule(BaseModel):
    """Schedule of a monitored job: a crontab expression or a fixed interval."""
    type: Literal["crontab", "interval"]
    value: str | int | float
    unit: IntervalUnit | None = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_shape(self) -> MonitorSchedule:
        if self.type == "crontab":
            if not isinstance(self.value, str):
                raise ValueError("crontab schedules need a string value")
            if self.unit is not None:
                raise ValueError("crontab schedules do not take a unit")
        else:
            if isinstance(self.value, str):
                raise ValueError("interval schedules need a numeric value")
            if self.unit is None:
                raise ValueError("interval schedules need a unit")
        return self


class MonitorConfig(BaseModel):
    """Monitor configuration sent along with a check-in (upserts the monitor)."""
    schedule: MonitorSchedule
    checkin_margin: float | None = None
    max_runtime: float | None = None
    failure_issue_threshold: int | None = None
    recovery_threshold: int | None = None
    timezone: str | None = None

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Ingestion Response Models
# =============================================================================

class IngestResponse(BaseModel):
    """Body returned by the ingestion endpoint on success."""
    id: str | None = Field(default=None)

    model_config = ConfigDict(extra="ignore")
