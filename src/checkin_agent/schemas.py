"""Shared data models for the check-in engine."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StorageState(BaseModel):
    """Browser storage snapshot in Playwright's ``storage_state`` shape."""

    model_config = ConfigDict(extra="allow")

    cookies: List[Dict[str, Any]] = Field(default_factory=list)
    origins: List[Dict[str, Any]] = Field(default_factory=list)

    def element_count(self) -> int:
        """Number of cookies plus local-storage entries across origins."""

        local_items = sum(len(origin.get("localStorage", []) or []) for origin in self.origins)
        return len(self.cookies) + local_items


class SessionRecord(BaseModel):
    """Cached authentication material for one target."""

    target_id: str = Field(..., min_length=1)
    storage_state: StorageState
    last_written_at: datetime

    @field_validator("last_written_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def age_days(self, now: datetime) -> float:
        return (now - self.last_written_at).total_seconds() / 86400.0


class SessionInfo(BaseModel):
    """Read-only inventory row for operator inspection."""

    target_id: str
    is_valid: bool
    age_days: Optional[float] = None
    last_written_at: Optional[datetime] = None


class RunResult(BaseModel):
    """Outcome of one Run for one target."""

    model_config = ConfigDict(frozen=True)

    target_id: str
    display_name: str
    success: bool
    message: str
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class RunReport(BaseModel):
    """Aggregate of one orchestration pass, ordered like the configured targets."""

    model_config = ConfigDict(frozen=True)

    results: List[RunResult] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failure_count(self) -> int:
        return len(self.results) - self.success_count

    @property
    def success_rate(self) -> float:
        if not self.results:
            return 0.0
        return self.success_count / len(self.results)

    @property
    def overall_success(self) -> bool:
        return bool(self.results) and self.failure_count == 0

    def failures(self) -> List[RunResult]:
        return [result for result in self.results if not result.success]

    @classmethod
    def combine(cls, reports: List["RunReport"], duration_seconds: float) -> "RunReport":
        results: List[RunResult] = []
        for report in reports:
            results.extend(report.results)
        return cls(results=results, duration_seconds=duration_seconds)
