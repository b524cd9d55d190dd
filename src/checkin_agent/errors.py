"""Error taxonomy shared across the check-in engine."""

from __future__ import annotations


class CheckinError(Exception):
    """Base class for every error raised by checkin_agent."""


class ConfigError(CheckinError):
    """Missing or invalid target, driver, or credential configuration."""

    def __init__(self, message: str, target_id: str | None = None) -> None:
        super().__init__(message)
        self.target_id = target_id


class DriverError(CheckinError):
    """A site driver could not match the UI or lost its connection."""


class SessionStoreError(CheckinError):
    """A cached session file is unreadable or corrupt."""


class ScheduleError(CheckinError):
    """A schedule could not be registered (invalid cron expression, duplicate id)."""

    def __init__(self, message: str, expression: str | None = None) -> None:
        super().__init__(message)
        self.expression = expression
