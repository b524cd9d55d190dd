"""In-memory stand-ins for the browser, drivers, and clocks used across tests."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from checkin_agent.browser import BrowserHandle
from checkin_agent.config import Credentials, TargetConfig
from checkin_agent.drivers.base import TargetDriver
from checkin_agent.drivers.registry import DriverRegistry


SESSION_COOKIES = [{"name": "sid", "value": "abc123", "domain": ".example.com", "path": "/"}]
T0 = datetime(2024, 5, 6, 8, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeContext:
    def __init__(self, state: Dict[str, Any]) -> None:
        self.state = state

    async def storage_state(self) -> Dict[str, Any]:
        return self.state


class FakeBrowserFactory:
    """Records every acquisition and release instead of launching Chromium."""

    def __init__(self, storage_state: Optional[Dict[str, Any]] = None, fail: bool = False) -> None:
        self.storage = storage_state or {"cookies": list(SESSION_COOKIES), "origins": []}
        self.fail = fail
        self.seeded: List[Optional[Dict[str, Any]]] = []
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def open(self, storage_state: Optional[Dict[str, Any]] = None):
        if self.fail:
            raise RuntimeError("chromium executable not found")
        self.seeded.append(storage_state)
        self.opened += 1
        try:
            yield BrowserHandle(page=None, context=FakeContext(self.storage))
        finally:
            self.closed += 1


class ScriptedDriver(TargetDriver):
    """
    Driver whose answers are fixed up front.

    Any answer may be an exception instance, which is raised instead.
    ``completed`` (shared between drivers) records check-in completion order.
    """

    def __init__(
        self,
        name: str,
        logged_in: Any = False,
        login_ok: Any = True,
        check_in: Any = True,
        delay: float = 0.0,
        completed: Optional[List[str]] = None,
    ) -> None:
        self.name = name
        self.logged_in = logged_in
        self.login_ok = login_ok
        self.check_in = check_in
        self.delay = delay
        self.completed = completed
        self.calls: List[str] = []

    async def check_logged_in(self, handle: BrowserHandle) -> bool:
        self.calls.append("check_logged_in")
        return _answer(self.logged_in)

    async def login(self, handle: BrowserHandle, credentials: Credentials) -> bool:
        self.calls.append("login")
        return _answer(self.login_ok)

    async def perform_check_in(self, handle: BrowserHandle) -> bool:
        self.calls.append("perform_check_in")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.completed is not None:
            self.completed.append(self.name)
        return _answer(self.check_in)


def _answer(value: Any) -> Any:
    if isinstance(value, BaseException):
        raise value
    return value


def make_target(target_id: str, enabled: bool = True) -> TargetConfig:
    return TargetConfig(id=target_id, display_name=target_id.title(), enabled=enabled)


def registry_for(drivers: Dict[str, TargetDriver]) -> DriverRegistry:
    registry = DriverRegistry()
    for target_id, driver in drivers.items():
        registry.register(target_id, lambda target, driver=driver: driver)
    return registry


def fake_credentials(target_id: str) -> Credentials:
    return Credentials(username=f"{target_id}-user", secret="hunter2")


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
