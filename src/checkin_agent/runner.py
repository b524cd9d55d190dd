"""Per-target login/check-in state machine."""
from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from enum import Enum
from typing import List, Optional

from .browser import BrowserFactory, BrowserHandle
from .config import Credentials, TargetConfig
from .drivers.base import TargetDriver
from .persistence.session_store import SessionStore
from .schemas import RunResult


LOGGER = logging.getLogger("checkin_agent.runner")


class RunState(str, Enum):
    START = "start"
    INITIALIZED = "initialized"
    AUTH_CHECKED = "auth_checked"
    LOGGING_IN = "logging_in"
    AUTHENTICATED = "authenticated"
    CHECKED_IN = "checked_in"
    CLOSED = "closed"


class TargetRunner:
    """
    Own one target's Run from browser acquisition to teardown.

    Start -> Initialized -> AuthChecked -> (LoggingIn ->) Authenticated ->
    CheckedIn -> Closed. Driver errors never escape: they are logged and turned
    into a failed :class:`RunResult`. The browser handle is released on every
    exit path by the factory's context manager.
    """

    def __init__(
        self,
        target: TargetConfig,
        driver: TargetDriver,
        credentials: Credentials,
        store: SessionStore,
        browser_factory: BrowserFactory,
    ) -> None:
        self.target = target
        self._driver = driver
        self._credentials = credentials
        self._store = store
        self._browser_factory = browser_factory
        self.state = RunState.START
        self.history: List[RunState] = [RunState.START]

    async def run(self) -> RunResult:
        name = self.target.display_name
        LOGGER.info("%s - starting check-in run", name)

        record = await asyncio.to_thread(self._store.load_valid, self.target.id)
        storage_state = record.storage_state.model_dump() if record is not None else None
        if storage_state is not None:
            LOGGER.info("%s - reusing cached session", name)
        else:
            LOGGER.info("%s - starting with a fresh browser session", name)

        try:
            async with AsyncExitStack() as stack:
                try:
                    handle = await stack.enter_async_context(self._browser_factory.open(storage_state))
                except Exception as exc:
                    LOGGER.error("%s - could not start browser: %s", name, exc)
                    return self._result(False, "browser unavailable", error=str(exc))
                self._advance(RunState.INITIALIZED)
                return await self._drive(handle)
        finally:
            self._advance(RunState.CLOSED)
            LOGGER.debug("%s - run closed", name)

    async def _drive(self, handle: BrowserHandle) -> RunResult:
        name = self.target.display_name

        logged_in = await self._check_logged_in(handle)
        self._advance(RunState.AUTH_CHECKED)

        if logged_in:
            LOGGER.info("%s - already logged in", name)
        else:
            LOGGER.info("%s - login required", name)
            self._advance(RunState.LOGGING_IN)
            try:
                ok = await self._driver.login(handle, self._credentials)
            except Exception as exc:
                LOGGER.error("%s - login raised: %s", name, exc)
                return self._result(False, "login failed", error=str(exc))
            if not ok:
                LOGGER.error("%s - login failed", name)
                return self._result(False, "login failed")
            await self._persist_session(handle)
        self._advance(RunState.AUTHENTICATED)

        try:
            checked_in = await self._driver.perform_check_in(handle)
        except Exception as exc:
            LOGGER.error("%s - check-in raised: %s", name, exc)
            return self._result(False, "check-in error", error=str(exc))
        self._advance(RunState.CHECKED_IN)

        if checked_in:
            LOGGER.info("%s - check-in succeeded", name)
            return self._result(True, "check-in succeeded")
        LOGGER.error("%s - check-in failed", name)
        return self._result(False, "check-in failed")

    async def _check_logged_in(self, handle: BrowserHandle) -> bool:
        try:
            return bool(await self._driver.check_logged_in(handle))
        except Exception as exc:
            LOGGER.warning("%s - login check failed, assuming logged out: %s", self.target.display_name, exc)
            return False

    async def _persist_session(self, handle: BrowserHandle) -> None:
        try:
            storage_state = await handle.storage_state()
        except Exception as exc:
            LOGGER.error("%s - could not read browser storage: %s", self.target.display_name, exc)
            return
        await asyncio.to_thread(self._store.save, self.target.id, storage_state)

    def _advance(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)

    def _result(self, success: bool, message: str, error: Optional[str] = None) -> RunResult:
        return RunResult(
            target_id=self.target.id,
            display_name=self.target.display_name,
            success=success,
            message=message,
            error=error,
        )
