"""Target Driver contract and page helpers shared by driver implementations."""
from __future__ import annotations

import abc
import logging
from typing import Iterable, Optional

from ..browser import BrowserHandle
from ..config import Credentials
from ..errors import DriverError


class TargetDriver(abc.ABC):
    """
    Site-specific login and check-in automation for one target.

    ``check_logged_in`` returns ``False`` for "not logged in"; exceptions are
    reserved for transport and driver failures.
    """

    name: str

    @abc.abstractmethod
    async def check_logged_in(self, handle: BrowserHandle) -> bool:
        """Return whether the page shows an authenticated user."""

    @abc.abstractmethod
    async def login(self, handle: BrowserHandle, credentials: Credentials) -> bool:
        """Authenticate with *credentials*; return whether it worked."""

    @abc.abstractmethod
    async def perform_check_in(self, handle: BrowserHandle) -> bool:
        """Trigger the daily check-in; return what the site's UI reports."""


class PageDriver(TargetDriver, abc.ABC):
    """Tolerant page helpers that report timeouts as ``False`` instead of raising."""

    def __init__(self, name: str, timeout_ms: int = 10000) -> None:
        self.name = name
        self.timeout_ms = timeout_ms
        self.logger = logging.getLogger(f"checkin_agent.drivers.{name}")

    async def navigate(self, handle: BrowserHandle, url: str) -> None:
        """Open *url* and wait for the network to settle; failures raise :class:`DriverError`."""
        try:
            await handle.page.goto(url)
            await handle.page.wait_for_load_state("networkidle")
        except Exception as exc:
            raise DriverError(f"{self.name} - could not open {url}: {exc}") from exc

    async def wait_for(self, handle: BrowserHandle, selector: str, timeout_ms: Optional[int] = None) -> bool:
        try:
            await handle.page.wait_for_selector(selector, timeout=timeout_ms or self.timeout_ms)
        except Exception as exc:
            self.logger.warning("%s - waiting for %s timed out: %s", self.name, selector, exc)
            return False
        return True

    async def safe_click(self, handle: BrowserHandle, selector: str, timeout_ms: Optional[int] = None) -> bool:
        if not await self.wait_for(handle, selector, timeout_ms):
            return False
        try:
            await handle.page.click(selector)
        except Exception as exc:
            self.logger.warning("%s - clicking %s failed: %s", self.name, selector, exc)
            return False
        return True

    async def safe_fill(
        self,
        handle: BrowserHandle,
        selector: str,
        text: str,
        timeout_ms: Optional[int] = None,
    ) -> bool:
        if not await self.wait_for(handle, selector, timeout_ms):
            return False
        try:
            await handle.page.fill(selector, text)
        except Exception as exc:
            self.logger.warning("%s - filling %s failed: %s", self.name, selector, exc)
            return False
        return True

    async def first_present(self, handle: BrowserHandle, selectors: Iterable[str]) -> Optional[str]:
        """Return the first selector currently matching an element, without waiting."""
        for selector in selectors:
            if await handle.page.query_selector(selector) is not None:
                return selector
        return None

    async def text_of(self, handle: BrowserHandle, selector: str) -> str:
        element = await handle.page.query_selector(selector)
        if element is None:
            return ""
        return (await element.text_content() or "").strip()
