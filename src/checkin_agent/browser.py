"""
Browser handle acquisition backed by Playwright.

A handle is opened per Run and owned exclusively by it. Every resource that
was opened (driver process, browser, context, page) is registered on an
``AsyncExitStack`` so it is closed exactly once, in reverse order, no matter
where the Run stopped.
"""
from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol

from .config import BrowserConfig


LOGGER = logging.getLogger("checkin_agent.browser")

LAUNCH_ARGS: List[str] = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
]

HIDE_WEBDRIVER_SCRIPT = "Object.defineProperty(navigator, 'webdriver', { get: () => undefined });"


@dataclass
class BrowserHandle:
    """What a Target Driver operates on: one page inside one isolated context."""

    page: Any
    context: Any

    async def storage_state(self) -> Dict[str, Any]:
        """Snapshot cookies and local storage for the session cache."""
        return await self.context.storage_state()


class BrowserFactory(Protocol):
    def open(self, storage_state: Optional[Dict[str, Any]] = None) -> Any:
        """Return an async context manager yielding a :class:`BrowserHandle`."""


class PlaywrightBrowserFactory:
    """Launch a Chromium instance per Run, optionally seeded with a cached session."""

    def __init__(self, config: BrowserConfig) -> None:
        self._config = config

    @asynccontextmanager
    async def open(self, storage_state: Optional[Dict[str, Any]] = None) -> AsyncIterator[BrowserHandle]:
        from playwright.async_api import async_playwright

        async with AsyncExitStack() as stack:
            playwright = await async_playwright().start()
            stack.push_async_callback(_close_quietly, "playwright", playwright.stop)

            browser = await playwright.chromium.launch(
                headless=self._config.headless,
                timeout=self._config.timeout_ms,
                args=LAUNCH_ARGS,
            )
            stack.push_async_callback(_close_quietly, "browser", browser.close)

            context_kwargs: Dict[str, Any] = {
                "user_agent": self._config.user_agent,
                "viewport": {
                    "width": self._config.viewport_width,
                    "height": self._config.viewport_height,
                },
            }
            if self._config.locale:
                context_kwargs["locale"] = self._config.locale
            if storage_state is not None:
                context_kwargs["storage_state"] = storage_state
            context = await browser.new_context(**context_kwargs)
            stack.push_async_callback(_close_quietly, "context", context.close)
            await context.add_init_script(HIDE_WEBDRIVER_SCRIPT)
            context.set_default_timeout(self._config.timeout_ms)

            page = await context.new_page()
            stack.push_async_callback(_close_quietly, "page", page.close)

            LOGGER.debug(
                "Browser ready (headless=%s, seeded=%s)",
                self._config.headless,
                storage_state is not None,
            )
            yield BrowserHandle(page=page, context=context)


async def _close_quietly(label: str, close: Callable[[], Awaitable[Any]]) -> None:
    try:
        await close()
    except Exception as exc:  # pragma: no cover - depends on browser state
        LOGGER.warning("Failed to close %s: %s", label, exc)
