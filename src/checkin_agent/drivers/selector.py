"""
Configuration-driven driver.

All site specifics (URLs, CSS selectors, wait times) are read from the
target's ``options`` block, so adding a site is a config change.
"""
from __future__ import annotations

import asyncio
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from ..browser import BrowserHandle
from ..config import Credentials, TargetConfig
from ..errors import ConfigError
from .base import PageDriver


class SelectorSettings(BaseModel):
    """Selectors and timings for one site, validated at startup."""

    url: str = Field(..., min_length=1)
    checkin_url: Optional[str] = None
    logged_in_selectors: List[str] = Field(..., min_length=1)
    login_entry_selector: Optional[str] = None
    login_entry_text: List[str] = Field(default_factory=lambda: ["Login", "Log in", "Sign in", "登录"])
    password_tab_selector: Optional[str] = None
    username_selector: str
    password_selector: str
    submit_selector: str
    captcha_selector: Optional[str] = None
    captcha_wait_seconds: float = 30.0
    login_error_selector: Optional[str] = None
    checkin_button_selector: str
    already_checked_in_selector: Optional[str] = None
    checkin_success_selectors: List[str] = Field(default_factory=list)
    checkin_error_selector: Optional[str] = None
    settle_ms: int = 2000
    post_submit_ms: int = 3000
    timeout_ms: int = 10000

    @model_validator(mode="after")
    def _needs_success_signal(self) -> "SelectorSettings":
        if not self.checkin_success_selectors and not self.already_checked_in_selector:
            raise ValueError("configure checkin_success_selectors or already_checked_in_selector")
        return self


class SelectorDriver(PageDriver):
    """Drive login and check-in through configured selectors."""

    def __init__(self, name: str, settings: SelectorSettings) -> None:
        super().__init__(name, timeout_ms=settings.timeout_ms)
        self.settings = settings

    @classmethod
    def from_target(cls, target: TargetConfig) -> "SelectorDriver":
        payload = dict(target.options)
        if target.url and "url" not in payload:
            payload["url"] = target.url
        try:
            settings = SelectorSettings.model_validate(payload)
        except ValidationError as exc:
            raise ConfigError(f"Invalid selector options for target {target.id}: {exc}", target_id=target.id) from exc
        return cls(target.id, settings)

    async def check_logged_in(self, handle: BrowserHandle) -> bool:
        page = handle.page
        if page.url != self.settings.url:
            await self.navigate(handle, self.settings.url)
        await page.wait_for_timeout(self.settings.settle_ms)

        if self.settings.login_entry_selector:
            entry_text = await self.text_of(handle, self.settings.login_entry_selector)
            if entry_text and any(word in entry_text for word in self.settings.login_entry_text):
                return False
        return await self.first_present(handle, self.settings.logged_in_selectors) is not None

    async def login(self, handle: BrowserHandle, credentials: Credentials) -> bool:
        settings = self.settings
        page = handle.page
        self.logger.info("%s - starting login", self.name)

        if settings.login_entry_selector and not await self.safe_click(handle, settings.login_entry_selector):
            self.logger.error("%s - login entry not found", self.name)
            return False
        await page.wait_for_timeout(settings.settle_ms)

        if settings.password_tab_selector and await page.query_selector(settings.password_tab_selector):
            await page.click(settings.password_tab_selector)
            await page.wait_for_timeout(1000)

        if not await self.safe_fill(handle, settings.username_selector, credentials.username):
            self.logger.error("%s - username field not found", self.name)
            return False
        if not await self.safe_fill(handle, settings.password_selector, credentials.secret):
            self.logger.error("%s - password field not found", self.name)
            return False
        if not await self.safe_click(handle, settings.submit_selector):
            self.logger.error("%s - login submit button not found", self.name)
            return False
        await page.wait_for_timeout(settings.post_submit_ms)

        if settings.captcha_selector and await page.query_selector(settings.captcha_selector):
            self.logger.warning(
                "%s - captcha detected, waiting %.0fs for manual resolution",
                self.name,
                settings.captcha_wait_seconds,
            )
            await asyncio.sleep(settings.captcha_wait_seconds)

        if await self.check_logged_in(handle):
            self.logger.info("%s - login succeeded", self.name)
            return True

        if settings.login_error_selector:
            message = await self.text_of(handle, settings.login_error_selector)
            if message:
                self.logger.error("%s - login rejected: %s", self.name, message)
        return False

    async def perform_check_in(self, handle: BrowserHandle) -> bool:
        settings = self.settings
        page = handle.page
        self.logger.info("%s - starting check-in", self.name)

        if settings.checkin_url:
            await self.navigate(handle, settings.checkin_url)
        await page.wait_for_timeout(settings.settle_ms)

        if settings.already_checked_in_selector and await page.query_selector(settings.already_checked_in_selector):
            self.logger.info("%s - already checked in today", self.name)
            return True

        button = await page.query_selector(settings.checkin_button_selector)
        if button is None:
            self.logger.warning("%s - check-in button not found", self.name)
            return False
        await button.click()
        await page.wait_for_timeout(settings.post_submit_ms)

        markers = list(settings.checkin_success_selectors)
        if settings.already_checked_in_selector:
            markers.append(settings.already_checked_in_selector)
        matched = await self.first_present(handle, markers)
        if matched is not None:
            message = await self.text_of(handle, matched)
            self.logger.info("%s - check-in confirmed%s", self.name, f": {message}" if message else "")
            return True

        if settings.checkin_error_selector:
            message = await self.text_of(handle, settings.checkin_error_selector)
            if message:
                self.logger.error("%s - check-in rejected: %s", self.name, message)
        return False
