import asyncio

import pytest

from checkin_agent.browser import BrowserHandle
from checkin_agent.config import Credentials, TargetConfig
from checkin_agent.drivers import DriverRegistry, SelectorDriver
from checkin_agent.errors import ConfigError, DriverError

from fakes import ScriptedDriver


SITE_OPTIONS = {
    "checkin_url": "https://example.com/checkin",
    "logged_in_selectors": [".avatar"],
    "login_entry_selector": ".login",
    "username_selector": "#user",
    "password_selector": "#pass",
    "submit_selector": "#submit",
    "checkin_button_selector": ".checkin-btn",
    "already_checked_in_selector": ".signed",
    "checkin_success_selectors": [".success"],
    "settle_ms": 0,
    "post_submit_ms": 0,
}


class FakeElement:
    def __init__(self, page, selector, text):
        self.page = page
        self.selector = selector
        self.text = text

    async def click(self):
        await self.page.click(self.selector)

    async def text_content(self):
        return self.text


class FakePage:
    """Minimal page: a set of present selectors, texts, and click side effects."""

    def __init__(self, present=(), texts=None, reveals=None):
        self.url = "about:blank"
        self.present = set(present)
        self.texts = dict(texts or {})
        self.reveals = dict(reveals or {})
        self.visited = []
        self.clicks = []
        self.fills = {}

    async def goto(self, url):
        self.visited.append(url)
        self.url = url

    async def wait_for_load_state(self, state=None):
        return None

    async def wait_for_timeout(self, ms):
        return None

    async def wait_for_selector(self, selector, timeout=None):
        if selector not in self.present:
            raise TimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def click(self, selector):
        self.clicks.append(selector)
        self.present.update(self.reveals.get(selector, ()))

    async def fill(self, selector, text):
        self.fills[selector] = text

    async def query_selector(self, selector):
        if selector in self.present:
            return FakeElement(self, selector, self.texts.get(selector, ""))
        return None


def make_driver(**overrides):
    options = dict(SITE_OPTIONS, **overrides)
    target = TargetConfig(id="example", display_name="Example", url="https://example.com/", options=options)
    return SelectorDriver.from_target(target)


def handle_for(page):
    return BrowserHandle(page=page, context=None)


def test_registry_records_per_target_errors():
    targets = [
        TargetConfig(id="good", display_name="Good", url="https://example.com/", options=SITE_OPTIONS),
        TargetConfig(id="mystery", display_name="Mystery", driver="carrier-pigeon"),
        TargetConfig(id="incomplete", display_name="Incomplete", url="https://example.com/", options={"username_selector": "#u"}),
    ]

    registry = DriverRegistry.from_targets(targets)

    assert "good" in registry
    assert isinstance(registry.create(targets[0]), SelectorDriver)
    assert set(registry.errors) == {"mystery", "incomplete"}
    with pytest.raises(ConfigError, match="carrier-pigeon"):
        registry.create(targets[1])
    with pytest.raises(ConfigError):
        registry.create(targets[2])


def test_registry_accepts_custom_driver_kinds():
    driver = ScriptedDriver("custom")
    target = TargetConfig(id="custom", display_name="Custom", driver="scripted")

    registry = DriverRegistry.from_targets([target], kinds={"scripted": lambda target: driver})

    assert registry.create(target) is driver


def test_selector_settings_require_success_signal():
    with pytest.raises(ConfigError, match="example"):
        make_driver(already_checked_in_selector=None, checkin_success_selectors=[])


def test_check_logged_in_detects_avatar():
    driver = make_driver()
    page = FakePage(present={".avatar"})

    assert asyncio.run(driver.check_logged_in(handle_for(page))) is True
    assert page.visited == ["https://example.com/"]


def test_check_logged_in_sees_login_entry_text():
    driver = make_driver()
    page = FakePage(present={".login", ".avatar"}, texts={".login": "Log in"})

    assert asyncio.run(driver.check_logged_in(handle_for(page))) is False


def test_login_fills_form_and_confirms_session():
    driver = make_driver()
    page = FakePage(present={".login", "#user", "#pass", "#submit"}, reveals={"#submit": {".avatar"}})
    credentials = Credentials(username="alice", secret="s3cret")

    assert asyncio.run(driver.login(handle_for(page), credentials)) is True
    assert page.fills == {"#user": "alice", "#pass": "s3cret"}
    assert page.clicks == [".login", "#submit"]


def test_login_fails_when_form_is_missing():
    driver = make_driver(timeout_ms=1)
    page = FakePage(present={".login"})

    assert asyncio.run(driver.login(handle_for(page), Credentials("alice", "s3cret"))) is False
    assert page.fills == {}


def test_check_in_already_done_today():
    driver = make_driver()
    page = FakePage(present={".signed", ".checkin-btn"})

    assert asyncio.run(driver.perform_check_in(handle_for(page))) is True
    assert page.visited == ["https://example.com/checkin"]
    assert page.clicks == []


def test_check_in_clicks_button_and_reads_confirmation():
    driver = make_driver()
    page = FakePage(present={".checkin-btn"}, texts={".success": "+5 points"}, reveals={".checkin-btn": {".success"}})

    assert asyncio.run(driver.perform_check_in(handle_for(page))) is True
    assert page.clicks == [".checkin-btn"]


def test_check_in_without_button_or_confirmation_fails():
    driver = make_driver()

    assert asyncio.run(driver.perform_check_in(handle_for(FakePage()))) is False
    assert asyncio.run(driver.perform_check_in(handle_for(FakePage(present={".checkin-btn"})))) is False


class OfflinePage(FakePage):
    async def goto(self, url):
        raise ConnectionError("net::ERR_NAME_NOT_RESOLVED")


def test_navigation_failure_raises_driver_error():
    driver = make_driver()

    with pytest.raises(DriverError, match="could not open https://example.com/"):
        asyncio.run(driver.check_logged_in(handle_for(OfflinePage())))
