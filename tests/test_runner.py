import asyncio
from datetime import timedelta

from checkin_agent.persistence import SessionStore
from checkin_agent.runner import RunState, TargetRunner

from fakes import SESSION_COOKIES, FakeBrowserFactory, FixedClock, ScriptedDriver, fake_credentials, make_target


def build_runner(tmp_path, driver, factory=None, clock=None, target_id="site1"):
    store = SessionStore(tmp_path / "sessions", ttl=timedelta(days=7), clock=clock or FixedClock())
    factory = factory or FakeBrowserFactory()
    runner = TargetRunner(
        target=make_target(target_id),
        driver=driver,
        credentials=fake_credentials(target_id),
        store=store,
        browser_factory=factory,
    )
    return runner, store, factory


def test_first_run_logs_in_checks_in_and_saves_session(tmp_path):
    driver = ScriptedDriver("site1", logged_in=False, login_ok=True, check_in=True)
    runner, store, factory = build_runner(tmp_path, driver)

    result = asyncio.run(runner.run())

    assert result.success is True
    assert result.message == "check-in succeeded"
    assert driver.calls == ["check_logged_in", "login", "perform_check_in"]
    assert factory.seeded == [None]
    assert factory.closed == 1
    assert store.is_valid("site1")
    assert runner.history == [
        RunState.START,
        RunState.INITIALIZED,
        RunState.AUTH_CHECKED,
        RunState.LOGGING_IN,
        RunState.AUTHENTICATED,
        RunState.CHECKED_IN,
        RunState.CLOSED,
    ]


def test_valid_session_is_reused_and_login_skipped(tmp_path):
    driver = ScriptedDriver("site1", logged_in=True)
    runner, store, factory = build_runner(tmp_path, driver)
    store.save("site1", {"cookies": list(SESSION_COOKIES), "origins": []})

    result = asyncio.run(runner.run())

    assert result.success is True
    assert "login" not in driver.calls
    assert factory.seeded[0]["cookies"] == SESSION_COOKIES
    assert RunState.LOGGING_IN not in runner.history


def test_stale_session_is_purged_and_replaced_after_login(tmp_path):
    clock = FixedClock()
    driver = ScriptedDriver("site2", logged_in=False, login_ok=True)
    runner, store, factory = build_runner(tmp_path, driver, clock=clock, target_id="site2")
    store.save("site2", {"cookies": list(SESSION_COOKIES), "origins": []})
    clock.advance(days=8)

    result = asyncio.run(runner.run())

    assert result.success is True
    assert factory.seeded == [None]
    assert "login" in driver.calls
    assert store.load_valid("site2").last_written_at == clock.now


def test_login_failure_skips_check_in(tmp_path):
    driver = ScriptedDriver("site1", logged_in=False, login_ok=False)
    runner, store, factory = build_runner(tmp_path, driver)

    result = asyncio.run(runner.run())

    assert result.success is False
    assert result.message == "login failed"
    assert "perform_check_in" not in driver.calls
    assert not store.path_for("site1").exists()
    assert factory.closed == 1
    assert runner.state is RunState.CLOSED


def test_login_exception_becomes_failed_result(tmp_path):
    driver = ScriptedDriver("site1", logged_in=False, login_ok=RuntimeError("form changed"))
    runner, _, factory = build_runner(tmp_path, driver)

    result = asyncio.run(runner.run())

    assert result.message == "login failed"
    assert result.error == "form changed"
    assert factory.closed == 1


def test_login_check_error_is_treated_as_logged_out(tmp_path):
    driver = ScriptedDriver("site1", logged_in=TimeoutError("navigation timed out"))
    runner, _, _ = build_runner(tmp_path, driver)

    result = asyncio.run(runner.run())

    assert result.success is True
    assert driver.calls == ["check_logged_in", "login", "perform_check_in"]


def test_check_in_exception_is_reported_and_browser_released(tmp_path):
    driver = ScriptedDriver("site1", logged_in=True, check_in=RuntimeError("button detached"))
    runner, _, factory = build_runner(tmp_path, driver)

    result = asyncio.run(runner.run())

    assert result.success is False
    assert result.message == "check-in error"
    assert "button detached" in result.error
    assert factory.closed == 1
    assert runner.history[-1] is RunState.CLOSED


def test_check_in_rejected_by_site(tmp_path):
    driver = ScriptedDriver("site1", logged_in=True, check_in=False)
    runner, _, _ = build_runner(tmp_path, driver)

    result = asyncio.run(runner.run())

    assert result.success is False
    assert result.message == "check-in failed"
    assert RunState.CHECKED_IN in runner.history


def test_browser_acquisition_failure(tmp_path):
    driver = ScriptedDriver("site1")
    runner, _, factory = build_runner(tmp_path, driver, factory=FakeBrowserFactory(fail=True))

    result = asyncio.run(runner.run())

    assert result.success is False
    assert result.message == "browser unavailable"
    assert "chromium" in result.error
    assert driver.calls == []
    assert runner.history == [RunState.START, RunState.CLOSED]
