import asyncio
import json
import os

from checkin_agent import daemon
from checkin_agent.daemon import ScheduleDaemon, read_daemon_state, stop_daemon
from checkin_agent.scheduler import Scheduler


def write_state(path, pid):
    path.write_text(
        json.dumps({"pid": pid, "started_at": "2024-05-06T08:00:00+00:00", "schedules": [{"id": "main"}]}),
        encoding="utf-8",
    )


def test_missing_or_unreadable_state(tmp_path):
    path = tmp_path / "scheduler.json"
    assert read_daemon_state(path) is None

    path.write_text("not json", encoding="utf-8")
    assert read_daemon_state(path) is None
    assert stop_daemon(path) is False


def test_live_daemon_state(tmp_path):
    path = tmp_path / "scheduler.json"
    write_state(path, os.getpid())

    state = read_daemon_state(path)

    assert state.pid == os.getpid()
    assert state.schedules == [{"id": "main"}]


def test_stale_state_is_removed(tmp_path, monkeypatch):
    path = tmp_path / "scheduler.json"
    write_state(path, 424242)
    monkeypatch.setattr(daemon, "_pid_alive", lambda pid: False)

    assert read_daemon_state(path) is None
    assert not path.exists()


def test_stop_daemon_sends_sigterm(tmp_path, monkeypatch):
    path = tmp_path / "scheduler.json"
    write_state(path, 424242)
    sent = []
    monkeypatch.setattr(daemon, "_pid_alive", lambda pid: True)
    monkeypatch.setattr(daemon.os, "kill", lambda pid, signum: sent.append((pid, signum)))

    assert stop_daemon(path) is True
    assert sent == [(424242, daemon.signal.SIGTERM)]


def test_daemon_publishes_state_while_serving(tmp_path):
    path = tmp_path / "scheduler.json"

    async def scenario():
        scheduler = Scheduler(orchestrator_factory=lambda: None)
        scheduler.add_schedule("main", "0 8 * * 1-5", target_filter=["juejin"])
        task = asyncio.create_task(ScheduleDaemon(scheduler, path).serve())
        await asyncio.sleep(0)
        published = json.loads(path.read_text(encoding="utf-8"))
        scheduler.stop()
        await asyncio.wait_for(task, timeout=2)
        return published

    published = asyncio.run(scenario())

    assert published["pid"] == os.getpid()
    assert published["schedules"] == [
        {"id": "main", "cron_expression": "0 8 * * 1-5", "parallel": False, "target_filter": ["juejin"]}
    ]
    assert not path.exists()
