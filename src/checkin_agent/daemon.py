"""Long-running schedule process and its on-disk state file."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .scheduler import Scheduler


LOGGER = logging.getLogger("checkin_agent.daemon")

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass
class DaemonState:
    pid: int
    started_at: str
    schedules: List[Dict[str, Any]] = field(default_factory=list)


class ScheduleDaemon:
    """
    Run a :class:`Scheduler` until SIGINT/SIGTERM.

    A signal stops the schedules; passes already running finish before the
    process exits. While serving, a JSON state file lets other invocations
    inspect or stop this process.
    """

    def __init__(self, scheduler: Scheduler, state_path: Path) -> None:
        self._scheduler = scheduler
        self._state_path = Path(state_path)

    async def serve(self) -> None:
        loop = asyncio.get_running_loop()
        installed = []
        for signum in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(signum, self._on_signal, signum)
                installed.append(signum)
            except (NotImplementedError, RuntimeError):
                LOGGER.debug("Signal %s handler not supported on this platform", signum)

        self._write_state()
        LOGGER.info("Schedule daemon running (pid %d); press Ctrl+C to stop", os.getpid())
        try:
            await self._scheduler.serve()
        finally:
            for signum in installed:
                loop.remove_signal_handler(signum)
            self._remove_state()
            LOGGER.info("Schedule daemon shut down")

    def _on_signal(self, signum: int) -> None:
        LOGGER.info("Received %s, stopping schedules", signal.Signals(signum).name)
        self._scheduler.stop()

    def _write_state(self) -> None:
        state = DaemonState(
            pid=os.getpid(),
            started_at=datetime.now(timezone.utc).isoformat(),
            schedules=[
                {
                    "id": entry.id,
                    "cron_expression": str(entry.cron),
                    "parallel": entry.parallel,
                    "target_filter": list(entry.target_filter),
                }
                for entry in self._scheduler.entries()
            ],
        )
        self._state_path.parent.mkdir(parents=True, exist_ok=True)
        self._state_path.write_text(json.dumps(asdict(state), indent=2), encoding="utf-8")

    def _remove_state(self) -> None:
        try:
            self._state_path.unlink()
        except FileNotFoundError:
            pass


def read_daemon_state(state_path: Path) -> Optional[DaemonState]:
    """Return the live daemon's state; stale files left by dead processes are removed."""
    path = Path(state_path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        state = DaemonState(
            pid=int(payload["pid"]),
            started_at=str(payload.get("started_at", "")),
            schedules=list(payload.get("schedules", [])),
        )
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, TypeError) as exc:
        LOGGER.warning("Ignoring unreadable scheduler state %s: %s", path, exc)
        return None

    if not _pid_alive(state.pid):
        LOGGER.info("Removing stale scheduler state for pid %d", state.pid)
        path.unlink(missing_ok=True)
        return None
    return state


def stop_daemon(state_path: Path) -> bool:
    """Send SIGTERM to the live daemon; ``False`` if none is running."""
    state = read_daemon_state(state_path)
    if state is None:
        return False
    try:
        os.kill(state.pid, signal.SIGTERM)
    except ProcessLookupError:
        return False
    LOGGER.info("Sent SIGTERM to schedule daemon (pid %d)", state.pid)
    return True


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
