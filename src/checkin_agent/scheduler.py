"""Calendar-based triggering of orchestration passes."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import ScheduleConfig
from .cron import CronExpression
from .errors import ScheduleError
from .orchestrator import Orchestrator
from .schemas import RunReport


LOGGER = logging.getLogger("checkin_agent.scheduler")

OrchestratorFactory = Callable[[], Orchestrator]
ReportCallback = Callable[[str, RunReport], None]
Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]

MANUAL_RUN_ID = "manual"


@dataclass(frozen=True)
class ScheduleEntry:
    id: str
    cron: CronExpression
    parallel: bool = False
    target_filter: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RetryPolicy:
    """Re-run a whole pass while it reports failures."""

    enabled: bool = False
    max_retries: int = 3
    delay_seconds: float = 300.0

    @classmethod
    def from_config(cls, config: ScheduleConfig) -> "RetryPolicy":
        return cls(
            enabled=config.retry_on_failure,
            max_retries=config.max_retries,
            delay_seconds=config.retry_delay_seconds,
        )


@dataclass(frozen=True)
class SchedulerStatus:
    schedule_ids: Tuple[str, ...]
    running: bool


class Scheduler:
    """
    Fire orchestration passes at cron-defined minutes.

    Entries are keyed by id and can be added or removed while :meth:`serve`
    runs. Each firing builds a fresh orchestrator. A firing that raises is
    logged and the entry stays registered; a firing whose previous run is still
    in flight is skipped. :meth:`stop` without an id ends :meth:`serve` once
    in-flight firings have completed; runs are never cancelled mid-flight.
    """

    def __init__(
        self,
        orchestrator_factory: OrchestratorFactory,
        timezone: Optional[str] = None,
        retry: RetryPolicy = RetryPolicy(),
        on_report: Optional[ReportCallback] = None,
        clock: Optional[Clock] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        try:
            self._tz = ZoneInfo(timezone) if timezone else None
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ScheduleError(f"Unknown timezone {timezone!r}") from exc
        self._retry = retry
        self._on_report = on_report
        self._clock = clock
        self._sleep = sleep
        self._entries: Dict[str, ScheduleEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        if self._tz is not None:
            return datetime.now(self._tz)
        return datetime.now().astimezone()

    def add_schedule(
        self,
        schedule_id: str,
        cron_expression: str,
        parallel: bool = False,
        target_filter: Sequence[str] = (),
    ) -> ScheduleEntry:
        """Register a schedule. Invalid expressions and taken ids raise :class:`ScheduleError`."""
        if schedule_id in self._entries:
            raise ScheduleError(f"Schedule {schedule_id!r} is already registered; stop it first")
        try:
            cron = CronExpression.parse(cron_expression)
        except ScheduleError as exc:
            LOGGER.error("Rejected schedule %s: %s", schedule_id, exc)
            raise

        entry = ScheduleEntry(
            id=schedule_id,
            cron=cron,
            parallel=parallel,
            target_filter=tuple(target_filter),
        )
        self._entries[schedule_id] = entry
        LOGGER.info(
            "Schedule %s registered: %s (%s), %s, targets: %s",
            schedule_id,
            cron,
            cron.describe(),
            "parallel" if parallel else "serial",
            ", ".join(entry.target_filter) or "all enabled",
        )
        next_run = self.next_run(schedule_id)
        if next_run is not None:
            LOGGER.info("Next run of %s at %s", schedule_id, next_run.isoformat(timespec="minutes"))
        return entry

    def stop(self, schedule_id: Optional[str] = None) -> None:
        """Unregister one schedule, or all of them and end :meth:`serve`."""
        if schedule_id is not None:
            if self._entries.pop(schedule_id, None) is not None:
                LOGGER.info("Schedule %s stopped", schedule_id)
            return

        for entry_id in list(self._entries):
            self._entries.pop(entry_id)
            LOGGER.info("Schedule %s stopped", entry_id)
        if self._stop_event is not None:
            self._stop_event.set()

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(schedule_ids=tuple(self._entries), running=self._running)

    def entries(self) -> List[ScheduleEntry]:
        return list(self._entries.values())

    def next_run(self, schedule_id: str) -> Optional[datetime]:
        entry = self._entries.get(schedule_id)
        if entry is None:
            return None
        return entry.cron.next_after(self.now())

    async def serve(self) -> None:
        """Tick once per minute and fire the entries due at that minute."""
        if self._running:
            raise ScheduleError("Scheduler is already running")
        self._running = True
        self._stop_event = asyncio.Event()
        LOGGER.info("Scheduler started with %d schedule(s)", len(self._entries))
        try:
            while not self._stop_event.is_set():
                now = self.now()
                tick = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=(tick - now).total_seconds())
                except asyncio.TimeoutError:
                    self.fire_due(tick)
        finally:
            if self._inflight:
                LOGGER.info("Waiting for %d in-flight pass(es) to finish", len(self._inflight))
                await asyncio.gather(*self._inflight.values(), return_exceptions=True)
            self._running = False
            self._stop_event = None
            LOGGER.info("Scheduler stopped")

    def fire_due(self, moment: datetime) -> List[asyncio.Task]:
        """Start a firing for every entry matching *moment*; requires a running loop."""
        started: List[asyncio.Task] = []
        for entry in list(self._entries.values()):
            if not entry.cron.matches(moment):
                continue
            previous = self._inflight.get(entry.id)
            if previous is not None and not previous.done():
                LOGGER.warning("Schedule %s is still running; skipping this firing", entry.id)
                continue
            task = asyncio.create_task(self.fire(entry))
            self._inflight[entry.id] = task
            task.add_done_callback(lambda done, entry_id=entry.id: self._forget(entry_id, done))
            started.append(task)
        return started

    async def fire(self, entry: ScheduleEntry) -> Optional[RunReport]:
        """Run one firing of *entry*, retrying the whole pass on failures if configured."""
        LOGGER.info("Schedule %s fired", entry.id)
        try:
            report = await self._run_pass(entry.parallel, entry.target_filter)
            attempt = 0
            while self._retry.enabled and report.failure_count and attempt < self._retry.max_retries:
                attempt += 1
                LOGGER.warning(
                    "Schedule %s: %d target(s) failed, retry %d/%d in %.0fs",
                    entry.id,
                    report.failure_count,
                    attempt,
                    self._retry.max_retries,
                    self._retry.delay_seconds,
                )
                await self._sleep(self._retry.delay_seconds)
                report = await self._run_pass(entry.parallel, entry.target_filter)
        except Exception as exc:
            LOGGER.exception("Schedule %s failed: %s", entry.id, exc)
            return None

        self._publish(entry.id, report)
        LOGGER.info("Schedule %s finished", entry.id)
        return report

    async def run_now(self, parallel: bool = False, target_filter: Sequence[str] = ()) -> RunReport:
        """Run one pass immediately, independent of any schedule."""
        LOGGER.info("Manual pass triggered")
        report = await self._run_pass(parallel, tuple(target_filter))
        self._publish(MANUAL_RUN_ID, report)
        return report

    async def _run_pass(self, parallel: bool, target_filter: Tuple[str, ...]) -> RunReport:
        orchestrator = self._orchestrator_factory()
        if target_filter:
            return await orchestrator.run_selected(target_filter)
        return await orchestrator.run_all(parallel=parallel)

    def _publish(self, schedule_id: str, report: RunReport) -> None:
        if self._on_report is None:
            return
        try:
            self._on_report(schedule_id, report)
        except Exception as exc:
            LOGGER.exception("Report callback for %s failed: %s", schedule_id, exc)

    def _forget(self, entry_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(entry_id) is task:
            del self._inflight[entry_id]
