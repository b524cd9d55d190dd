from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence

from .browser import BrowserFactory
from .config import AppConfig, Credentials, TargetConfig, credentials_for
from .drivers.registry import DriverRegistry
from .errors import ConfigError
from .persistence.session_store import SessionStore
from .runner import TargetRunner
from .schemas import RunReport, RunResult


LOGGER = logging.getLogger("checkin_agent.orchestrator")

CredentialsProvider = Callable[[str], Credentials]
Sleep = Callable[[float], Awaitable[None]]


class Orchestrator:
    """
    Run the Target Runner over the configured targets and aggregate results.

    Results are always ordered like the configured targets, in serial and in
    parallel mode, so reports are comparable across passes. Every target yields
    exactly one :class:`RunResult`, including targets whose configuration is
    broken.
    """

    def __init__(
        self,
        targets: Sequence[TargetConfig],
        store: SessionStore,
        registry: DriverRegistry,
        browser_factory: BrowserFactory,
        credentials: CredentialsProvider = credentials_for,
        inter_target_delay: float = 3.0,
        max_concurrency: Optional[int] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._targets = [target for target in targets if target.enabled]
        self._store = store
        self._registry = registry
        self._browser_factory = browser_factory
        self._credentials = credentials
        self._inter_target_delay = inter_target_delay
        self._max_concurrency = max_concurrency
        self._sleep = sleep
        self._logger = LOGGER

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: SessionStore,
        browser_factory: BrowserFactory,
        registry: Optional[DriverRegistry] = None,
    ) -> "Orchestrator":
        return cls(
            targets=config.targets,
            store=store,
            registry=registry or DriverRegistry.from_targets(config.targets),
            browser_factory=browser_factory,
            inter_target_delay=config.orchestrator.inter_target_delay_seconds,
            max_concurrency=config.orchestrator.max_concurrency,
        )

    @property
    def targets(self) -> List[TargetConfig]:
        return list(self._targets)

    async def run_all(self, parallel: bool = False) -> RunReport:
        """Check into every enabled target, after purging expired sessions."""
        started = time.monotonic()
        self._logger.info("Starting pass over %d target(s) (%s)", len(self._targets), "parallel" if parallel else "serial")
        await asyncio.to_thread(self._store.purge_expired)

        if parallel:
            results = await self._run_parallel(self._targets)
        else:
            results = await self._run_serial(self._targets)

        report = RunReport(results=results, duration_seconds=time.monotonic() - started)
        self._log_summary(report)
        return report

    async def run_single(self, target_id: str) -> RunReport:
        started = time.monotonic()
        target = self._find(target_id)
        if target is None:
            self._logger.error("Target %s not found or disabled", target_id)
            result = RunResult(
                target_id=target_id,
                display_name=target_id,
                success=False,
                message="target not found or disabled",
            )
        else:
            result = await self._run_target(target)
        report = RunReport(results=[result], duration_seconds=time.monotonic() - started)
        self._log_summary(report)
        return report

    async def run_selected(self, target_ids: Sequence[str]) -> RunReport:
        """Run *target_ids* one by one, in the given order, with the inter-target delay."""
        started = time.monotonic()
        reports: List[RunReport] = []
        for index, target_id in enumerate(target_ids):
            reports.append(await self.run_single(target_id))
            if index < len(target_ids) - 1:
                await self._pause()
        return RunReport.combine(reports, duration_seconds=time.monotonic() - started)

    async def _run_serial(self, targets: Sequence[TargetConfig]) -> List[RunResult]:
        results: List[RunResult] = []
        for index, target in enumerate(targets):
            results.append(await self._run_target(target))
            if index < len(targets) - 1:
                await self._pause()
        return results

    async def _run_parallel(self, targets: Sequence[TargetConfig]) -> List[RunResult]:
        if self._max_concurrency:
            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def bounded(target: TargetConfig) -> RunResult:
                async with semaphore:
                    return await self._run_target(target)

            return list(await asyncio.gather(*(bounded(target) for target in targets)))
        return list(await asyncio.gather(*(self._run_target(target) for target in targets)))

    async def _run_target(self, target: TargetConfig) -> RunResult:
        self._logger.info("-> %s", target.display_name)
        try:
            driver = self._registry.create(target)
            credentials = self._credentials(target.id)
        except ConfigError as exc:
            self._logger.error("%s - configuration error: %s", target.display_name, exc)
            return RunResult(
                target_id=target.id,
                display_name=target.display_name,
                success=False,
                message="configuration error",
                error=str(exc),
            )

        runner = TargetRunner(
            target=target,
            driver=driver,
            credentials=credentials,
            store=self._store,
            browser_factory=self._browser_factory,
        )
        try:
            return await runner.run()
        except Exception as exc:
            self._logger.exception("%s - run failed unexpectedly: %s", target.display_name, exc)
            return RunResult(
                target_id=target.id,
                display_name=target.display_name,
                success=False,
                message="run error",
                error=str(exc),
            )

    async def _pause(self) -> None:
        if self._inter_target_delay > 0:
            self._logger.info("Waiting %.0fs before the next target", self._inter_target_delay)
            await self._sleep(self._inter_target_delay)

    def _find(self, target_id: str) -> Optional[TargetConfig]:
        for target in self._targets:
            if target.id == target_id:
                return target
        return None

    def _log_summary(self, report: RunReport) -> None:
        self._logger.info(
            "Pass finished: %d succeeded, %d failed in %.1fs",
            report.success_count,
            report.failure_count,
            report.duration_seconds,
        )
        for failure in report.failures():
            self._logger.warning("%s: %s", failure.display_name, failure.error or failure.message)
