"""Checker scheduler — runs every checker at its configured interval.

One asyncio loop per checker; each run happens in a thread pool so slow
probes never block the event loop. Results are passed to ``on_result``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from .checkers.executor import Executor
from .monitor import Monitor

logger = logging.getLogger(__name__)


class CheckerScheduler:
    """Schedules and executes all registered checkers."""

    def __init__(
        self,
        monitor: Monitor,
        on_result: Callable[[Executor], Any] | None = None,
        max_workers: int = 4,
    ) -> None:
        self.monitor = monitor
        self.on_result = on_result
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="checker")
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start one loop per registered checker."""
        if self._running:
            return
        self._running = True

        checker_ids = self.monitor.registry.ids()
        if not checker_ids:
            logger.info("No checkers configured — scheduler idle")
            return

        for checker_id in checker_ids:
            interval = self.monitor.registry.interval_for(checker_id)
            task = asyncio.create_task(
                self._check_loop(checker_id, interval),
                name=f"checker-{checker_id}",
            )
            self._tasks.append(task)

        logger.info("Checker scheduler started: %d checkers", len(checker_ids))

    async def stop(self) -> None:
        """Stop all checker loops."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._executor.shutdown(wait=False)
        logger.info("Checker scheduler stopped")

    async def run_now(self, checker_id: str) -> Executor:
        """Run a single checker immediately (manual trigger)."""
        loop = asyncio.get_running_loop()
        executor = await loop.run_in_executor(self._executor, self.monitor.run_checker, checker_id)
        self._publish(executor)
        return executor

    async def run_all_now(self) -> list[Executor]:
        """Run all checkers immediately, skipping ones that blow up."""
        results = []
        for checker_id in self.monitor.registry.ids():
            try:
                results.append(await self.run_now(checker_id))
            except Exception:
                logger.exception("Checker error: %s", checker_id)
        return results

    def _publish(self, executor: Executor) -> None:
        if self.on_result:
            try:
                self.on_result(executor)
            except Exception:
                logger.exception("Result callback error")

    async def _check_loop(self, checker_id: str, interval: int) -> None:
        """Persistent loop that runs a single checker at its interval."""
        while self._running:
            try:
                executor = await self.run_now(checker_id)
                logger.debug(
                    "Checker %s: %s", checker_id, "passes" if executor.passes() else "fails",
                )
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Checker error: %s", checker_id)

            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break
