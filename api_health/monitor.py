"""Monitor — wires registry, state store, retry queue and notifications.

Everything that runs a checker (CLI, scheduler, API, retry jobs) goes
through ``Monitor.run_checker`` so they all share the same state store.
"""

from __future__ import annotations

import logging

from .checkers.executor import Executor
from .checkers.registry import CheckerRegistry
from .config import Settings, settings
from .jobs.queue import RetryQueue
from .jobs.retry import RETRY_CHECKER, JobRegistry, RetryCheckerJob
from .notifications import NotificationListener, NotificationManager
from .storage.state import StateStore

logger = logging.getLogger(__name__)


class Monitor:
    """Builds executors for registered checkers."""

    def __init__(
        self,
        registry: CheckerRegistry | None = None,
        store: StateStore | None = None,
        queue: RetryQueue | None = None,
        jobs: JobRegistry | None = None,
        notifier: NotificationManager | None = None,
        config: Settings | None = None,
    ) -> None:
        self.config = config or settings
        self.registry = registry or CheckerRegistry(config=self.config)
        self.store = store or StateStore(self.config.state_db_path)
        self.queue = queue or RetryQueue(max_workers=self.config.retry_workers)
        self.jobs = jobs or JobRegistry()

        if self.store.on_event is None:
            self.store.on_event = NotificationListener(
                self.store, notifier, self.config.resend_failed_notifications_every_minutes,
            )
        if RETRY_CHECKER not in self.jobs:
            self.jobs.register(RETRY_CHECKER, self._make_retry_job)

    def _make_retry_job(self, checker_id: str) -> RetryCheckerJob:
        return RetryCheckerJob(
            job_type=RETRY_CHECKER,
            checker_id=checker_id,
            delay_seconds=self.config.retry_delay_seconds,
            handler=self.run_checker,
        )

    def executor(self, checker_id: str) -> Executor:
        checker = self.registry.build(checker_id)
        state = self.store.state_for(checker_id, checker.retry_policy)
        return Executor(checker, state, queue=self.queue, jobs=self.jobs)

    def run_checker(self, checker_id: str) -> Executor:
        """Run one checker now and return its (already handled) executor."""
        executor = self.executor(checker_id).handle()
        logger.debug("Checker %s: %s", checker_id, "passes" if executor.passes() else "fails")
        return executor

    def run_all(self) -> list[Executor]:
        """Run every registered checker once, in registry order."""
        return [self.run_checker(checker_id) for checker_id in self.registry.ids()]

    def close(self, wait: bool = False) -> None:
        self.queue.shutdown(wait=wait)
        self.store.close()
