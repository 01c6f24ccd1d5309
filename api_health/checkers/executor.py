"""Executor — runs one checker and applies the resulting state transition.

    run() ok                      → set_to_passing()
    CheckerHasFailed, retry ok    → retry path (sync timestamp or deferred job)
    CheckerHasFailed, no retry    → set_to_failed() / add_failed_timestamp()

Anything else raised by the checker propagates to the caller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..jobs.queue import RetryQueue
from ..jobs.retry import JobRegistry, RetryCheckerJob
from ..storage.state import CheckerState
from .base import Checker, CheckerHasFailed, ReceivesRetryJob

if TYPE_CHECKING:
    from ..monitor import Monitor

logger = logging.getLogger(__name__)


class Executor:
    """Runs a checker at most once and reports whether it passes."""

    def __init__(
        self,
        checker: Checker,
        state: CheckerState,
        queue: RetryQueue | None = None,
        jobs: JobRegistry | None = None,
    ) -> None:
        self.checker = checker
        self.state = state
        self.queue = queue
        self.jobs = jobs
        self.failure: CheckerHasFailed | None = None
        self._failed: bool | None = None

    @classmethod
    def make(cls, checker_id: str, monitor: Monitor) -> Executor:
        """Shortcut for building an executor for a registered checker."""
        return monitor.executor(checker_id)

    def passes(self) -> bool:
        """True unless the checker failed terminally. A checker mid-retry passes."""
        if self._failed is None:
            self.handle()
        return not self._failed

    def fails(self) -> bool:
        return not self.passes()

    def handle(self) -> Executor:
        """Run the checker and store the resulting state."""
        self._failed = False
        self.failure = None

        try:
            self.checker.run()
        except CheckerHasFailed as exc:
            if self.state.retry_is_allowed():
                self._handle_allowed_retry()
            else:
                self.failure = exc
                self._failed = True
                self._handle_failed_checker()
        else:
            self.state.set_to_passing()

        return self

    def _handle_failed_checker(self) -> None:
        if self.state.exists() and self.state.is_failing():
            self.state.add_failed_timestamp(self.failure)
            return

        self.state.set_to_failed(self.failure)

    def _handle_allowed_retry(self) -> None:
        if not self.state.exists():
            self.state.set_to_passing()

        job_type = self.checker.retry_checker_job()
        if not job_type:
            self.state.add_retry_timestamp()
            return

        if self.queue is None or self.jobs is None:
            raise RuntimeError(
                f"{self.checker!r} asks for a {job_type!r} retry job but no retry queue is configured"
            )

        job = self.jobs.make(job_type, self.checker.checker_id)

        if isinstance(self.checker, ReceivesRetryJob):
            self.checker.with_retry_job(job)

        logger.info("Dispatching %s for %s", job_type, self.checker.checker_id)
        self.queue.submit(job, before=self._retry_hook(job_type))

    def _retry_hook(self, job_type: str):
        checker_id = self.checker.checker_id
        state = self.state

        def before(job: RetryCheckerJob) -> None:
            if job.matches(job_type, checker_id):
                state.add_retry_timestamp()

        return before
