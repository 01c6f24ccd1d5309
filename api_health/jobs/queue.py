"""Retry queue — runs deferred jobs on a worker pool.

``submit()`` is fire-and-forget: it returns a Future, but nothing in the
check path waits on it. Before-hooks run in the worker, after the job's
delay and strictly before ``job.handle()``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from .retry import RetryCheckerJob

logger = logging.getLogger(__name__)

BeforeHook = Callable[[RetryCheckerJob], Any]
JobPredicate = Callable[[RetryCheckerJob], bool]


@dataclass
class _RegisteredHook:
    predicate: JobPredicate
    callback: BeforeHook
    once: bool = True


class RetryQueue:
    """Thread-pool backed queue for ``RetryCheckerJob``s."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="retry")
        self._hooks: list[_RegisteredHook] = []
        self._hooks_lock = threading.Lock()

    def register_before_hook(
        self,
        predicate: JobPredicate,
        callback: BeforeHook,
        once: bool = True,
    ) -> None:
        """Run ``callback(job)`` before the next job matching ``predicate``.

        With ``once=False`` the hook stays registered for every matching job.
        """
        with self._hooks_lock:
            self._hooks.append(_RegisteredHook(predicate, callback, once))

    def submit(self, job: RetryCheckerJob, before: BeforeHook | None = None) -> Future[Any]:
        """Queue ``job``; ``before(job)`` runs right before its body."""
        logger.debug("Queued %s for %s (delay %.1fs)", job.job_type, job.checker_id, job.delay_seconds)
        return self._executor.submit(self._execute, job, before)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _matching_hooks(self, job: RetryCheckerJob) -> list[BeforeHook]:
        matched: list[BeforeHook] = []
        with self._hooks_lock:
            remaining = []
            for hook in self._hooks:
                if hook.predicate(job):
                    matched.append(hook.callback)
                    if hook.once:
                        continue
                remaining.append(hook)
            self._hooks = remaining
        return matched

    def _execute(self, job: RetryCheckerJob, before: BeforeHook | None) -> Any:
        if job.delay_seconds > 0:
            time.sleep(job.delay_seconds)

        try:
            callbacks = self._matching_hooks(job)
            if before is not None:
                callbacks.append(before)
            for callback in callbacks:
                callback(job)

            return job.handle()
        except Exception:
            logger.exception("Retry job %s for %s failed", job.job_type, job.checker_id)
            raise
