"""Checker contract — the unit of work a health check is made of.

A checker either returns from ``run()`` or raises ``CheckerHasFailed``.
Anything else it raises is treated as a bug and propagates.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ..storage.state import RetryPolicy

if TYPE_CHECKING:
    from ..jobs.retry import RetryCheckerJob


class CheckerHasFailed(Exception):
    """Raised by a checker when the probed dependency is unhealthy."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def cause_name(self) -> str:
        return type(self.cause).__name__ if self.cause is not None else ""


class Checker(ABC):
    """Base class for all checkers.

    ``checker_id`` is the identity the state store and retry jobs are keyed by.
    """

    def __init__(
        self,
        checker_id: str,
        retry_policy: RetryPolicy | None = None,
        retry_job_type: str | None = None,
    ) -> None:
        self.checker_id = checker_id
        self.retry_policy = retry_policy or RetryPolicy()
        self.retry_job_type = retry_job_type or None

    @abstractmethod
    def run(self) -> None:
        """Probe the dependency; raise ``CheckerHasFailed`` when it's unhealthy."""

    def retry_checker_job(self) -> str | None:
        """Job-type token for a deferred retry, or None to retry on the next tick."""
        return self.retry_job_type

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.checker_id!r})"


class ReceivesRetryJob(ABC):
    """Optional capability: see the retry job before it is dispatched."""

    @abstractmethod
    def with_retry_job(self, job: RetryCheckerJob) -> None:
        ...
