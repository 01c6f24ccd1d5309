"""Deferred retry jobs — a typed envelope around one checker identity.

Job types are tokens (``"retry-checker"``) mapped to constructors in a
``JobRegistry``; checkers name the token, never a class.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

RETRY_CHECKER = "retry-checker"


class UnknownJobTypeError(KeyError):
    """No factory is registered for a job-type token."""


@dataclass
class RetryCheckerJob:
    """Re-runs a checker later through the retry queue."""

    job_type: str
    checker_id: str
    delay_seconds: float = 0.0
    handler: Callable[[str], Any] | None = field(default=None, repr=False, compare=False)

    def handle(self) -> Any:
        if self.handler is None:
            raise RuntimeError(f"Job {self.job_type} for {self.checker_id} has no handler")
        logger.info("Running %s for %s", self.job_type, self.checker_id)
        return self.handler(self.checker_id)

    def matches(self, job_type: str, checker_id: str) -> bool:
        return self.job_type == job_type and self.checker_id == checker_id


JobFactory = Callable[[str], RetryCheckerJob]


class JobRegistry:
    """Maps job-type tokens to factories taking a checker identity."""

    def __init__(self) -> None:
        self._factories: dict[str, JobFactory] = {}

    def register(self, job_type: str, factory: JobFactory) -> None:
        self._factories[job_type] = factory

    def make(self, job_type: str, checker_id: str) -> RetryCheckerJob:
        factory = self._factories.get(job_type)
        if factory is None:
            raise UnknownJobTypeError(job_type)
        return factory(checker_id)

    def types(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._factories
