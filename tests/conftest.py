"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from api_health.checkers.base import Checker, CheckerHasFailed, ReceivesRetryJob
from api_health.checkers.registry import CheckerRegistry
from api_health.config import Settings
from api_health.jobs.queue import RetryQueue
from api_health.monitor import Monitor
from api_health.notifications import NotificationManager
from api_health.storage.state import RetryPolicy, StateEvent, StateStore


class FakeClock:
    """Controllable UTC clock for the state store."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class ScriptedChecker(Checker):
    """Checker whose outcomes are scripted: True passes, False fails, an exception is raised."""

    def __init__(self, checker_id: str = "scripted", outcomes=None, **kwargs) -> None:
        super().__init__(checker_id, **kwargs)
        self.outcomes = list(outcomes or [True])
        self.runs = 0

    def run(self) -> None:
        outcome = self.outcomes[min(self.runs, len(self.outcomes) - 1)]
        self.runs += 1
        if isinstance(outcome, BaseException):
            raise outcome
        if not outcome:
            raise CheckerHasFailed(f"{self.checker_id} is down", ConnectionError("refused"))


class DeferredRetryChecker(ScriptedChecker, ReceivesRetryJob):
    """Asks for a deferred retry job and remembers the job it was given."""

    def __init__(self, checker_id: str = "deferred", outcomes=None, **kwargs) -> None:
        kwargs.setdefault("retry_job_type", "retry-checker")
        super().__init__(checker_id, outcomes, **kwargs)
        self.received_jobs = []

    def with_retry_job(self, job) -> None:
        self.received_jobs.append(job)


class RecordingQueue(RetryQueue):
    """RetryQueue that keeps the futures of submitted jobs so tests can wait on them."""

    def __init__(self) -> None:
        super().__init__(max_workers=2)
        self.futures = []
        self.submitted = []

    def submit(self, job, before=None):
        self.submitted.append(job)
        future = super().submit(job, before)
        self.futures.append(future)
        return future

    def drain(self, timeout: float = 5.0) -> None:
        """Wait for every submitted job, including ones submitted while waiting."""
        done = 0
        while done < len(self.futures):
            try:
                self.futures[done].result(timeout=timeout)
            except Exception:
                pass
            done += 1


class DisabledNotifier(NotificationManager):
    def __init__(self) -> None:
        super().__init__()
        self.slack_webhook = ""
        self.telegram_token = ""
        self.telegram_chat_id = ""
        self._enabled = False


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> list[StateEvent]:
    return []


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock, events: list[StateEvent]) -> StateStore:
    return StateStore(db_path=tmp_path / "state.db", on_event=events.append, clock=clock)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        checkers_path=str(tmp_path / "checkers.yaml"),
        state_db_path=str(tmp_path / "state.db"),
        allowed_retries=0,
        retry_within_seconds=0,
        retry_job="",
        retry_delay_seconds=0.0,
        resend_failed_notifications_every_minutes=60,
        slack_webhook_url="",
        telegram_bot_token="",
        telegram_chat_id="",
    )


@pytest.fixture
def queue():
    q = RecordingQueue()
    yield q
    q.shutdown(wait=True)


@pytest.fixture
def monitor(test_settings: Settings, store: StateStore, queue: RecordingQueue) -> Monitor:
    registry = CheckerRegistry(config=test_settings)
    return Monitor(
        registry=registry,
        store=store,
        queue=queue,
        notifier=DisabledNotifier(),
        config=test_settings,
    )


def retrying(allowed: int, within: int | None = None) -> RetryPolicy:
    return RetryPolicy(allowed_retries=allowed, within_seconds=within)
