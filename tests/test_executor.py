"""Tests for the Executor — the run / retry / fail state machine."""

from __future__ import annotations

import pytest

from api_health.checkers.base import CheckerHasFailed
from api_health.checkers.executor import Executor
from api_health.jobs.retry import RETRY_CHECKER, RetryCheckerJob
from api_health.storage.state import EventKind, Status

from conftest import DeferredRetryChecker, ScriptedChecker, retrying


def make_executor(store, checker, **kwargs) -> Executor:
    return Executor(checker, store.state_for(checker.checker_id, checker.retry_policy), **kwargs)


# ── Passing ──────────────────────────────────────────────────────────────────


class TestPassingChecker:
    def test_passes_and_creates_record(self, store) -> None:
        executor = make_executor(store, ScriptedChecker(outcomes=[True]))

        assert executor.passes() is True
        assert executor.fails() is False
        assert executor.failure is None
        assert store.get("scripted").status == Status.PASSING

    def test_clears_failure_and_retry_history(self, store, events) -> None:
        state = store.state_for("scripted")
        state.add_retry_timestamp()
        state.set_to_failed(CheckerHasFailed("down"))
        state.add_failed_timestamp(CheckerHasFailed("still down"))

        assert make_executor(store, ScriptedChecker(outcomes=[True])).passes()

        record = store.get("scripted")
        assert record.status == Status.PASSING
        assert record.failed_at == []
        assert record.retried_at == []
        assert record.last_failure is None
        assert events[-1].kind == EventKind.RECOVERED

    def test_no_recovered_event_when_already_passing(self, store, events) -> None:
        store.state_for("scripted").set_to_passing()
        make_executor(store, ScriptedChecker(outcomes=[True])).passes()
        assert [e.kind for e in events] == []


# ── Terminal failure ─────────────────────────────────────────────────────────


class TestTerminalFailure:
    def test_first_failure_without_retries(self, store, events) -> None:
        executor = make_executor(store, ScriptedChecker(outcomes=[False]))

        assert executor.fails() is True
        assert executor.passes() is False
        assert isinstance(executor.failure, CheckerHasFailed)
        assert executor.failure.message == "scripted is down"

        record = store.get("scripted")
        assert record.status == Status.FAILING
        assert len(record.failed_at) == 1
        assert record.last_failure.message == "scripted is down"
        assert record.last_failure.cause == "ConnectionError"
        assert [e.kind for e in events] == [EventKind.FAILED]

    def test_failure_while_failing_appends_timestamp(self, store, events, clock) -> None:
        make_executor(store, ScriptedChecker(outcomes=[False])).handle()
        clock.advance(minutes=1)
        executor = make_executor(store, ScriptedChecker(outcomes=[False]))

        assert executor.fails()
        record = store.get("scripted")
        assert record.status == Status.FAILING
        assert len(record.failed_at) == 2
        # Only one initial alert signal
        assert [e.kind for e in events] == [EventKind.FAILED, EventKind.STILL_FAILING]

    def test_failure_after_passing_starts_new_episode(self, store, events) -> None:
        store.state_for("scripted").set_to_passing()
        make_executor(store, ScriptedChecker(outcomes=[False])).handle()

        record = store.get("scripted")
        assert record.status == Status.FAILING
        assert len(record.failed_at) == 1
        assert events[-1].kind == EventKind.FAILED

    def test_failure_once_retries_are_used_up(self, store) -> None:
        checker = ScriptedChecker(outcomes=[False], retry_policy=retrying(2))

        assert make_executor(store, checker).passes()  # retry 1
        assert make_executor(store, checker).passes()  # retry 2
        executor = make_executor(store, checker)
        assert executor.fails()

        record = store.get("scripted")
        assert record.status == Status.FAILING
        assert len(record.retried_at) == 2
        assert len(record.failed_at) == 1


# ── Synchronous retry ────────────────────────────────────────────────────────


class TestSynchronousRetry:
    def test_first_failure_starts_retry_window(self, store, events) -> None:
        executor = make_executor(store, ScriptedChecker(outcomes=[False], retry_policy=retrying(3)))

        assert executor.passes() is True
        assert executor.failure is None

        record = store.get("scripted")
        assert record.status == Status.PASSING
        assert len(record.retried_at) == 1
        assert record.failed_at == []
        assert events == []

    def test_retry_while_passing_adds_one_timestamp(self, store) -> None:
        store.state_for("scripted").set_to_passing()
        make_executor(store, ScriptedChecker(outcomes=[False], retry_policy=retrying(3))).handle()

        assert len(store.get("scripted").retried_at) == 1

    def test_success_after_retry_resets(self, store) -> None:
        policy = retrying(3)
        make_executor(store, ScriptedChecker(outcomes=[False], retry_policy=policy)).handle()
        make_executor(store, ScriptedChecker(outcomes=[True], retry_policy=policy)).handle()

        record = store.get("scripted")
        assert record.status == Status.PASSING
        assert record.retried_at == []

    def test_retry_window_expiry_allows_new_retries(self, store, clock) -> None:
        checker = ScriptedChecker(outcomes=[False], retry_policy=retrying(1, within=60))

        assert make_executor(store, checker).passes()
        clock.advance(seconds=61)
        assert make_executor(store, checker).passes()
        assert len(store.get("scripted").retried_at) == 2


# ── Deferred retry ───────────────────────────────────────────────────────────


class TestDeferredRetry:
    def test_dispatches_job_without_waiting(self, monitor, store, queue) -> None:
        checker = DeferredRetryChecker(outcomes=[False, True], retry_policy=retrying(1))
        monitor.registry.register(checker)

        executor = monitor.executor("deferred")
        assert executor.passes() is True

        assert len(queue.submitted) == 1
        job = queue.submitted[0]
        assert job.job_type == RETRY_CHECKER
        assert job.checker_id == "deferred"
        assert checker.received_jobs == [job]

        queue.drain()
        assert checker.runs == 2
        assert store.get("deferred").status == Status.PASSING

    def test_retry_timestamp_recorded_before_checker_runs(self, monitor, store, queue) -> None:
        seen_retries = []

        class Observing(DeferredRetryChecker):
            def run(self) -> None:
                record = store.get(self.checker_id)
                seen_retries.append(len(record.retried_at) if record else None)
                super().run()

        checker = Observing(outcomes=[False], retry_policy=retrying(1))
        monitor.registry.register(checker)

        monitor.run_checker("deferred")
        queue.drain()

        # First run has no record; the retried run already sees its own timestamp
        assert seen_retries == [None, 1]
        record = store.get("deferred")
        assert record.status == Status.FAILING
        assert len(record.retried_at) == 1
        assert len(record.failed_at) == 1

    def test_retries_chain_until_allowance_is_used(self, monitor, store, queue) -> None:
        checker = DeferredRetryChecker(outcomes=[False], retry_policy=retrying(3))
        monitor.registry.register(checker)

        monitor.run_checker("deferred")
        queue.drain()

        assert checker.runs == 4
        assert len(queue.submitted) == 3
        record = store.get("deferred")
        assert record.status == Status.FAILING
        assert len(record.retried_at) == 3

    def test_first_failure_initializes_state_before_dispatch(self, store, queue) -> None:
        checker = DeferredRetryChecker(outcomes=[False], retry_policy=retrying(1))
        jobs = _NoopJobs()
        executor = make_executor(store, checker, queue=_CapturingQueue(), jobs=jobs)

        assert executor.passes()
        record = store.get("deferred")
        assert record.status == Status.PASSING
        assert record.retried_at == []  # recorded by the hook, not synchronously

    def test_hook_ignores_other_checkers_and_job_types(self, store) -> None:
        checker = DeferredRetryChecker(outcomes=[False], retry_policy=retrying(1))
        capture = _CapturingQueue()
        make_executor(store, checker, queue=capture, jobs=_NoopJobs()).handle()

        job, before = capture.calls[0]
        before(RetryCheckerJob(RETRY_CHECKER, "someone-else"))
        before(RetryCheckerJob("other-job", "deferred"))
        assert store.get("deferred").retried_at == []

        before(job)
        assert len(store.get("deferred").retried_at) == 1

    def test_job_requested_without_queue_raises(self, store) -> None:
        checker = DeferredRetryChecker(outcomes=[False], retry_policy=retrying(1))
        with pytest.raises(RuntimeError, match="no retry queue"):
            make_executor(store, checker).handle()


class _CapturingQueue:
    def __init__(self) -> None:
        self.calls = []

    def submit(self, job, before=None) -> None:
        self.calls.append((job, before))


class _NoopJobs:
    def make(self, job_type: str, checker_id: str) -> RetryCheckerJob:
        return RetryCheckerJob(job_type, checker_id)


# ── Contract ─────────────────────────────────────────────────────────────────


class TestExecutorContract:
    def test_passes_is_memoized(self, store) -> None:
        checker = ScriptedChecker(outcomes=[True])
        executor = make_executor(store, checker)

        assert executor.passes()
        assert executor.passes()
        assert executor.fails() is False
        assert checker.runs == 1

    def test_unexpected_exception_propagates(self, store, events) -> None:
        checker = ScriptedChecker(outcomes=[ValueError("bug in checker")], retry_policy=retrying(3))

        with pytest.raises(ValueError, match="bug in checker"):
            make_executor(store, checker).passes()
        assert store.get("scripted") is None
        assert events == []

    def test_make_uses_monitor(self, monitor) -> None:
        monitor.registry.register(ScriptedChecker("made", outcomes=[True]))
        executor = Executor.make("made", monitor)
        assert executor.checker.checker_id == "made"
        assert executor.passes()

    def test_handle_again_clears_previous_failure(self, store) -> None:
        executor = make_executor(store, ScriptedChecker(outcomes=[False, True]))

        executor.handle()
        assert executor.fails()
        assert executor.failure is not None

        executor.handle()
        assert executor.failure is None
        assert executor.passes()
