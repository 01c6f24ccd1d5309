"""Checker state — persisted pass/fail/retry history, one record per checker.

Records live in SQLite. Every mutation is a read-modify-write done under a
per-checker lock inside one transaction, so overlapping runs of the same
checker serialize and the last transition wins. Different checkers never
share a lock.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..checkers.base import CheckerHasFailed

logger = logging.getLogger(__name__)

DB_PATH = Path(__file__).parent.parent.parent / "data" / "api_health.db"


# ── Models ───────────────────────────────────────────────────────────────────


class Status(str, Enum):
    PASSING = "passing"
    FAILING = "failing"
    UNKNOWN = "unknown"  # no record yet


class EventKind(str, Enum):
    FAILED = "failed"
    STILL_FAILING = "still_failing"
    RECOVERED = "recovered"


@dataclass
class FailureInfo:
    """The failure that triggered (or last extended) a failing episode."""

    message: str
    cause: str = ""
    at: str = ""


@dataclass
class CheckerStateRecord:
    """Snapshot of one checker's stored state."""

    checker_id: str
    status: Status = Status.UNKNOWN
    last_failure: FailureInfo | None = None
    failed_at: list[str] = field(default_factory=list)
    retried_at: list[str] = field(default_factory=list)
    notified_at: list[str] = field(default_factory=list)
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> CheckerStateRecord:
        failure = None
        if row.get("failure_message") is not None:
            failure = FailureInfo(
                message=row["failure_message"],
                cause=row.get("failure_cause") or "",
                at=row.get("failure_at") or "",
            )
        return cls(
            checker_id=row["checker_id"],
            status=Status(row["status"]),
            last_failure=failure,
            failed_at=json.loads(row.get("failed_at") or "[]"),
            retried_at=json.loads(row.get("retried_at") or "[]"),
            notified_at=json.loads(row.get("notified_at") or "[]"),
            updated_at=row.get("updated_at") or "",
        )


@dataclass
class StateEvent:
    """Emitted after a transition has been committed."""

    kind: EventKind
    checker_id: str
    record: CheckerStateRecord
    failure: CheckerHasFailed | None = None


@dataclass
class RetryPolicy:
    """How many retries a failing checker gets before the failure is terminal.

    ``within_seconds`` limits the count to retries recorded inside that
    trailing window; ``None`` counts every retry of the current episode.
    """

    allowed_retries: int = 0
    within_seconds: int | None = None

    def allows(self, record: CheckerStateRecord | None, now: datetime) -> bool:
        if self.allowed_retries <= 0:
            return False
        if record is None:
            return True
        if record.status == Status.FAILING:
            return False

        retries = record.retried_at
        if self.within_seconds:
            cutoff = now - timedelta(seconds=self.within_seconds)
            retries = [ts for ts in retries if datetime.fromisoformat(ts) > cutoff]

        return len(retries) < self.allowed_retries


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── SQLite storage ───────────────────────────────────────────────────────────


class StateStore:
    """SQLite-backed storage for checker state records."""

    def __init__(
        self,
        db_path: Path | str | None = None,
        on_event: Callable[[StateEvent], Any] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db_path = Path(db_path or DB_PATH)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.on_event = on_event
        self.clock = clock
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self._db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS checker_states (
                    checker_id      TEXT PRIMARY KEY,
                    status          TEXT NOT NULL,
                    failure_message TEXT,
                    failure_cause   TEXT,
                    failure_at      TEXT,
                    failed_at       TEXT NOT NULL DEFAULT '[]',
                    retried_at      TEXT NOT NULL DEFAULT '[]',
                    notified_at     TEXT NOT NULL DEFAULT '[]',
                    updated_at      TEXT NOT NULL
                )
            """)

    def _lock_for(self, checker_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(checker_id, threading.Lock())

    # ── Queries ───────────────────────────────────────────────────────────

    def get(self, checker_id: str) -> CheckerStateRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM checker_states WHERE checker_id = ?", (checker_id,),
            ).fetchone()
        return CheckerStateRecord.from_row(dict(row)) if row else None

    def all(self) -> list[CheckerStateRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM checker_states ORDER BY checker_id",
            ).fetchall()
        return [CheckerStateRecord.from_row(dict(r)) for r in rows]

    def state_for(self, checker_id: str, policy: RetryPolicy | None = None) -> CheckerState:
        return CheckerState(self, checker_id, policy or RetryPolicy())

    def forget(self, checker_id: str) -> bool:
        """Delete a checker's record. Returns True if one existed."""
        with self._lock_for(checker_id), self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM checker_states WHERE checker_id = ?", (checker_id,),
            )
        return cursor.rowcount > 0

    # ── Mutations ─────────────────────────────────────────────────────────

    def mutate(
        self,
        checker_id: str,
        change: Callable[[CheckerStateRecord | None, str], CheckerStateRecord],
    ) -> tuple[CheckerStateRecord | None, CheckerStateRecord]:
        """Apply ``change(previous, now)`` atomically and persist the result.

        Returns ``(previous, current)``.
        """
        with self._lock_for(checker_id), self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM checker_states WHERE checker_id = ?", (checker_id,),
            ).fetchone()
            previous = CheckerStateRecord.from_row(dict(row)) if row else None

            now = self.clock().isoformat()
            current = change(previous, now)
            current.updated_at = now

            failure = current.last_failure
            conn.execute(
                "INSERT OR REPLACE INTO checker_states "
                "(checker_id, status, failure_message, failure_cause, failure_at, "
                "failed_at, retried_at, notified_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    checker_id, current.status.value,
                    failure.message if failure else None,
                    failure.cause if failure else None,
                    failure.at if failure else None,
                    json.dumps(current.failed_at),
                    json.dumps(current.retried_at),
                    json.dumps(current.notified_at),
                    current.updated_at,
                ),
            )
        return previous, current

    def emit(self, event: StateEvent) -> None:
        if not self.on_event:
            return
        try:
            self.on_event(event)
        except Exception:
            logger.exception("State event callback error (%s/%s)", event.checker_id, event.kind.value)

    def close(self) -> None:
        # Connections are per-operation; nothing is held open.
        with self._locks_guard:
            self._locks.clear()


# ── Per-checker view ─────────────────────────────────────────────────────────


class CheckerState:
    """State operations for a single checker identity."""

    def __init__(self, store: StateStore, checker_id: str, policy: RetryPolicy) -> None:
        self.store = store
        self.checker_id = checker_id
        self.policy = policy

    def record(self) -> CheckerStateRecord | None:
        return self.store.get(self.checker_id)

    def exists(self) -> bool:
        return self.record() is not None

    def is_failing(self) -> bool:
        record = self.record()
        return record is not None and record.status == Status.FAILING

    def is_passing(self) -> bool:
        record = self.record()
        return record is not None and record.status == Status.PASSING

    def retry_is_allowed(self) -> bool:
        return self.policy.allows(self.record(), self.store.clock())

    def set_to_passing(self) -> CheckerStateRecord:
        """Mark as passing and clear all failure and retry history."""
        previous, current = self.store.mutate(
            self.checker_id,
            lambda prev, now: CheckerStateRecord(self.checker_id, Status.PASSING),
        )
        if previous is not None and previous.status == Status.FAILING:
            logger.info("Checker %s recovered", self.checker_id)
            self.store.emit(StateEvent(EventKind.RECOVERED, self.checker_id, current))
        return current

    def set_to_failed(self, failure: CheckerHasFailed) -> CheckerStateRecord:
        """Start a failing episode with ``failure`` as its first timestamp."""

        def change(prev: CheckerStateRecord | None, now: str) -> CheckerStateRecord:
            return CheckerStateRecord(
                self.checker_id,
                Status.FAILING,
                last_failure=_failure_info(failure, now),
                failed_at=[now],
                retried_at=list(prev.retried_at) if prev else [],
            )

        _, current = self.store.mutate(self.checker_id, change)
        logger.warning("Checker %s failed: %s", self.checker_id, failure.message)
        self.store.emit(StateEvent(EventKind.FAILED, self.checker_id, current, failure))
        return current

    def add_failed_timestamp(self, failure: CheckerHasFailed) -> CheckerStateRecord:
        """Record another failure of an already failing checker."""

        def change(prev: CheckerStateRecord | None, now: str) -> CheckerStateRecord:
            record = prev or CheckerStateRecord(self.checker_id)
            record.status = Status.FAILING
            record.last_failure = _failure_info(failure, now)
            record.failed_at.append(now)
            return record

        _, current = self.store.mutate(self.checker_id, change)
        logger.info(
            "Checker %s still failing (%d failures): %s",
            self.checker_id, len(current.failed_at), failure.message,
        )
        self.store.emit(StateEvent(EventKind.STILL_FAILING, self.checker_id, current, failure))
        return current

    def add_retry_timestamp(self) -> CheckerStateRecord:
        def change(prev: CheckerStateRecord | None, now: str) -> CheckerStateRecord:
            record = prev or CheckerStateRecord(self.checker_id, Status.PASSING)
            record.retried_at.append(now)
            return record

        _, current = self.store.mutate(self.checker_id, change)
        logger.info(
            "Checker %s retry %d/%d",
            self.checker_id, len(current.retried_at), self.policy.allowed_retries,
        )
        return current

    def mark_notified(self) -> CheckerStateRecord:
        def change(prev: CheckerStateRecord | None, now: str) -> CheckerStateRecord:
            record = prev or CheckerStateRecord(self.checker_id)
            record.notified_at.append(now)
            return record

        _, current = self.store.mutate(self.checker_id, change)
        return current

    def should_resend_failed_notification(self, every_minutes: int) -> bool:
        """True when a failing checker hasn't been notified about for ``every_minutes``."""
        if every_minutes <= 0:
            return False
        record = self.record()
        if record is None or record.status != Status.FAILING:
            return False

        if record.notified_at:
            since = record.notified_at[-1]
        elif record.failed_at:
            since = record.failed_at[0]
        else:
            return True
        elapsed = self.store.clock() - datetime.fromisoformat(since)
        return elapsed >= timedelta(minutes=every_minutes)


def _failure_info(failure: CheckerHasFailed, now: str) -> FailureInfo:
    return FailureInfo(message=failure.message, cause=failure.cause_name, at=now)
