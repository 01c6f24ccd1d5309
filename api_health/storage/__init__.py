"""Checker state storage — SQLite records + retry policy."""

from .state import (
    CheckerState,
    CheckerStateRecord,
    EventKind,
    FailureInfo,
    RetryPolicy,
    StateEvent,
    StateStore,
    Status,
)
