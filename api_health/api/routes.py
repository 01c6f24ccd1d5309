"""API routes for checker state.

Endpoints:
  GET    /api/checkers                 — all checkers with their stored state
  GET    /api/checkers/{id}            — one checker + state
  POST   /api/checkers/{id}/run        — run a checker now
  DELETE /api/checkers/{id}/state      — forget a checker's stored state
  GET    /api/health/summary           — passing / failing / unknown counts
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from ..storage.state import CheckerStateRecord, Status

logger = logging.getLogger(__name__)

router = APIRouter()


def _state_dict(record: CheckerStateRecord | None) -> dict[str, Any]:
    if record is None:
        return {"status": Status.UNKNOWN.value}
    return record.to_dict()


def _require_checker(request: Request, checker_id: str) -> None:
    if checker_id not in request.app.state.monitor.registry:
        raise HTTPException(status_code=404, detail=f"Checker not found: {checker_id}")


@router.get("/checkers")
def list_checkers(request: Request) -> dict[str, Any]:
    monitor = request.app.state.monitor
    records = {r.checker_id: r for r in monitor.store.all()}

    checkers = monitor.registry.to_dict()
    for c in checkers:
        c["state"] = _state_dict(records.get(c["id"]))
    return {"checkers": checkers}


@router.get("/checkers/{checker_id}")
def get_checker(checker_id: str, request: Request) -> dict[str, Any]:
    _require_checker(request, checker_id)
    monitor = request.app.state.monitor
    checker = next(c for c in monitor.registry.to_dict() if c["id"] == checker_id)
    checker["state"] = _state_dict(monitor.store.get(checker_id))
    return checker


@router.post("/checkers/{checker_id}/run")
async def run_checker(checker_id: str, request: Request) -> dict[str, Any]:
    """Run a checker immediately and return the outcome."""
    _require_checker(request, checker_id)
    scheduler = request.app.state.scheduler

    executor = await scheduler.run_now(checker_id)
    return {
        "checker_id": checker_id,
        "passes": executor.passes(),
        "failure": executor.failure.message if executor.failure else None,
        "state": _state_dict(executor.state.record()),
    }


@router.delete("/checkers/{checker_id}/state")
def forget_checker_state(checker_id: str, request: Request) -> dict[str, Any]:
    _require_checker(request, checker_id)
    removed = request.app.state.monitor.store.forget(checker_id)
    return {"checker_id": checker_id, "removed": removed}


@router.get("/health/summary")
def health_summary(request: Request) -> dict[str, Any]:
    """Overall status: failing if any checker is failing."""
    monitor = request.app.state.monitor
    records = {r.checker_id: r for r in monitor.store.all()}

    counts = {s.value: 0 for s in Status}
    failing = []
    for checker_id in monitor.registry.ids():
        record = records.get(checker_id)
        status = record.status if record else Status.UNKNOWN
        counts[status.value] += 1
        if status == Status.FAILING:
            failing.append(checker_id)

    if failing:
        overall = Status.FAILING.value
    elif counts[Status.PASSING.value]:
        overall = Status.PASSING.value
    else:
        overall = Status.UNKNOWN.value

    return {"status": overall, "counts": counts, "failing": failing}
