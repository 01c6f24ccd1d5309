"""Entry point for api-health."""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn
from rich.console import Console
from rich.table import Table

from .config import settings
from .monitor import Monitor
from .storage.state import Status

console = Console()


def _configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def run_checks(monitor: Monitor, checker_ids: list[str]) -> int:
    """Run checkers once, print a table, return the exit code."""
    table = Table(title="api-health")
    table.add_column("Checker", style="bold")
    table.add_column("Result")
    table.add_column("Detail", style="dim")

    failed = 0
    for checker_id in checker_ids:
        executor = monitor.run_checker(checker_id)
        if executor.passes():
            record = executor.state.record()
            retrying = record is not None and bool(record.retried_at)
            table.add_row(checker_id, "[yellow]retrying[/yellow]" if retrying else "[green]passes[/green]", "")
        else:
            failed += 1
            table.add_row(checker_id, "[red]fails[/red]", executor.failure.message if executor.failure else "")

    console.print(table)
    return 1 if failed else 0


def show_status(monitor: Monitor) -> int:
    table = Table(title="Stored checker state")
    table.add_column("Checker", style="bold")
    table.add_column("Status")
    table.add_column("Failures", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Last failure", style="dim")

    records = {r.checker_id: r for r in monitor.store.all()}
    for checker_id in monitor.registry.ids():
        record = records.get(checker_id)
        if record is None:
            table.add_row(checker_id, Status.UNKNOWN.value, "-", "-", "")
            continue
        color = "red" if record.status == Status.FAILING else "green"
        table.add_row(
            checker_id,
            f"[{color}]{record.status.value}[/{color}]",
            str(len(record.failed_at)),
            str(len(record.retried_at)),
            record.last_failure.message if record.last_failure else "",
        )

    console.print(table)
    return 0


def run_server() -> None:
    """Start the FastAPI server (runs the scheduler in-process)."""
    uvicorn.run(
        "api_health.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Health checks with retry-aware failure tracking")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("check", help="Run every checker once")
    run_parser = sub.add_parser("run-checker", help="Run a single checker once")
    run_parser.add_argument("checker_id", help="Checker id from checkers.yaml")
    sub.add_parser("status", help="Show stored checker state")
    sub.add_parser("serve", help="Start the API server + scheduler")

    args = parser.parse_args(argv)
    _configure_logging()

    if args.command == "serve":
        run_server()
        return
    if args.command not in ("check", "run-checker", "status"):
        parser.print_help()
        sys.exit(1)

    monitor = Monitor()
    try:
        if args.command == "check":
            code = run_checks(monitor, monitor.registry.ids())
        elif args.command == "run-checker":
            if args.checker_id not in monitor.registry:
                console.print(f"[red]Unknown checker:[/red] {args.checker_id}")
                code = 2
            else:
                code = run_checks(monitor, [args.checker_id])
        else:
            code = show_status(monitor)
    finally:
        # Let queued retry jobs finish before exiting.
        monitor.close(wait=True)

    sys.exit(code)


if __name__ == "__main__":
    main()
