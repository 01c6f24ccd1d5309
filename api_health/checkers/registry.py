"""Checker registry — loads checkers.yaml and builds Checker instances.

Single source of truth for which checkers exist, how often they run and
which retry policy they get. Checkers written in code can be registered
alongside the YAML definitions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ..config import Settings, settings
from ..storage.state import RetryPolicy
from .base import Checker
from .probes import CHECKER_TYPES

logger = logging.getLogger(__name__)


class RegistryError(ValueError):
    """A checker definition can't be turned into a checker."""


class UnknownCheckerError(KeyError):
    """No checker is registered under that identity."""


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass
class CheckerDef:
    """Definition of a single checker from checkers.yaml."""

    id: str
    type: str  # http | tls | dns | tcp
    url: str = ""
    hostname: str = ""
    method: str = "GET"
    expected_status: int = 200
    port: int = 443
    timeout_ms: int = 10_000
    interval_seconds: int | None = None
    warn_days_before: int = 14  # for TLS checks

    # Retry overrides; None falls back to Settings
    allowed_retries: int | None = None
    retry_within_seconds: int | None = None
    retry_job: str | None = None
    retry_delay_seconds: float | None = None


# ── Registry ─────────────────────────────────────────────────────────────────


class CheckerRegistry:
    """Loads and caches checker definitions."""

    def __init__(self, path: Path | str | None = None, config: Settings | None = None) -> None:
        self._config = config or settings
        self._path = Path(path or self._config.checkers_path)
        self._defs: list[CheckerDef] = []
        self._custom: dict[str, tuple[Checker, int | None]] = {}
        self._loaded = False

    def load(self, force: bool = False) -> list[CheckerDef]:
        """Parse checkers.yaml and return the CheckerDef list."""
        if self._loaded and not force:
            return self._defs

        self._defs = []
        if not self._path.exists():
            logger.warning("Checkers file not found: %s", self._path)
            self._loaded = True
            return self._defs

        try:
            raw = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            logger.error("Failed to parse %s: %s", self._path, e)
            self._loaded = True
            return self._defs

        seen: set[str] = set()
        for entry in raw.get("checkers", []) or []:
            try:
                check_def = _parse_checker(entry)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed checker entry: %s", e)
                continue
            if check_def.id in seen:
                logger.warning("Skipping duplicate checker id: %s", check_def.id)
                continue
            seen.add(check_def.id)
            self._defs.append(check_def)

        self._loaded = True
        logger.info("Loaded %d checkers from %s", len(self._defs), self._path)
        return self._defs

    def reload(self) -> list[CheckerDef]:
        """Force reload from disk."""
        return self.load(force=True)

    @property
    def definitions(self) -> list[CheckerDef]:
        return self.load()

    def register(self, checker: Checker, interval_seconds: int | None = None) -> None:
        """Add a checker built in code. Overrides a YAML definition with the same id."""
        self._custom[checker.checker_id] = (checker, interval_seconds)

    def get(self, checker_id: str) -> CheckerDef | None:
        return next((d for d in self.definitions if d.id == checker_id), None)

    def ids(self) -> list[str]:
        ids = [d.id for d in self.definitions if d.id not in self._custom]
        return ids + list(self._custom)

    def __contains__(self, checker_id: object) -> bool:
        return checker_id in self._custom or any(d.id == checker_id for d in self.definitions)

    def interval_for(self, checker_id: str) -> int:
        if checker_id in self._custom:
            interval = self._custom[checker_id][1]
        else:
            check_def = self.get(checker_id)
            if check_def is None:
                raise UnknownCheckerError(checker_id)
            interval = check_def.interval_seconds
        return interval or self._config.default_interval_seconds

    def build(self, checker_id: str) -> Checker:
        """Return the checker registered under ``checker_id``."""
        if checker_id in self._custom:
            return self._custom[checker_id][0]

        check_def = self.get(checker_id)
        if check_def is None:
            raise UnknownCheckerError(checker_id)

        checker_cls = CHECKER_TYPES.get(check_def.type)
        if checker_cls is None:
            raise RegistryError(f"Unknown checker type for {check_def.id}: {check_def.type}")

        kwargs: dict[str, Any] = {
            "timeout_ms": check_def.timeout_ms,
            "retry_policy": self.retry_policy_for(check_def),
            "retry_job_type": _pick(check_def.retry_job, self._config.retry_job) or None,
            "retry_delay_seconds": _pick(check_def.retry_delay_seconds, self._config.retry_delay_seconds),
        }
        if check_def.type == "http":
            if not check_def.url:
                raise RegistryError(f"Checker {check_def.id} needs a url")
            kwargs.update(url=check_def.url, method=check_def.method, expected_status=check_def.expected_status)
        else:
            if not check_def.hostname:
                raise RegistryError(f"Checker {check_def.id} needs a hostname")
            kwargs["hostname"] = check_def.hostname
            if check_def.type in ("tls", "tcp"):
                kwargs["port"] = check_def.port
            if check_def.type == "tls":
                kwargs["warn_days_before"] = check_def.warn_days_before

        return checker_cls(check_def.id, **kwargs)

    def retry_policy_for(self, check_def: CheckerDef) -> RetryPolicy:
        within = _pick(check_def.retry_within_seconds, self._config.retry_within_seconds)
        return RetryPolicy(
            allowed_retries=_pick(check_def.allowed_retries, self._config.allowed_retries),
            within_seconds=within or None,
        )

    def to_dict(self) -> list[dict[str, Any]]:
        """Serialize all checkers for the API."""
        out = []
        for checker_id in self.ids():
            check_def = self.get(checker_id) if checker_id not in self._custom else None
            out.append({
                "id": checker_id,
                "type": check_def.type if check_def else "custom",
                "target": (check_def.url or check_def.hostname) if check_def else "",
                "interval_seconds": self.interval_for(checker_id),
            })
        return out


# ── Parsers ──────────────────────────────────────────────────────────────────


def _pick(value: Any, default: Any) -> Any:
    return default if value is None else value


def _parse_checker(raw: dict[str, Any]) -> CheckerDef:
    checker_id = str(raw["id"]).strip()
    if not checker_id:
        raise ValueError("Checker 'id' is required")

    def _opt(key: str, cast: type) -> Any:
        value = raw.get(key)
        return None if value is None else cast(value)

    return CheckerDef(
        id=checker_id,
        type=raw.get("type", "http"),
        url=raw.get("url", ""),
        hostname=raw.get("hostname", ""),
        method=raw.get("method", "GET"),
        expected_status=int(raw.get("expected_status", 200)),
        port=int(raw.get("port", 443)),
        timeout_ms=int(raw.get("timeout_ms", 10_000)),
        interval_seconds=_opt("interval_seconds", int),
        warn_days_before=int(raw.get("warn_days_before", 14)),
        allowed_retries=_opt("allowed_retries", int),
        retry_within_seconds=_opt("retry_within_seconds", int),
        retry_job=_opt("retry_job", str),
        retry_delay_seconds=_opt("retry_delay_seconds", float),
    )
