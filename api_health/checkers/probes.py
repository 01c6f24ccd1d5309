"""Concrete checkers — HTTP(S), TLS cert expiry, DNS resolve, TCP connect.

Each probe raises ``CheckerHasFailed`` with the transport error as cause
when the dependency is unhealthy.
"""

from __future__ import annotations

import socket
import ssl
from datetime import datetime, timezone

import httpx

from ..jobs.retry import RetryCheckerJob
from ..storage.state import RetryPolicy
from .base import Checker, CheckerHasFailed, ReceivesRetryJob


class ProbeChecker(Checker, ReceivesRetryJob):
    """Shared retry wiring for the built-in probes."""

    def __init__(
        self,
        checker_id: str,
        timeout_ms: int = 10_000,
        retry_policy: RetryPolicy | None = None,
        retry_job_type: str | None = None,
        retry_delay_seconds: float = 0.0,
    ) -> None:
        super().__init__(checker_id, retry_policy, retry_job_type)
        self.timeout_ms = timeout_ms
        self.retry_delay_seconds = retry_delay_seconds

    def with_retry_job(self, job: RetryCheckerJob) -> None:
        job.delay_seconds = self.retry_delay_seconds


class HttpGetRequestChecker(ProbeChecker):
    """HTTP(S) request must answer with the expected status code."""

    def __init__(
        self,
        checker_id: str,
        url: str,
        method: str = "GET",
        expected_status: int = 200,
        **kwargs,
    ) -> None:
        super().__init__(checker_id, **kwargs)
        self.url = url
        self.method = method
        self.expected_status = expected_status

    def run(self) -> None:
        try:
            with httpx.Client(timeout=self.timeout_ms / 1000, follow_redirects=True, verify=True) as client:
                resp = client.request(self.method, self.url)
        except httpx.TimeoutException as e:
            raise CheckerHasFailed(f"{self.url}: timed out ({self.timeout_ms}ms)", e) from e
        except httpx.HTTPError as e:
            raise CheckerHasFailed(f"{self.url}: connection error: {e}", e) from e
        except httpx.InvalidURL as e:
            raise CheckerHasFailed(f"{self.url}: invalid url: {e}", e) from e

        if resp.status_code != self.expected_status:
            raise CheckerHasFailed(
                f"{self.url}: expected {self.expected_status}, got {resp.status_code}"
            )


class TlsCertificateChecker(ProbeChecker):
    """TLS certificate must be valid for at least ``warn_days_before`` days."""

    def __init__(
        self,
        checker_id: str,
        hostname: str,
        port: int = 443,
        warn_days_before: int = 14,
        **kwargs,
    ) -> None:
        super().__init__(checker_id, **kwargs)
        self.hostname = hostname
        self.port = port
        self.warn_days_before = warn_days_before

    def run(self) -> None:
        try:
            ctx = ssl.create_default_context()
            with socket.create_connection((self.hostname, self.port), timeout=self.timeout_ms / 1000) as sock:
                with ctx.wrap_socket(sock, server_hostname=self.hostname) as ssock:
                    cert = ssock.getpeercert()
        except (ssl.SSLError, OSError) as e:
            raise CheckerHasFailed(f"{self.hostname}: TLS error: {type(e).__name__}: {e}", e) from e

        if not cert:
            raise CheckerHasFailed(f"{self.hostname}: no certificate returned")

        not_after = cert.get("notAfter", "")
        expiry = datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
        days_left = (expiry - datetime.now(timezone.utc)).days

        if days_left < 0:
            raise CheckerHasFailed(f"{self.hostname}: certificate expired {-days_left} days ago")
        if days_left < self.warn_days_before:
            raise CheckerHasFailed(
                f"{self.hostname}: certificate expires in {days_left} days (warn < {self.warn_days_before})"
            )


class DnsChecker(ProbeChecker):
    """Hostname must resolve."""

    def __init__(self, checker_id: str, hostname: str, **kwargs) -> None:
        kwargs.setdefault("timeout_ms", 5_000)
        super().__init__(checker_id, **kwargs)
        self.hostname = hostname

    def run(self) -> None:
        try:
            socket.setdefaulttimeout(self.timeout_ms / 1000)
            addrs = socket.getaddrinfo(self.hostname, None)
        except OSError as e:
            raise CheckerHasFailed(f"{self.hostname}: DNS resolution failed: {e}", e) from e
        finally:
            socket.setdefaulttimeout(None)

        if not addrs:
            raise CheckerHasFailed(f"{self.hostname}: resolved to no addresses")


class TcpChecker(ProbeChecker):
    """TCP port must accept connections."""

    def __init__(self, checker_id: str, hostname: str, port: int = 443, **kwargs) -> None:
        kwargs.setdefault("timeout_ms", 5_000)
        super().__init__(checker_id, **kwargs)
        self.hostname = hostname
        self.port = port

    def run(self) -> None:
        try:
            sock = socket.create_connection((self.hostname, self.port), timeout=self.timeout_ms / 1000)
            sock.close()
        except OSError as e:
            raise CheckerHasFailed(
                f"{self.hostname}:{self.port}: TCP connect failed: {type(e).__name__}: {e}", e
            ) from e


CHECKER_TYPES: dict[str, type[ProbeChecker]] = {
    "http": HttpGetRequestChecker,
    "tls": TlsCertificateChecker,
    "dns": DnsChecker,
    "tcp": TcpChecker,
}
