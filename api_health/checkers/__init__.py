"""Checkers — the checker contract, built-in probes, registry and executor."""

from .base import Checker, CheckerHasFailed, ReceivesRetryJob
from .executor import Executor
from .probes import DnsChecker, HttpGetRequestChecker, TcpChecker, TlsCertificateChecker
from .registry import CheckerDef, CheckerRegistry, RegistryError, UnknownCheckerError
