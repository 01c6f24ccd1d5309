"""Deferred retry jobs and the queue that runs them."""

from .queue import RetryQueue
from .retry import RETRY_CHECKER, JobRegistry, RetryCheckerJob, UnknownJobTypeError
