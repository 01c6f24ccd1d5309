"""api-health — periodic health checks with retry-aware failure tracking."""

__version__ = "0.1.0"
