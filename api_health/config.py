from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Checker definitions + persisted state
    checkers_path: str = "checkers.yaml"
    state_db_path: str = "data/api_health.db"

    # Retry defaults (each checker in checkers.yaml may override these)
    allowed_retries: int = 0  # 0 = first failure is terminal
    retry_within_seconds: int = 0  # 0 = count every retry of the episode
    retry_job: str = ""  # "" = synchronous retry accounting, e.g. "retry-checker"
    retry_delay_seconds: float = 0.0

    # Worker pool for deferred retry jobs
    retry_workers: int = 4

    # Scheduler
    default_interval_seconds: int = 60

    # Re-send "still failing" notifications every N minutes (0 = never)
    resend_failed_notifications_every_minutes: int = 60

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"

    # Notifications (optional — Slack / Telegram)
    slack_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""


settings = Settings()
