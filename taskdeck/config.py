"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Remote job server
    api_base_url: str = "http://localhost:8000"
    request_timeout_seconds: float = 30.0

    # Polling cadence (milliseconds)
    default_poll_interval_ms: int = 2000
    report_poll_interval_ms: int = 2000
    query_poll_interval_ms: int = 5000
    bundle_poll_interval_ms: int = 2000

    # Bounded polling (60 x 5s = 5 min for queries, 300 x 2s = 10 min for bundles)
    query_max_attempts: int = 60
    bundle_max_attempts: int = 300

    # Bundle reconciliation
    unmatched_warn_after_polls: int = 5

    # Service
    log_level: str = "INFO"
    api_port: int = 8010

    model_config = {
        "env_prefix": "TASKDECK_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


settings = Settings()
