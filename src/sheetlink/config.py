"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with SHEETLINK_ prefix.
No config files, 12-factor style.

Learn: Settings is a plain class here, not a module singleton. create_app()
builds one (or takes one from a test) and everything downstream receives
it explicitly.
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via SHEETLINK_* env vars."""

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # console | json

    # Smartsheet webhooks (shared secret configured out-of-band)
    webhook_secret: str = ""

    # Sheet cache
    cache_ttl_seconds: float = 300.0  # 0 disables TTL expiry

    # Broadcasting
    broadcast_send_timeout: float = 5.0  # a send slower than this disconnects the client
    broadcast_outbox_size: int = 256  # messages queued per connection before it is dropped

    # Job queue
    max_concurrent_jobs: int = 4
    job_retention_days: float = 7.0
    cleanup_interval_seconds: float = 24 * 60 * 60
    database_url: str = ""  # empty → in-memory job table

    # Smartsheet REST API
    smartsheet_access_token: str = ""
    smartsheet_api_url: str = "https://api.smartsheet.com/2.0"

    # Chat completions (OpenAI or Azure OpenAI)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    azure_openai_deployment: str = ""
    azure_openai_api_version: str = "2024-06-01"
    openai_model: str = "gpt-4o"

    model_config = {"env_prefix": "SHEETLINK_"}

    @model_validator(mode="after")
    def validate_production_settings(self):
        """Webhooks must be verifiable outside development."""
        if self.environment != "development" and not self.webhook_secret:
            raise ValueError(
                "SHEETLINK_WEBHOOK_SECRET must be set in non-development "
                "environments. Use the shared secret registered with the "
                "Smartsheet webhook."
            )
        return self
