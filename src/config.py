"""Configuration for twist-gcp-thread-bridge."""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./bridge.db"
    api_prefix: str = ""
    debug: bool = False

    # Public hostname, used to build the webhook URL handed out on configure
    server_name: str = "localhost"

    # Optional shared secret for GCP webhook channels (bearer or basic auth)
    webhook_secret: str = ""

    # Twist
    twist_api_url: str = "https://api.twist.com/api/v3"
    twist_api_token: str = ""
    twist_default_channel_id: str = ""
    http_timeout: float = 10.0
    rate_limit_burst: int = 10
    rate_limit_per_sec: int = 5

    # Delivery pipeline
    worker_pool_size: int = 4
    retry_max_attempts: int = 5
    retry_base_delay: float = 1.0
    retry_max_delay: float = 60.0
    retry_jitter: float = 1.0
    thread_create_attempts: int = 3

    # Dedup store and thread bindings
    dedup_retention_seconds: float = 24 * 60 * 60
    dedup_max_entries: int = 100_000
    binding_grace_seconds: float = 60 * 60

    model_config = {"env_prefix": "BRIDGE_"}

    @field_validator("api_prefix", mode="before")
    @classmethod
    def _strip_api_prefix(cls, value: object) -> object:
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    @field_validator("worker_pool_size", "retry_max_attempts", "thread_create_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


settings = Settings()
