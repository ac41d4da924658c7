from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration. Every field can be overridden through an
    environment variable prefixed with ``SHARDSTREAM_`` or a ``.env`` file.
    """
    model_config = SettingsConfigDict(
        env_prefix="SHARDSTREAM_",
        env_file=".env",
        extra="ignore",
    )

    # Stream service
    AWS_REGION: str = Field(default="us-east-1")
    KINESIS_ENDPOINT_URL: Optional[str] = Field(default=None, description="Override for LocalStack")

    # Polling
    POLL_LIMIT: int = Field(default=1000, ge=1)
    POLL_MAX_PAGES: int = Field(default=5, ge=1)
    MAX_CONCURRENCY: int = Field(default=8, ge=1)
    MAX_DISCOVERY_PAGES: int = Field(default=100, ge=1)
    SEED_SHARD_ID: Optional[str] = Field(default="0")

    # Checkpoints
    CHECKPOINT_DIR: str = Field(default=".shardstream_checkpoints")
    VALKEY_HOST: str = Field(default="localhost")
    VALKEY_PORT: int = Field(default=6379)
    VALKEY_PASSWORD: Optional[str] = None

    # Observability
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text")
    OTEL_ENABLED: bool = Field(default=False)


settings = Settings()
