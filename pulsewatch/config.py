"""Configuration management using Pydantic Settings."""

from typing import Annotated, Any, List, Optional

import orjson
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode


def _split_list(v: Any) -> List[str]:
    """Accept a JSON array, a comma-separated string or a list."""
    if v is None or v == "":
        return []
    if isinstance(v, (list, tuple)):
        return [str(x).strip() for x in v if str(x).strip()]
    if isinstance(v, str):
        text = v.strip()
        if text.startswith("["):
            try:
                return [str(x).strip() for x in orjson.loads(text) if str(x).strip()]
            except orjson.JSONDecodeError:
                pass
        return [x.strip() for x in text.split(",") if x.strip()]
    return []


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "pulsewatch"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Security
    allowed_dsns: Annotated[List[str], NoDecode] = []  # Empty = accept any DSN
    allowed_cors_origins: Annotated[List[str], NoDecode] = []  # Empty = deny all in production
    max_request_size: int = 5 * 1024 * 1024  # 5MB default max request size

    # Storage
    storage_backend: str = "opensearch"  # "opensearch" or "memory"

    # OpenSearch
    opensearch_hosts: Annotated[List[str], NoDecode] = ["http://localhost:9200"]
    opensearch_username: Optional[str] = None
    opensearch_password: Optional[str] = None
    opensearch_index_prefix: str = "pulsewatch"
    opensearch_use_ssl: bool = False
    opensearch_verify_certs: bool = True
    opensearch_ca_certs: Optional[str] = None
    opensearch_upsert_retries: int = 5

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0

    # Processing
    use_celery: bool = False  # Dispatch alert notifications through Celery
    fingerprint_frames: int = 3
    retention_days: int = 90

    # Source maps
    sourcemap_max_size: int = 20 * 1024 * 1024
    sourcemap_cache_size: int = 64

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 1000  # Max requests per window
    rate_limit_window: int = 60  # Window in seconds

    # Alert notifications
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from: Optional[str] = None
    smtp_use_tls: bool = False
    smtp_timeout: float = 10.0
    alert_webhook_url: Optional[str] = None
    dashboard_url: str = "http://localhost:3000"

    @field_validator("allowed_dsns", "allowed_cors_origins", mode="before")
    @classmethod
    def parse_string_list(cls, v: Any) -> List[str]:
        """Parse list settings from JSON array or comma-separated string."""
        return _split_list(v)

    @field_validator("opensearch_hosts", mode="before")
    @classmethod
    def parse_opensearch_hosts(cls, v: Any) -> List[str]:
        """Parse opensearch_hosts from string or list."""
        return _split_list(v) or ["http://localhost:9200"]

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("opensearch", "memory"):
            raise ValueError("storage_backend must be 'opensearch' or 'memory'")
        return v

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from)

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"


# Global settings instance
settings = Settings()
