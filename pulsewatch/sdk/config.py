"""Client SDK configuration."""

import re
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

Matcher = Union[str, re.Pattern]


class ConfigError(ValueError):
    """Raised when a client configuration is invalid."""


class ClientConfig(BaseModel):
    """
    Monitor configuration, validated once at construction.

    URL and error filters accept plain strings (substring match) or compiled
    regular expressions (``search`` match).
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid", frozen=True)

    dsn: str = Field(..., min_length=1)
    report_url: str = Field(..., min_length=1)

    sample_rate: float = Field(1.0, ge=0.0, le=1.0)
    error_sample_rate: float = Field(1.0, ge=0.0, le=1.0)
    performance_sample_rate: float = Field(1.0, ge=0.0, le=1.0)

    max_breadcrumbs: int = Field(20, ge=1)
    batch_size: int = Field(10, ge=1)
    report_interval: int = Field(5000, ge=100)  # ms

    ignore_urls: List[Matcher] = Field(default_factory=list)
    allow_urls: List[Matcher] = Field(default_factory=list)
    ignore_errors: List[Matcher] = Field(default_factory=list)
    before_send: Optional[Callable[[Dict[str, Any]], Any]] = None

    enable_error: bool = True
    enable_performance: bool = True
    enable_behavior: bool = True
    use_worker: bool = False

    offline_path: Optional[str] = None
    max_offline_items: int = Field(100, ge=1)
    request_timeout: float = Field(10.0, gt=0)  # seconds
    slow_request_threshold: int = Field(3000, ge=0)  # ms
    connectivity_probe_interval: float = Field(30.0, gt=0)  # seconds

    release: Optional[str] = None
    environment: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("report_url")
    @classmethod
    def check_report_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("report_url must be an http(s) URL")
        return v

    @field_validator("ignore_urls", "allow_urls", "ignore_errors")
    @classmethod
    def check_matchers(cls, v: List[Any]) -> List[Matcher]:
        for item in v:
            if not isinstance(item, (str, re.Pattern)):
                raise ValueError("filters must be strings or compiled patterns")
        return v

    @classmethod
    def create(cls, **options: Any) -> "ClientConfig":
        """
        Build a configuration from keyword options.

        Raises:
            ConfigError: If any option is invalid
        """
        try:
            return cls(**options)
        except ValidationError as e:
            raise ConfigError(str(e)) from e


def matches(value: Optional[str], patterns: List[Matcher]) -> bool:
    """Whether value matches any pattern (substring for str, search for regex)."""
    if not value:
        return False
    for pattern in patterns:
        if isinstance(pattern, str):
            if pattern in value:
                return True
        elif pattern.search(value):
            return True
    return False
