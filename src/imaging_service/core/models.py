"""Shared data models for the imaging service."""

import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_IMAGE_SIZE = 10 * 1024 * 1024
DEFAULT_USER_AGENT = "imaging-service/0.1.0"

_ENV_PREFIX = "IMAGING_"
_TRUE_VALUES = ("true", "1", "yes", "on")


class OperationSpec(BaseModel):
    """One step of a pipeline as submitted by a client."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    operation: str
    params: Dict[str, Any] = Field(default_factory=dict)
    ignore_failure: bool = Field(default=False, alias="ignoreFailure")

    @field_validator("params", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class StepOutcome(BaseModel):
    """What happened to a single step during execution."""

    index: int
    operation: str
    applied: bool = False
    ignored: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    duration: float = 0.0


class ServiceConfig(BaseModel):
    """Runtime configuration for the HTTP service and CLI."""

    model_config = ConfigDict(validate_assignment=True)

    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    concurrency: int = Field(default=4, ge=0)
    admission_timeout: Optional[float] = Field(default=None, gt=0)
    max_body_size: int = Field(default=MAX_IMAGE_SIZE, ge=1024)
    request_timeout: float = Field(default=30.0, gt=0)
    fetch_timeout: float = Field(default=30.0, gt=0)
    max_redirects: int = Field(default=5, ge=0)
    user_agent: str = DEFAULT_USER_AGENT
    cache_enabled: bool = True
    cache_max_entries: int = Field(default=100, ge=1)
    cache_s3_bucket: Optional[str] = None
    cache_s3_prefix: str = "imaging-cache/"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level '{value}'")
        return level

    @classmethod
    def from_env(cls, **overrides: Any) -> "ServiceConfig":
        """
        Build a configuration from IMAGING_* environment variables.

        Explicit keyword overrides win over the environment; values of None
        are ignored so CLI flags left unset fall through.

        Args:
            **overrides: Field values that take precedence

        Returns:
            Validated ServiceConfig
        """
        values: Dict[str, Any] = {}
        for name, field_info in cls.model_fields.items():
            raw = os.getenv(f"{_ENV_PREFIX}{name.upper()}")
            if raw is None or raw == "":
                continue
            if field_info.annotation is bool:
                values[name] = raw.lower() in _TRUE_VALUES
            else:
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class PipelineSummary(BaseModel):
    """Serializable summary of one pipeline run."""

    steps: List[StepOutcome] = Field(default_factory=list)
    output_format: str = ""
    width: int = 0
    height: int = 0
    cached: bool = False
    processing_time: float = 0.0
