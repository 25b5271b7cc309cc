"""Core utilities and shared components for the imaging service."""

from .logging_config import get_logger, setup_logger
from .exceptions import (
    ErrorCategory,
    ImagingServiceError,
    ConfigurationError,
    OperationError,
    ParameterValidationError,
    UnsupportedOperationError,
    TransformError,
    PipelineAbortedError,
    PipelineSpecError,
    FetchRejectedError,
    FetchRejectReason,
)
from .models import OperationSpec, ServiceConfig, StepOutcome
from .output_format import ImageFormat, resolve_output_format
from .registry import OperationRegistry, default_registry
from .executor import PipelineExecutor, PipelineResult
from .fetch_guard import FetchGuard, RemoteImageFetcher, is_safe_ip

__all__ = [
    "OperationSpec",
    "ServiceConfig",
    "StepOutcome",
    "ImageFormat",
    "resolve_output_format",
    "OperationRegistry",
    "default_registry",
    "PipelineExecutor",
    "PipelineResult",
    "FetchGuard",
    "RemoteImageFetcher",
    "is_safe_ip",
    "setup_logger",
    "get_logger",
    "ErrorCategory",
    "ImagingServiceError",
    "ConfigurationError",
    "OperationError",
    "ParameterValidationError",
    "UnsupportedOperationError",
    "TransformError",
    "PipelineAbortedError",
    "PipelineSpecError",
    "FetchRejectedError",
    "FetchRejectReason",
]
