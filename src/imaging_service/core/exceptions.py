"""Custom exceptions for the imaging service."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Broad classification used to pick an HTTP status and log level."""

    VALIDATION = "validation"
    RUNTIME = "runtime"
    INTERNAL = "internal"


class ImagingServiceError(Exception):
    """Base exception for all imaging service errors."""

    category: ErrorCategory = ErrorCategory.INTERNAL
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Render the error as the JSON body returned to clients."""
        return {
            "error": self.message,
            "code": self.code,
            "status": "error",
            "category": self.category.value,
        }


class ConfigurationError(ImagingServiceError):
    """Error raised for invalid configuration options."""

    code = "CONFIGURATION_ERROR"


class CacheError(ImagingServiceError):
    """Error raised when the result cache store fails."""

    code = "CACHE_ERROR"


class PipelineSpecError(ImagingServiceError):
    """Error raised when the operations document is malformed."""

    category = ErrorCategory.VALIDATION
    status_code = 400
    code = "INVALID_PIPELINE"


class OperationError(ImagingServiceError):
    """Failure of a single pipeline step."""

    category = ErrorCategory.RUNTIME
    status_code = 400
    code = "OPERATION_FAILED"

    def __init__(
        self,
        operation: str,
        reason: str,
        field: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> None:
        self.operation = operation
        self.reason = reason
        self.field = field
        self.step_index = step_index
        super().__init__(self._format())

    def _format(self) -> str:
        location = f"{self.operation}.{self.field}" if self.field else self.operation
        return f"{location}: {self.reason}"

    def at_step(self, step_index: int) -> "OperationError":
        """Attach the pipeline position of the failing step."""
        self.step_index = step_index
        return self

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["operation"] = self.operation
        if self.field:
            body["field"] = self.field
        if self.step_index is not None:
            body["step"] = self.step_index
        return body


class UnsupportedOperationError(OperationError):
    """The requested operation name is not registered."""

    category = ErrorCategory.VALIDATION
    code = "UNSUPPORTED_OPERATION"

    def __init__(self, operation: str, step_index: Optional[int] = None) -> None:
        super().__init__(
            operation,
            f"unsupported operation '{operation}'",
            field="operation",
            step_index=step_index,
        )

    def _format(self) -> str:
        return self.reason


class ParameterValidationError(OperationError):
    """The parameters of a step did not satisfy the operation schema."""

    category = ErrorCategory.VALIDATION
    code = "INVALID_PARAMETERS"


class TransformError(OperationError):
    """The pixel transform itself failed on valid parameters."""

    category = ErrorCategory.RUNTIME
    code = "TRANSFORM_FAILED"


class PipelineAbortedError(ImagingServiceError):
    """A non-ignorable step failed and the pipeline was stopped."""

    def __init__(self, step_index: int, operation: str, cause: OperationError) -> None:
        self.step_index = step_index
        self.operation = operation
        self.cause = cause
        self.category = cause.category
        self.status_code = cause.status_code
        self.code = cause.code
        super().__init__(f"Pipeline aborted at step {step_index}: {cause}")

    def to_dict(self) -> dict:
        body = self.cause.to_dict()
        body["error"] = self.message
        body["step"] = self.step_index
        return body


class PipelineTimeoutError(ImagingServiceError):
    """The request deadline passed before the pipeline finished."""

    category = ErrorCategory.RUNTIME
    status_code = 408
    code = "TIMEOUT"


class ServiceOverloadedError(ImagingServiceError):
    """No pipeline slot became free within the admission timeout."""

    category = ErrorCategory.RUNTIME
    status_code = 503
    code = "SERVICE_OVERLOADED"


class ImageDecodeError(ImagingServiceError):
    """Input bytes could not be decoded as an image."""

    category = ErrorCategory.VALIDATION
    status_code = 400
    code = "INVALID_IMAGE"


class UnsupportedImageError(ImageDecodeError):
    """Input bytes are an image in a format the service cannot handle."""

    status_code = 415
    code = "UNSUPPORTED_IMAGE"


class FetchRejectReason(str, Enum):
    """Why the fetch guard refused a URL."""

    INVALID_URL = "invalid_url"
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    MISSING_HOST = "missing_host"
    RESOLUTION_FAILED = "resolution_failed"
    PRIVATE_ADDRESS = "private_address"


class FetchRejectedError(ImagingServiceError):
    """The fetch guard refused a URL before any connection was made."""

    category = ErrorCategory.VALIDATION
    status_code = 400
    code = "FETCH_REJECTED"

    def __init__(self, reason: FetchRejectReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = f"URL rejected ({reason.value})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["reason"] = self.reason.value
        return body


class FetchError(ImagingServiceError):
    """The remote image could not be retrieved."""

    category = ErrorCategory.RUNTIME
    status_code = 400
    code = "FETCH_FAILED"


class PayloadTooLargeError(ImagingServiceError):
    """An image body exceeded the configured size limit."""

    category = ErrorCategory.VALIDATION
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"
