"""Protocol definitions for dependency injection and testability."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Protocol


class S3ClientProtocol(Protocol):
    """Protocol for the S3 calls used by the result cache."""

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        """Get object from S3."""
        ...

    def put_object(
        self, Bucket: str, Key: str, Body: bytes, ContentType: str
    ) -> Dict[str, Any]:
        """Put object to S3."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log debug message."""
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log info message."""
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log warning message."""
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log error message."""
        ...


class HostResolverProtocol(Protocol):
    """Resolves a hostname to the IP address strings it points at."""

    def __call__(self, hostname: str, port: int) -> List[str]:
        ...


class HttpResponseProtocol(Protocol):
    """The subset of requests.Response the fetcher relies on."""

    status_code: int
    headers: Any

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        ...

    def close(self) -> None:
        ...


class HttpSessionProtocol(Protocol):
    """The subset of requests.Session the fetcher relies on."""

    def get(self, url: str, **kwargs: Any) -> HttpResponseProtocol:
        ...


@dataclass(frozen=True)
class CachedResult:
    """Encoded pipeline output stored in the result cache."""

    body: bytes
    media_type: str


class ResultCache(ABC):
    """Abstract store for finished pipeline results."""

    @abstractmethod
    def get(
        self, fingerprint: str, operation_name: str, operation_params: str
    ) -> Optional[CachedResult]:
        """Return a stored result or None."""
        ...

    @abstractmethod
    def put(
        self,
        fingerprint: str,
        operation_name: str,
        operation_params: str,
        result: CachedResult,
    ) -> None:
        """Store a result."""
        ...

