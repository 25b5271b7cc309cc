"""Result caches keyed by input fingerprint and pipeline."""

import hashlib
import threading
from collections import OrderedDict
from typing import Optional

from botocore.exceptions import ClientError

from .error_handling import retry_cache_operation, with_error_handling
from .logging_config import get_logger
from .protocols import CachedResult, ResultCache, S3ClientProtocol

logger = get_logger("cache")

DEFAULT_MAX_ENTRIES = 100
MISSING_KEY_CODES = ("NoSuchKey", "404")


def cache_key(fingerprint: str, operation_name: str, operation_params: str) -> str:
    """Stable key combining the input hash with the operation and its params."""
    digest = hashlib.sha256()
    for part in (fingerprint, operation_name, operation_params):
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()


class InMemoryResultCache(ResultCache):
    """Bounded LRU cache held in process memory."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._entries: "OrderedDict[str, CachedResult]" = OrderedDict()
        self._lock = threading.Lock()

    def get(
        self, fingerprint: str, operation_name: str, operation_params: str
    ) -> Optional[CachedResult]:
        key = cache_key(fingerprint, operation_name, operation_params)
        with self._lock:
            result = self._entries.get(key)
            if result is not None:
                self._entries.move_to_end(key)
            return result

    def put(
        self,
        fingerprint: str,
        operation_name: str,
        operation_params: str,
        result: CachedResult,
    ) -> None:
        key = cache_key(fingerprint, operation_name, operation_params)
        with self._lock:
            self._entries[key] = result
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class S3ResultCache(ResultCache):
    """Cache storing encoded results as S3 objects under a prefix."""

    def __init__(self, s3_client: S3ClientProtocol, bucket: str, prefix: str = ""):
        self._s3_client = s3_client
        self._bucket = bucket
        self._prefix = prefix if not prefix or prefix.endswith("/") else prefix + "/"

    def _object_key(self, fingerprint: str, operation_name: str, operation_params: str) -> str:
        return f"{self._prefix}{cache_key(fingerprint, operation_name, operation_params)}"

    def get(
        self, fingerprint: str, operation_name: str, operation_params: str
    ) -> Optional[CachedResult]:
        key = self._object_key(fingerprint, operation_name, operation_params)
        return self._get_object(key)

    def put(
        self,
        fingerprint: str,
        operation_name: str,
        operation_params: str,
        result: CachedResult,
    ) -> None:
        key = self._object_key(fingerprint, operation_name, operation_params)
        self._put_object(key, result)
        logger.debug(f"Stored cached result s3://{self._bucket}/{key}")

    @retry_cache_operation()
    @with_error_handling
    def _get_object(self, key: str) -> Optional[CachedResult]:
        try:
            response = self._s3_client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in MISSING_KEY_CODES:
                return None
            raise
        # Reading the streamed body can fail after the request succeeded.
        return CachedResult(
            body=response["Body"].read(),
            media_type=response.get("ContentType", "application/octet-stream"),
        )

    @retry_cache_operation()
    @with_error_handling
    def _put_object(self, key: str, result: CachedResult) -> None:
        self._s3_client.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=result.body,
            ContentType=result.media_type,
        )

