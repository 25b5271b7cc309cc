"""Service layer: admission control and end-to-end pipeline processing."""

import json
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Union

from pydantic import ValidationError

from .exceptions import (
    CacheError,
    PayloadTooLargeError,
    PipelineSpecError,
    ServiceOverloadedError,
)
from .executor import PipelineExecutor
from .fetch_guard import RemoteImageFetcher
from .image_utils import decode_image, describe_image, encode_image, fingerprint
from .models import MAX_IMAGE_SIZE, OperationSpec, PipelineSummary
from .observability import LogContext, PipelineMetrics, StructuredLogger, timed_operation
from .output_format import ImageFormat, resolve_output_format, resolve_output_quality
from .protocols import CachedResult, LoggerProtocol, ResultCache

PIPELINE_CACHE_OPERATION = "pipeline"


def parse_pipeline(document: Union[str, bytes, List[Any]]) -> List[OperationSpec]:
    """
    Parse the operations document submitted by a client.

    Args:
        document: JSON text, or an already decoded list of step objects

    Returns:
        Steps in submission order

    Raises:
        PipelineSpecError: If the JSON is malformed, is not a list, or a step
            does not have the expected shape
    """
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise PipelineSpecError(f"Operations must be valid JSON: {exc}") from exc

    if not isinstance(document, list):
        raise PipelineSpecError("Operations must be a JSON array of steps")

    specs: List[OperationSpec] = []
    for index, item in enumerate(document):
        try:
            specs.append(OperationSpec.model_validate(item))
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(loc) for loc in err['loc']) or 'step'}: {err['msg']}"
                for err in exc.errors()
            )
            raise PipelineSpecError(f"Invalid step {index}: {details}") from exc
    return specs


def canonical_pipeline(specs: List[OperationSpec]) -> str:
    """Deterministic JSON form of a pipeline, used in cache keys."""
    return json.dumps(
        [spec.model_dump(by_alias=True) for spec in specs],
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


class AdmissionGate:
    """Caps the number of pipelines running at once.

    A limit of 0 or less disables the cap. With a timeout, callers that wait
    longer than it are turned away with ServiceOverloadedError.
    """

    def __init__(self, limit: int, timeout: Optional[float] = None):
        self.limit = limit
        self._timeout = timeout
        self._semaphore = threading.BoundedSemaphore(limit) if limit > 0 else None
        self._active = 0
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        with self._lock:
            return self._active

    @contextmanager
    def slot(self) -> Iterator[None]:
        """Hold one pipeline slot for the duration of the block."""
        if self._semaphore is not None:
            if not self._semaphore.acquire(timeout=self._timeout):
                raise ServiceOverloadedError(
                    f"All {self.limit} pipeline slots are busy, try again later"
                )
        with self._lock:
            self._active += 1
        try:
            yield
        finally:
            with self._lock:
                self._active -= 1
            if self._semaphore is not None:
                self._semaphore.release()


@dataclass
class PipelineOutput:
    """Encoded result of a pipeline run."""

    body: bytes
    media_type: str
    summary: PipelineSummary = field(default_factory=PipelineSummary)


class PipelineService:
    """Runs submitted pipelines from upload or URL to encoded bytes."""

    def __init__(
        self,
        executor: PipelineExecutor,
        fetcher: RemoteImageFetcher,
        gate: AdmissionGate,
        metrics: PipelineMetrics,
        cache: Optional[ResultCache] = None,
        logger: Optional[LoggerProtocol] = None,
        max_body_size: int = MAX_IMAGE_SIZE,
        request_timeout: Optional[float] = 30.0,
    ):
        self._executor = executor
        self._fetcher = fetcher
        self._gate = gate
        self._metrics = metrics
        self._cache = cache
        self._logger = logger or StructuredLogger("service")
        self._max_body_size = max_body_size
        self._request_timeout = request_timeout

    @property
    def metrics(self) -> PipelineMetrics:
        return self._metrics

    @property
    def gate(self) -> AdmissionGate:
        return self._gate

    def process_upload(
        self,
        image_bytes: bytes,
        specs: List[OperationSpec],
        context: Optional[LogContext] = None,
    ) -> PipelineOutput:
        """Run a pipeline on uploaded image bytes."""
        context = context or LogContext(component="pipeline_service")
        deadline = self._deadline()
        self._metrics.increment("requests_total")
        try:
            return self._process(image_bytes, specs, deadline, context)
        except Exception:
            self._metrics.increment("errors_total")
            raise

    def process_url(
        self,
        url: str,
        specs: List[OperationSpec],
        context: Optional[LogContext] = None,
    ) -> PipelineOutput:
        """Fetch an image through the guard and run a pipeline on it."""
        context = context or LogContext(component="pipeline_service")
        deadline = self._deadline()
        self._metrics.increment("requests_total")
        try:
            fetch = timed_operation(
                "fetch_image",
                logger=self._logger,
                metrics_collector=self._metrics.collector,
                context=context,
            )(self._fetcher.fetch)
            image_bytes = fetch(url)
            return self._process(image_bytes, specs, deadline, context)
        except Exception:
            self._metrics.increment("errors_total")
            raise

    def _deadline(self) -> Optional[float]:
        if self._request_timeout is None:
            return None
        return time.monotonic() + self._request_timeout

    def _process(
        self,
        image_bytes: bytes,
        specs: List[OperationSpec],
        deadline: Optional[float],
        context: LogContext,
    ) -> PipelineOutput:
        if len(image_bytes) > self._max_body_size:
            raise PayloadTooLargeError(
                f"Image is {len(image_bytes)} bytes, limit is {self._max_body_size}"
            )

        start_time = time.time()
        run_context = context.with_metadata(steps=len(specs))
        image_key = fingerprint(image_bytes)
        pipeline_key = canonical_pipeline(specs)

        cached = self._cache_get(image_key, pipeline_key, run_context)
        if cached is not None:
            fmt = ImageFormat.from_mime_type(cached.media_type)
            return PipelineOutput(
                body=cached.body,
                media_type=cached.media_type,
                summary=PipelineSummary(
                    output_format=fmt.extension if fmt else "",
                    cached=True,
                    processing_time=time.time() - start_time,
                ),
            )

        with self._gate.slot():
            image, original_format = decode_image(image_bytes)
            self._logger.debug("Decoded input image", run_context, **describe_image(image))
            result = self._executor.execute(image, specs, deadline=deadline, context=run_context)
            output_format = resolve_output_format(specs, original_format)
            body = encode_image(result.image, output_format, resolve_output_quality(specs))

        output = PipelineOutput(
            body=body,
            media_type=output_format.mime_type,
            summary=PipelineSummary(
                steps=result.steps,
                output_format=output_format.extension,
                width=result.image.width,
                height=result.image.height,
                processing_time=time.time() - start_time,
            ),
        )
        self._cache_put(image_key, pipeline_key, output, run_context)

        self._logger.info(
            "Pipeline completed",
            run_context,
            ignored=len(result.ignored),
            output=output_format.extension,
            processing_time_ms=output.summary.processing_time * 1000,
        )
        return output

    def _cache_get(
        self, image_key: str, pipeline_key: str, context: LogContext
    ) -> Optional[CachedResult]:
        if self._cache is None:
            return None
        try:
            cached = self._cache.get(image_key, PIPELINE_CACHE_OPERATION, pipeline_key)
        except CacheError as exc:
            self._logger.warning(f"Cache lookup failed, continuing without it: {exc}", context)
            return None
        self._metrics.increment("cache_hits" if cached is not None else "cache_misses")
        return cached

    def _cache_put(
        self, image_key: str, pipeline_key: str, output: PipelineOutput, context: LogContext
    ) -> None:
        if self._cache is None:
            return
        try:
            self._cache.put(
                image_key,
                PIPELINE_CACHE_OPERATION,
                pipeline_key,
                CachedResult(body=output.body, media_type=output.media_type),
            )
        except CacheError as exc:
            self._logger.warning(f"Cache store failed: {exc}", context)

