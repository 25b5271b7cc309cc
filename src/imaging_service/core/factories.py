"""Factory classes for creating configured service instances."""

from typing import Any, Optional

import boto3

from .cache import InMemoryResultCache, S3ResultCache
from .executor import PipelineExecutor
from .fetch_guard import FetchGuard, RemoteImageFetcher, create_http_session
from .models import ServiceConfig
from .observability import LogLevel, PipelineMetrics, create_logger
from .protocols import (
    HostResolverProtocol,
    HttpSessionProtocol,
    LoggerProtocol,
    ResultCache,
    S3ClientProtocol,
)
from .registry import OperationRegistry, default_registry
from .services import AdmissionGate, PipelineService


class S3ClientFactory:
    """Factory for creating S3 client instances."""

    @staticmethod
    def create_s3_client(**kwargs: Any) -> S3ClientProtocol:
        """Create S3 client with optional configuration."""
        session = boto3.Session()
        return session.client("s3", **kwargs)  # type: ignore


class ResultCacheFactory:
    """Factory choosing the result cache backend from configuration."""

    @staticmethod
    def create_cache(
        config: ServiceConfig, s3_client: Optional[S3ClientProtocol] = None
    ) -> Optional[ResultCache]:
        """S3 cache when a bucket is configured, in-memory LRU otherwise."""
        if not config.cache_enabled:
            return None
        if config.cache_s3_bucket:
            return S3ResultCache(
                s3_client or S3ClientFactory.create_s3_client(),
                config.cache_s3_bucket,
                config.cache_s3_prefix,
            )
        return InMemoryResultCache(config.cache_max_entries)


class PipelineServiceFactory:
    """Factory for creating the complete pipeline service."""

    @staticmethod
    def create_service(
        config: Optional[ServiceConfig] = None,
        registry: Optional[OperationRegistry] = None,
        resolver: Optional[HostResolverProtocol] = None,
        http_session: Optional[HttpSessionProtocol] = None,
        s3_client: Optional[S3ClientProtocol] = None,
        cache: Optional[ResultCache] = None,
        logger: Optional[LoggerProtocol] = None,
        metrics: Optional[PipelineMetrics] = None,
    ) -> PipelineService:
        """Create a fully configured pipeline service.

        Every collaborator can be injected; anything left out is built from
        the configuration.
        """
        config = config or ServiceConfig()

        if logger is None:
            logger = create_logger("service", LogLevel(config.log_level))
        if metrics is None:
            metrics = PipelineMetrics()
        if cache is None:
            cache = ResultCacheFactory.create_cache(config, s3_client)

        executor = PipelineExecutor(registry or default_registry(), metrics, logger)
        fetcher = RemoteImageFetcher(
            guard=FetchGuard(resolver),
            session=http_session or create_http_session(),
            max_bytes=config.max_body_size,
            timeout=config.fetch_timeout,
            max_redirects=config.max_redirects,
            user_agent=config.user_agent,
        )
        gate = AdmissionGate(config.concurrency, config.admission_timeout)

        return PipelineService(
            executor=executor,
            fetcher=fetcher,
            gate=gate,
            metrics=metrics,
            cache=cache,
            logger=logger,
            max_body_size=config.max_body_size,
            request_timeout=config.request_timeout,
        )
