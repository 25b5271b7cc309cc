# src/imaging_service/core/error_handling.py

import functools
import logging
import time
from contextlib import contextmanager
from typing import Iterator

import requests
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError
from PIL import Image, UnidentifiedImageError

from .exceptions import (
    CacheError,
    FetchError,
    ImagingServiceError,
    TransformError,
    UnsupportedImageError,
)

RETRYABLE_S3_ERROR_CODES = (
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "SlowDown",
    "RequestTimeout",
    "InternalError",
    "ServiceUnavailable",
)


def with_error_handling(func):
    """
    A decorator mapping third-party failures onto the service hierarchy.

    Errors already in the hierarchy pass through untouched. botocore errors
    become CacheError, Pillow identification errors become
    UnsupportedImageError and requests errors become FetchError. Anything
    else is logged and re-raised as is.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__ + '.' + func.__name__)
        try:
            return func(*args, **kwargs)
        except ImagingServiceError:
            raise
        except Exception as e:
            logger.error(f"Error in '{func.__name__}': {e}", exc_info=True)
            if isinstance(e, (ClientError, BotoCoreError)):
                raise CacheError(f"Cache store operation failed in {func.__name__}: {e}") from e
            if isinstance(e, UnidentifiedImageError):
                raise UnsupportedImageError(f"Failed to identify image in {func.__name__}: {e}") from e
            if isinstance(e, requests.RequestException):
                raise FetchError(f"Remote request failed in {func.__name__}: {e}") from e
            raise
    return wrapper


def _is_retryable(error: CacheError) -> bool:
    cause = error.__cause__
    if isinstance(cause, ClientError):
        return cause.response.get('Error', {}).get('Code') in RETRYABLE_S3_ERROR_CODES
    return isinstance(cause, EndpointConnectionError)


def retry_cache_operation(max_attempts=3, initial_delay=0.5, backoff_factor=2):
    """
    Decorator to retry cache store operations with exponential backoff.

    Only CacheError caused by throttling or connection failures is retried;
    other errors propagate on the first attempt.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__ + '.' + func.__name__)
            delay = initial_delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except CacheError as e:
                    if not _is_retryable(e):
                        logger.error(f"Cache operation '{func.__name__}' failed with non-retryable error: {e}")
                        raise
                    if attempt >= max_attempts:
                        logger.error(
                            f"Cache operation '{func.__name__}' failed after {max_attempts} attempts. Error: {e}"
                        )
                        raise
                    logger.info(
                        f"Cache operation '{func.__name__}' failed. Attempt {attempt}/{max_attempts}. "
                        f"Retrying in {delay:.2f}s. Error: {e}"
                    )
                    time.sleep(delay)
                    delay *= backoff_factor
        return wrapper
    return decorator


@contextmanager
def translate_transform_errors(operation: str) -> Iterator[None]:
    """
    Map Pillow and numpy failures raised by a transform to TransformError.

    Service errors and anything outside the known families propagate.
    """
    try:
        yield
    except ImagingServiceError:
        raise
    except (ValueError, OSError, Image.DecompressionBombError) as exc:
        raise TransformError(operation, str(exc) or exc.__class__.__name__) from exc
