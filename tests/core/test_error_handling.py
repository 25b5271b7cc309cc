# tests/core/test_error_handling.py

import pytest
from unittest import mock

import requests
from botocore.exceptions import ClientError, EndpointConnectionError
from PIL import Image, UnidentifiedImageError

from imaging_service.core.exceptions import (
    CacheError,
    FetchError,
    ImageDecodeError,
    TransformError,
    UnsupportedImageError,
)
from imaging_service.core.error_handling import (
    retry_cache_operation,
    translate_transform_errors,
    with_error_handling,
)


def _client_error(code):
    return ClientError(
        error_response={'Error': {'Code': code, 'Message': 'Details'}},
        operation_name='GetObject',
    )


def _cache_error(message, cause):
    error = CacheError(message)
    error.__cause__ = cause
    return error


@pytest.fixture
def mock_logger():
    """Mock the logger the decorators fetch with logging.getLogger."""
    with mock.patch('logging.getLogger') as mock_get_logger:
        mock_log_instance = mock.Mock()
        mock_get_logger.return_value = mock_log_instance
        yield mock_log_instance


# --- Tests for @with_error_handling decorator ---

def test_with_error_handling_logs_error(mock_logger):
    """Test that @with_error_handling logs unmapped errors with a traceback."""
    @with_error_handling
    def func_raising_error():
        raise ValueError("Original error")

    with pytest.raises(ValueError):
        func_raising_error()

    mock_logger.error.assert_called_once()
    args, kwargs = mock_logger.error.call_args
    assert "Original error" in args[0]
    assert kwargs.get('exc_info') is True


def test_with_error_handling_wraps_botocore_error(mock_logger):
    """Test @with_error_handling wrapping ClientError into CacheError."""
    @with_error_handling
    def func_raising_client_error():
        raise _client_error('AccessDenied')

    with pytest.raises(CacheError) as excinfo:
        func_raising_client_error()

    assert "Cache store operation failed" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, ClientError)


def test_with_error_handling_wraps_pil_error(mock_logger):
    """Test @with_error_handling wrapping UnidentifiedImageError."""
    @with_error_handling
    def func_raising_pil_error():
        raise UnidentifiedImageError("Cannot identify image file")

    with pytest.raises(UnsupportedImageError) as excinfo:
        func_raising_pil_error()

    assert "Failed to identify image" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, UnidentifiedImageError)


def test_with_error_handling_wraps_requests_error(mock_logger):
    """Test @with_error_handling wrapping requests failures into FetchError."""
    @with_error_handling
    def func_raising_connection_error():
        raise requests.ConnectionError("connection refused")

    with pytest.raises(FetchError) as excinfo:
        func_raising_connection_error()

    assert excinfo.value.status_code == 400
    assert "connection refused" in str(excinfo.value)


def test_with_error_handling_passes_service_errors(mock_logger):
    """Errors already in the hierarchy are neither wrapped nor logged."""
    @with_error_handling
    def func_raising_service_error():
        raise ImageDecodeError("bad bytes")

    with pytest.raises(ImageDecodeError):
        func_raising_service_error()

    mock_logger.error.assert_not_called()


# --- Tests for @retry_cache_operation decorator ---

def test_retry_cache_operation_success_on_first_attempt(mock_logger):
    """Test @retry_cache_operation succeeds immediately if no error."""
    @retry_cache_operation(max_attempts=3, initial_delay=0.01)
    def func_succeeds():
        return "success"

    assert func_succeeds() == "success"
    mock_logger.info.assert_not_called()
    mock_logger.error.assert_not_called()


@mock.patch('time.sleep', return_value=None)
def test_retry_cache_operation_retries_throttling(mock_time_sleep, mock_logger):
    """Test success after a retryable throttling failure."""
    mock_op = mock.Mock()
    mock_op.side_effect = [
        _cache_error("Failed due to throttling", _client_error('SlowDown')),
        "success",
    ]

    @retry_cache_operation(max_attempts=3, initial_delay=0.01)
    def func_with_retryable_error():
        return mock_op()

    assert func_with_retryable_error() == "success"
    assert mock_op.call_count == 2
    mock_time_sleep.assert_called_once_with(0.01)
    mock_logger.info.assert_called_once_with(
        "Cache operation 'func_with_retryable_error' failed. Attempt 1/3. "
        "Retrying in 0.01s. Error: Failed due to throttling"
    )


@mock.patch('time.sleep', return_value=None)
def test_retry_cache_operation_retries_connection_errors(mock_time_sleep, mock_logger):
    """Endpoint connection failures are retried with backoff."""
    cause = EndpointConnectionError(endpoint_url="https://s3.example.com")
    mock_op = mock.Mock(side_effect=[
        _cache_error("down", cause),
        _cache_error("down", cause),
        "success",
    ])

    @retry_cache_operation(max_attempts=3, initial_delay=0.5, backoff_factor=2)
    def func_flaky():
        return mock_op()

    assert func_flaky() == "success"
    assert [c.args[0] for c in mock_time_sleep.call_args_list] == [0.5, 1.0]


@mock.patch('time.sleep', return_value=None)
def test_retry_cache_operation_fails_after_max_attempts(mock_time_sleep, mock_logger):
    """Test @retry_cache_operation re-raises after max attempts."""
    mock_op = mock.Mock(side_effect=_cache_error("Persistent failure", _client_error('ServiceUnavailable')))

    @retry_cache_operation(max_attempts=3, initial_delay=0.01)
    def func_fails_persistently():
        return mock_op()

    with pytest.raises(CacheError):
        func_fails_persistently()

    assert mock_op.call_count == 3
    assert mock_time_sleep.call_count == 2
    mock_logger.error.assert_called_once_with(
        "Cache operation 'func_fails_persistently' failed after 3 attempts. Error: Persistent failure"
    )


@mock.patch('time.sleep', return_value=None)
def test_retry_cache_operation_non_retryable_code(mock_time_sleep, mock_logger):
    """Test that access errors are not retried."""
    mock_op = mock.Mock(side_effect=_cache_error("Access denied", _client_error('AccessDenied')))

    @retry_cache_operation(max_attempts=3, initial_delay=0.01)
    def func_denied():
        return mock_op()

    with pytest.raises(CacheError):
        func_denied()

    assert mock_op.call_count == 1
    mock_time_sleep.assert_not_called()


@mock.patch('time.sleep', return_value=None)
def test_retry_cache_operation_other_errors_not_retried(mock_time_sleep, mock_logger):
    """Test @retry_cache_operation does not retry non-cache errors."""
    mock_op = mock.Mock(side_effect=ValueError("Not a cache error"))

    @retry_cache_operation(max_attempts=3, initial_delay=0.01)
    def func_raises_other_error():
        return mock_op()

    with pytest.raises(ValueError):
        func_raises_other_error()

    assert mock_op.call_count == 1
    mock_time_sleep.assert_not_called()


# --- Tests for translate_transform_errors ---

@pytest.mark.parametrize(
    "error",
    [
        ValueError("empty region"),
        OSError("broken data stream"),
        Image.DecompressionBombError("too many pixels"),
    ],
)
def test_translate_transform_errors_maps_known_failures(error):
    """Pillow and numpy failures become TransformError for the operation."""
    with pytest.raises(TransformError) as excinfo:
        with translate_transform_errors("crop"):
            raise error

    assert excinfo.value.operation == "crop"
    assert excinfo.value.__cause__ is error


def test_translate_transform_errors_empty_message_uses_type():
    with pytest.raises(TransformError) as excinfo:
        with translate_transform_errors("blur"):
            raise ValueError()

    assert excinfo.value.reason == "ValueError"


def test_translate_transform_errors_leaves_other_errors():
    with pytest.raises(KeyError):
        with translate_transform_errors("blur"):
            raise KeyError("unexpected")
