"""Tests for core data models."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from imaging_service.core.models import MAX_IMAGE_SIZE, OperationSpec, ServiceConfig


class TestOperationSpec:
    """Tests for OperationSpec."""

    def test_wire_shape(self):
        """The camelCase ignoreFailure key maps onto ignore_failure."""
        spec = OperationSpec.model_validate(
            {"operation": "blur", "params": {"sigma": 1.0}, "ignoreFailure": True}
        )
        assert spec.operation == "blur"
        assert spec.params == {"sigma": 1.0}
        assert spec.ignore_failure is True

    def test_defaults(self):
        """Params default to empty and failures are fatal by default."""
        spec = OperationSpec.model_validate({"operation": "grayscale"})
        assert spec.params == {}
        assert spec.ignore_failure is False

    def test_null_params_are_empty(self):
        """An explicit null params object is treated as empty."""
        spec = OperationSpec.model_validate({"operation": "flip", "params": None})
        assert spec.params == {}

    def test_unknown_keys_rejected(self):
        """Typos in step keys are not silently ignored."""
        with pytest.raises(ValidationError):
            OperationSpec.model_validate({"operation": "flip", "ignore": True})

    def test_operation_required(self):
        """A step without an operation name is invalid."""
        with pytest.raises(ValidationError):
            OperationSpec.model_validate({"params": {}})


class TestServiceConfig:
    """Tests for ServiceConfig."""

    def test_defaults(self):
        """Test ServiceConfig default values."""
        config = ServiceConfig()
        assert config.host == "127.0.0.1"
        assert config.port == 8080
        assert config.concurrency == 4
        assert config.max_body_size == MAX_IMAGE_SIZE
        assert config.request_timeout == 30.0
        assert config.cache_max_entries == 100
        assert config.cache_s3_bucket is None

    def test_max_body_size_floor(self):
        """Body limits below 1 KiB are rejected."""
        with pytest.raises(ValidationError):
            ServiceConfig(max_body_size=100)

    def test_log_level_normalised(self):
        """Log levels are upper-cased and checked."""
        assert ServiceConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            ServiceConfig(log_level="chatty")

    def test_from_env(self):
        """IMAGING_* variables populate the config."""
        env = {
            "IMAGING_PORT": "9090",
            "IMAGING_CONCURRENCY": "0",
            "IMAGING_CACHE_ENABLED": "false",
            "IMAGING_CACHE_S3_BUCKET": "results",
        }
        with patch.dict(os.environ, env):
            config = ServiceConfig.from_env()
        assert config.port == 9090
        assert config.concurrency == 0
        assert config.cache_enabled is False
        assert config.cache_s3_bucket == "results"

    def test_from_env_overrides_win(self):
        """Explicit overrides beat the environment; None values fall through."""
        with patch.dict(os.environ, {"IMAGING_PORT": "9090", "IMAGING_HOST": "0.0.0.0"}):
            config = ServiceConfig.from_env(port=7000, host=None)
        assert config.port == 7000
        assert config.host == "0.0.0.0"
