"""Unit tests for the operation registry."""

import pytest

from imaging_service.core.exceptions import ConfigurationError, ParameterValidationError
from imaging_service.core.params import DimensionParams, NoParams
from imaging_service.core.registry import OperationRegistry, default_registry
from imaging_service.core import transforms
from imaging_service.testing.fakes import create_test_pil_image

BUILT_IN_OPERATIONS = [
    "adjustBrightness",
    "adjustContrast",
    "autorotate",
    "blur",
    "convert",
    "crop",
    "enlarge",
    "extract",
    "flip",
    "flop",
    "grayscale",
    "resize",
    "rotate",
    "sharpen",
    "smartCrop",
    "thumbnail",
    "watermark",
    "watermarkImage",
    "zoom",
]


class TestDefaultRegistry:
    """Tests for the built-in operation set."""

    def test_all_operations_registered(self):
        registry = default_registry()
        assert registry.names() == sorted(BUILT_IN_OPERATIONS)
        assert len(registry) == len(BUILT_IN_OPERATIONS)

    def test_names_are_case_sensitive(self):
        registry = default_registry()
        assert "resize" in registry
        assert "Resize" not in registry
        assert registry.lookup("RESIZE") is None

    def test_unknown_operation(self):
        assert default_registry().lookup("sepia") is None

    def test_handler_parses_and_applies(self):
        handler = default_registry().lookup("resize")
        params = handler.parse({"width": 20, "height": 10})
        result = handler.apply(create_test_pil_image(50, 50), params)
        assert result.size == (20, 10)

    def test_handler_parse_failure(self):
        handler = default_registry().lookup("resize")
        with pytest.raises(ParameterValidationError):
            handler.parse({"width": -50, "height": 50})

    def test_registries_are_independent(self):
        first = default_registry()
        second = OperationRegistry()
        second.register("flip", NoParams, transforms.flip)
        assert len(second) == 1
        assert len(first) == len(BUILT_IN_OPERATIONS)


def test_duplicate_registration_rejected():
    registry = OperationRegistry()
    registry.register("resize", DimensionParams, transforms.resize)
    with pytest.raises(ConfigurationError):
        registry.register("resize", DimensionParams, transforms.resize)
