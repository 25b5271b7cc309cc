"""Operation registry mapping wire names to schemas and transforms."""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from PIL import Image

from . import transforms
from .exceptions import ConfigurationError
from .params import (
    BlurParams,
    BrightnessParams,
    ContrastParams,
    ConvertParams,
    DimensionParams,
    NoParams,
    OperationParams,
    RectangleParams,
    RotateParams,
    WatermarkImageParams,
    WatermarkParams,
    ZoomParams,
    parse_params,
)

TransformFn = Callable[[Image.Image, Any], Image.Image]


@dataclass(frozen=True)
class OperationHandler:
    """A registered operation: its name, params schema and transform."""

    name: str
    schema: Type[OperationParams]
    transform: TransformFn

    def parse(self, params: Dict[str, Any]) -> OperationParams:
        """Validate raw params; raises ParameterValidationError."""
        return parse_params(self.name, self.schema, params)

    def apply(self, image: Image.Image, params: OperationParams) -> Image.Image:
        """Run the transform on already validated params."""
        return self.transform(image, params)


class OperationRegistry:
    """Lookup table of operation handlers keyed by case-sensitive name."""

    def __init__(self) -> None:
        self._handlers: Dict[str, OperationHandler] = {}

    def register(
        self,
        name: str,
        schema: Type[OperationParams],
        transform: TransformFn,
    ) -> OperationHandler:
        """
        Add an operation to the registry.

        Args:
            name: Wire name clients use in the "operation" field
            schema: Pydantic params schema
            transform: Function applying the operation

        Returns:
            The registered handler

        Raises:
            ConfigurationError: If the name is already registered
        """
        if name in self._handlers:
            raise ConfigurationError(f"Operation '{name}' is already registered")
        handler = OperationHandler(name=name, schema=schema, transform=transform)
        self._handlers[name] = handler
        return handler

    def lookup(self, name: str) -> Optional[OperationHandler]:
        return self._handlers.get(name)

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


def default_registry() -> OperationRegistry:
    """Registry holding every built-in operation."""
    registry = OperationRegistry()
    registry.register("resize", DimensionParams, transforms.resize)
    registry.register("crop", RectangleParams, transforms.crop)
    registry.register("extract", RectangleParams, transforms.extract)
    registry.register("smartCrop", DimensionParams, transforms.smart_crop)
    registry.register("thumbnail", DimensionParams, transforms.thumbnail)
    registry.register("enlarge", DimensionParams, transforms.enlarge)
    registry.register("zoom", ZoomParams, transforms.zoom)
    registry.register("rotate", RotateParams, transforms.rotate)
    registry.register("autorotate", NoParams, transforms.autorotate)
    registry.register("flip", NoParams, transforms.flip)
    registry.register("flop", NoParams, transforms.flop)
    registry.register("grayscale", NoParams, transforms.grayscale)
    registry.register("adjustBrightness", BrightnessParams, transforms.adjust_brightness)
    registry.register("adjustContrast", ContrastParams, transforms.adjust_contrast)
    registry.register("sharpen", NoParams, transforms.sharpen)
    registry.register("blur", BlurParams, transforms.blur)
    registry.register("convert", ConvertParams, transforms.convert)
    registry.register("watermark", WatermarkParams, transforms.watermark)
    registry.register("watermarkImage", WatermarkImageParams, transforms.watermark_image)
    return registry
