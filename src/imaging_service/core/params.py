"""Parameter schemas for every pipeline operation."""

import base64
import binascii
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ParameterValidationError
from .output_format import FORMAT_NAMES, ConvertShape

P = TypeVar("P", bound="OperationParams")


class OperationParams(BaseModel):
    """Base for all parameter schemas: unknown keys are errors."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class NoParams(OperationParams):
    """Schema for operations that take no parameters."""


class DimensionParams(OperationParams):
    """Target size for resize, enlarge, thumbnail and smartCrop."""

    width: int = Field(gt=0)
    height: int = Field(gt=0)


class RectangleParams(OperationParams):
    """Region for crop and extract; clamped to the image when applied."""

    x: int = Field(default=0, ge=0)
    y: int = Field(default=0, ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class RotateParams(OperationParams):
    degrees: float = Field(ge=0, lt=360)


class BlurParams(OperationParams):
    """Gaussian blur. minampl is accepted for compatibility and not used."""

    sigma: float = Field(gt=0)
    minampl: Optional[float] = Field(default=None, ge=0)


class ZoomParams(OperationParams):
    factor: float = Field(gt=0)


class BrightnessParams(OperationParams):
    value: int = Field(ge=-255, le=255)


class ContrastParams(OperationParams):
    value: float = Field(ge=-100, le=100)


class ConvertParams(OperationParams, ConvertShape):
    @field_validator("format")
    @classmethod
    def validate_format(cls, value: str) -> str:
        name = value.strip().lower()
        if name not in FORMAT_NAMES:
            supported = ", ".join(sorted(FORMAT_NAMES))
            raise ValueError(f"unsupported format '{value}', expected one of: {supported}")
        return name


class WatermarkPosition(str, Enum):
    """Anchor for watermark placement."""

    TOP_LEFT = "topLeft"
    TOP_RIGHT = "topRight"
    BOTTOM_LEFT = "bottomLeft"
    BOTTOM_RIGHT = "bottomRight"
    CENTER = "center"

    @classmethod
    def _missing_(cls, value: object) -> Optional["WatermarkPosition"]:
        # Accept PascalCase and snake_case spellings as well
        if isinstance(value, str):
            key = value.replace("_", "").lower()
            for member in cls:
                if member.value.lower() == key:
                    return member
        return None


class WatermarkParams(OperationParams):
    """Text watermark."""

    text: str = Field(min_length=1)
    opacity: float = Field(default=0.5, ge=0.0, le=1.0)
    position: WatermarkPosition = WatermarkPosition.BOTTOM_RIGHT
    font_size: int = Field(default=24, gt=0)
    color: List[int] = Field(default_factory=lambda: [255, 255, 255])
    x: Optional[int] = Field(default=None, ge=0)
    y: Optional[int] = Field(default=None, ge=0)

    @field_validator("text")
    @classmethod
    def validate_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("text must not be blank")
        return value

    @field_validator("color")
    @classmethod
    def validate_color(cls, value: List[int]) -> List[int]:
        if len(value) != 3 or any(c < 0 or c > 255 for c in value):
            raise ValueError("color must be three integers in 0..255")
        return value

    @model_validator(mode="after")
    def validate_origin(self) -> "WatermarkParams":
        if self.x == 0 and self.y == 0:
            raise ValueError("explicit x and y cannot both be 0")
        return self


class WatermarkImageParams(OperationParams):
    """Image overlay; without an image a translucent block is used."""

    opacity: float = Field(default=0.5, ge=0.0, le=1.0)
    position: WatermarkPosition = WatermarkPosition.CENTER
    image: Optional[str] = None

    @field_validator("image")
    @classmethod
    def validate_image(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("image must be base64 encoded") from exc
        return value

    def overlay_bytes(self) -> Optional[bytes]:
        """Decoded overlay image bytes, if one was supplied."""
        if self.image is None:
            return None
        return base64.b64decode(self.image)


def _first_error(error: ValidationError) -> Dict[str, str]:
    err = error.errors()[0]
    field = ".".join(str(loc) for loc in err["loc"])
    return {"field": field, "msg": err["msg"]}


def parse_params(operation: str, schema: Type[P], params: Dict[str, Any]) -> P:
    """
    Validate raw step params against an operation schema.

    Args:
        operation: Operation name, used in the error
        schema: Pydantic schema for the operation
        params: Raw params mapping from the request

    Returns:
        The validated params instance

    Raises:
        ParameterValidationError: If any constraint fails; reports the first
            failing field.
    """
    try:
        return schema.model_validate(params)
    except ValidationError as exc:
        first = _first_error(exc)
        raise ParameterValidationError(
            operation, first["msg"], field=first["field"] or None
        ) from exc
