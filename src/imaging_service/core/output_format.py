"""Output format table and the resolver that picks the response encoding."""

from enum import Enum
from typing import Dict, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import OperationSpec

CONVERT_OPERATION = "convert"


class ImageFormat(Enum):
    """Encodings the service can emit: (Pillow name, MIME type, extension)."""

    PNG = ("PNG", "image/png", "png")
    JPEG = ("JPEG", "image/jpeg", "jpg")
    GIF = ("GIF", "image/gif", "gif")
    WEBP = ("WEBP", "image/webp", "webp")
    BMP = ("BMP", "image/bmp", "bmp")
    TIFF = ("TIFF", "image/tiff", "tiff")
    ICO = ("ICO", "image/x-icon", "ico")

    def __init__(self, pil_name: str, mime_type: str, extension: str) -> None:
        self.pil_name = pil_name
        self.mime_type = mime_type
        self.extension = extension

    @classmethod
    def from_name(cls, name: str) -> Optional["ImageFormat"]:
        """Look up a client-facing format name, case-insensitively."""
        return FORMAT_NAMES.get(name.strip().lower())

    @classmethod
    def from_mime_type(cls, mime_type: str) -> Optional["ImageFormat"]:
        for fmt in cls:
            if fmt.mime_type == mime_type:
                return fmt
        return None

    @classmethod
    def from_pil(cls, pil_format: Optional[str]) -> Optional["ImageFormat"]:
        """Map the format Pillow detected on decode back to the table."""
        if not pil_format:
            return None
        return _PIL_ALIASES.get(pil_format.upper())


FORMAT_NAMES: Dict[str, ImageFormat] = {
    "png": ImageFormat.PNG,
    "jpeg": ImageFormat.JPEG,
    "jpg": ImageFormat.JPEG,
    "gif": ImageFormat.GIF,
    "webp": ImageFormat.WEBP,
    "bmp": ImageFormat.BMP,
    "tiff": ImageFormat.TIFF,
    "tif": ImageFormat.TIFF,
    "ico": ImageFormat.ICO,
}

# Pillow reports some JPEG variants under their container name.
_PIL_ALIASES: Dict[str, ImageFormat] = {
    **{fmt.pil_name: fmt for fmt in ImageFormat},
    "MPO": ImageFormat.JPEG,
}


class ConvertShape(BaseModel):
    """Fields of the convert operation, coerced the same way the step itself is.

    The format name is checked by ConvertParams, not here.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    format: str
    quality: Optional[int] = Field(default=None, ge=0, le=100)


def resolve_output_format(
    specs: Iterable[OperationSpec], original_format: ImageFormat
) -> ImageFormat:
    """
    Decide the response encoding from the submitted pipeline.

    The last convert step whose params parse wins. A parsed convert naming a
    format outside the table means "keep the input format". Convert steps with
    malformed params are skipped and the scan keeps going backwards.

    Args:
        specs: Pipeline steps in submission order
        original_format: Format the input image was decoded from

    Returns:
        Format to encode the final image with
    """
    for spec in reversed(list(specs)):
        if spec.operation != CONVERT_OPERATION:
            continue
        try:
            shape = ConvertShape.model_validate(spec.params)
        except ValidationError:
            continue
        resolved = ImageFormat.from_name(shape.format)
        return resolved if resolved is not None else original_format
    return original_format


def resolve_output_quality(specs: Iterable[OperationSpec]) -> Optional[int]:
    """Return the quality of the convert step that decides the output, if any."""
    for spec in reversed(list(specs)):
        if spec.operation != CONVERT_OPERATION:
            continue
        try:
            shape = ConvertShape.model_validate(spec.params)
        except ValidationError:
            continue
        return shape.quality
    return None
