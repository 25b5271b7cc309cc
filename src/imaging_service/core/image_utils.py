"""Image decoding, encoding and fingerprint helpers."""

import hashlib
import io
from typing import Any, Dict, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .exceptions import ImageDecodeError, PayloadTooLargeError, UnsupportedImageError
from .output_format import ImageFormat

# Input formats without an entry in the output table are re-encoded as PNG
FALLBACK_FORMAT = ImageFormat.PNG

_ENCODABLE_MODES: Dict[ImageFormat, Tuple[str, ...]] = {
    ImageFormat.PNG: ("1", "L", "LA", "I", "P", "RGB", "RGBA"),
    ImageFormat.JPEG: ("L", "RGB", "CMYK"),
    ImageFormat.GIF: ("1", "L", "P", "RGB", "RGBA"),
    ImageFormat.WEBP: ("RGB", "RGBA"),
    ImageFormat.BMP: ("1", "L", "P", "RGB", "RGBA"),
    ImageFormat.TIFF: ("1", "L", "LA", "P", "RGB", "RGBA", "CMYK"),
    ImageFormat.ICO: ("RGB", "RGBA"),
}


def decode_image(data: bytes) -> Tuple[Image.Image, ImageFormat]:
    """
    Decode raw bytes into a fully loaded image.

    Args:
        data: Encoded image bytes

    Returns:
        The decoded image and the table format it came in (PNG when the
        input format has no output encoder)

    Raises:
        ImageDecodeError: If the bytes are empty or corrupt
        UnsupportedImageError: If Pillow does not recognise the format
        PayloadTooLargeError: If the pixel count trips Pillow's bomb guard
    """
    if not data:
        raise ImageDecodeError("Image data is empty")

    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except Image.DecompressionBombError as exc:
        raise PayloadTooLargeError(f"Image has too many pixels: {exc}") from exc
    except UnidentifiedImageError as exc:
        raise UnsupportedImageError("Unsupported or unrecognised image format") from exc
    except (OSError, ValueError, SyntaxError) as exc:
        raise ImageDecodeError(f"Failed to decode image: {exc}") from exc

    detected = ImageFormat.from_pil(image.format) or FALLBACK_FORMAT
    return image, detected


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )


def prepare_for_format(
    image: Image.Image,
    fmt: ImageFormat,
    background: Tuple[int, int, int] = (255, 255, 255),
) -> Image.Image:
    """
    Convert an image to a mode the target encoder accepts.

    Alpha is composited onto ``background`` for formats without
    transparency support.

    Args:
        image: Image to prepare
        fmt: Target output format
        background: RGB colour used behind transparent pixels

    Returns:
        The same image if already encodable, otherwise a converted copy
    """
    allowed = _ENCODABLE_MODES[fmt]
    if image.mode in allowed:
        return image

    if _has_alpha(image):
        rgba = image.convert("RGBA")
        if "RGBA" in allowed:
            return rgba
        flattened = Image.new("RGB", rgba.size, background)
        flattened.paste(rgba, mask=rgba.split()[-1])
        return flattened

    return image.convert("RGB")


def encode_image(
    image: Image.Image, fmt: ImageFormat, quality: Optional[int] = None
) -> bytes:
    """
    Encode an image in the given output format.

    Args:
        image: Image to encode
        fmt: Output format
        quality: Encoder quality for lossy formats (JPEG and WEBP)

    Returns:
        Encoded bytes

    Raises:
        ImageDecodeError: If Pillow refuses to write the image
    """
    prepared = prepare_for_format(image, fmt)
    save_kwargs: Dict[str, Any] = {}
    if fmt in (ImageFormat.JPEG, ImageFormat.WEBP):
        save_kwargs["quality"] = quality if quality is not None else 90
    if fmt is ImageFormat.PNG:
        save_kwargs["optimize"] = True

    output = io.BytesIO()
    try:
        prepared.save(output, format=fmt.pil_name, **save_kwargs)
    except (OSError, ValueError, KeyError) as exc:
        raise ImageDecodeError(f"Failed to encode image as {fmt.pil_name}: {exc}") from exc
    return output.getvalue()


def fingerprint(data: bytes) -> str:
    """Content hash of the input bytes, used as the cache key root."""
    return hashlib.sha256(data).hexdigest()


def describe_image(image: Image.Image) -> Dict[str, Any]:
    """
    Basic image information for logs and CLI output.

    Args:
        image: Image to describe

    Returns:
        Dictionary with width, height, mode and detected format
    """
    return {
        "width": image.width,
        "height": image.height,
        "format": image.format or "unknown",
        "mode": image.mode,
    }
