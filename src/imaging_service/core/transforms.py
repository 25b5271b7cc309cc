"""Pixel transforms for every pipeline operation.

Each transform takes an image and validated params and returns a new image.
Inputs are never modified in place. Failures are raised as ValueError or
OSError and translated into TransformError by the executor.
"""

from typing import Optional, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFilter, ImageFont, ImageOps

from .exceptions import ImageDecodeError
from .image_utils import decode_image, encode_image
from .logging_config import get_logger
from .output_format import ImageFormat
from .params import (
    BlurParams,
    BrightnessParams,
    ContrastParams,
    ConvertParams,
    DimensionParams,
    NoParams,
    RectangleParams,
    RotateParams,
    WatermarkImageParams,
    WatermarkParams,
    WatermarkPosition,
    ZoomParams,
)

logger = get_logger("transforms")

RESAMPLE = Image.Resampling.LANCZOS
SHARPEN_KERNEL = (-1, -1, -1, -1, 9, -1, -1, -1, -1)
WATERMARK_MARGIN = 10


def _working_mode(image: Image.Image) -> Image.Image:
    """Bring palette and exotic modes to L/LA/RGB/RGBA so filters apply."""
    if image.mode in ("L", "LA", "RGB", "RGBA"):
        return image
    if image.mode in ("PA",) or (image.mode == "P" and "transparency" in image.info):
        return image.convert("RGBA")
    if image.mode == "1":
        return image.convert("L")
    return image.convert("RGB")


def _split_alpha(image: Image.Image) -> Tuple[Image.Image, Optional[Image.Image]]:
    if image.mode == "RGBA":
        return image.convert("RGB"), image.getchannel("A")
    if image.mode == "LA":
        return image.convert("L"), image.getchannel("A")
    return image, None


def _merge_alpha(base: Image.Image, alpha: Optional[Image.Image]) -> Image.Image:
    if alpha is not None:
        base.putalpha(alpha)
    return base


def _clamped_box(image: Image.Image, params: RectangleParams) -> Tuple[int, int, int, int]:
    x = min(params.x, image.width)
    y = min(params.y, image.height)
    width = min(params.width, image.width - x)
    height = min(params.height, image.height - y)
    if width <= 0 or height <= 0:
        raise ValueError(
            f"region at ({params.x}, {params.y}) lies outside the "
            f"{image.width}x{image.height} image"
        )
    return (x, y, x + width, y + height)


def _checked_size(width: int, height: int) -> Tuple[int, int]:
    limit = Image.MAX_IMAGE_PIXELS
    if limit is not None and width * height > limit:
        raise ValueError(f"target size {width}x{height} exceeds {limit} pixels")
    return width, height


# Geometry


def resize(image: Image.Image, params: DimensionParams) -> Image.Image:
    return image.resize(_checked_size(params.width, params.height), RESAMPLE)


def crop(image: Image.Image, params: RectangleParams) -> Image.Image:
    return image.crop(_clamped_box(image, params))


def extract(image: Image.Image, params: RectangleParams) -> Image.Image:
    return image.crop(_clamped_box(image, params))


def smart_crop(image: Image.Image, params: DimensionParams) -> Image.Image:
    """Centered crop of the requested size, clamped to the image."""
    width = min(params.width, image.width)
    height = min(params.height, image.height)
    x = (image.width - width) // 2
    y = (image.height - height) // 2
    return image.crop((x, y, x + width, y + height))


def thumbnail(image: Image.Image, params: DimensionParams) -> Image.Image:
    """Shrink to fit within the bounds, keeping the aspect ratio."""
    result = image.copy()
    result.thumbnail((params.width, params.height), RESAMPLE)
    return result


def enlarge(image: Image.Image, params: DimensionParams) -> Image.Image:
    """Scale up to fit within the bounds; never shrinks."""
    ratio = min(params.width / image.width, params.height / image.height)
    if ratio <= 1:
        return image.copy()
    size = _checked_size(
        max(1, round(image.width * ratio)), max(1, round(image.height * ratio))
    )
    return image.resize(size, RESAMPLE)


def zoom(image: Image.Image, params: ZoomParams) -> Image.Image:
    size = _checked_size(
        max(1, round(image.width * params.factor)),
        max(1, round(image.height * params.factor)),
    )
    return image.resize(size, RESAMPLE)


def rotate(image: Image.Image, params: RotateParams) -> Image.Image:
    """
    Rotate clockwise by a right angle.

    0, 90, 180 and 270 are exact. Any other angle falls back to a 90 degree
    rotation.
    """
    degrees = params.degrees
    if degrees == 0:
        return image.copy()
    if degrees == 180:
        return image.transpose(Image.Transpose.ROTATE_180)
    if degrees == 270:
        return image.transpose(Image.Transpose.ROTATE_90)
    if degrees != 90:
        logger.warning(f"Rotation by {degrees} degrees is not a right angle, rotating 90")
    return image.transpose(Image.Transpose.ROTATE_270)


def autorotate(image: Image.Image, params: Optional[NoParams] = None) -> Image.Image:
    """Apply the EXIF orientation tag, if any."""
    return ImageOps.exif_transpose(image)


def flip(image: Image.Image, params: Optional[NoParams] = None) -> Image.Image:
    """Mirror top to bottom."""
    return image.transpose(Image.Transpose.FLIP_TOP_BOTTOM)


def flop(image: Image.Image, params: Optional[NoParams] = None) -> Image.Image:
    """Mirror left to right."""
    return image.transpose(Image.Transpose.FLIP_LEFT_RIGHT)


# Color and filters


def grayscale(image: Image.Image, params: Optional[NoParams] = None) -> Image.Image:
    return image.convert("L")


def adjust_brightness(image: Image.Image, params: BrightnessParams) -> Image.Image:
    """Add a constant to every color channel, saturating at 0 and 255."""
    base, alpha = _split_alpha(_working_mode(image))
    pixels = np.asarray(base, dtype=np.int16) + params.value
    adjusted = Image.fromarray(np.clip(pixels, 0, 255).astype(np.uint8))
    return _merge_alpha(adjusted, alpha)


def adjust_contrast(image: Image.Image, params: ContrastParams) -> Image.Image:
    """Scale channel distance from mid-grey by ((100 + value) / 100) squared."""
    base, alpha = _split_alpha(_working_mode(image))
    percent = ((100.0 + params.value) / 100.0) ** 2
    pixels = np.asarray(base, dtype=np.float32) / 255.0
    pixels = ((pixels - 0.5) * percent + 0.5) * 255.0
    adjusted = Image.fromarray(np.clip(pixels, 0, 255).astype(np.uint8))
    return _merge_alpha(adjusted, alpha)


def sharpen(image: Image.Image, params: Optional[NoParams] = None) -> Image.Image:
    base, alpha = _split_alpha(_working_mode(image))
    sharpened = base.filter(ImageFilter.Kernel((3, 3), SHARPEN_KERNEL, scale=1))
    return _merge_alpha(sharpened, alpha)


def blur(image: Image.Image, params: BlurParams) -> Image.Image:
    if params.minampl is not None:
        logger.warning("Blur 'minampl' is accepted but not used; only sigma is applied")
    return _working_mode(image).filter(ImageFilter.GaussianBlur(radius=params.sigma))


# Format


def convert(image: Image.Image, params: ConvertParams) -> Image.Image:
    """Round-trip through the target encoder so its constraints apply."""
    fmt = ImageFormat.from_name(params.format)
    if fmt is None:
        raise ValueError(f"unsupported format '{params.format}'")
    try:
        encoded = encode_image(image, fmt, params.quality)
        converted, _ = decode_image(encoded)
    except ImageDecodeError as exc:
        raise ValueError(str(exc)) from exc
    return converted


# Overlays


def _anchor(
    position: WatermarkPosition,
    canvas: Tuple[int, int],
    mark: Tuple[int, int],
    margin: int,
) -> Tuple[int, int]:
    width, height = canvas
    mark_w, mark_h = mark
    if position is WatermarkPosition.TOP_LEFT:
        x, y = margin, margin
    elif position is WatermarkPosition.TOP_RIGHT:
        x, y = width - mark_w - margin, margin
    elif position is WatermarkPosition.BOTTOM_LEFT:
        x, y = margin, height - mark_h - margin
    elif position is WatermarkPosition.BOTTOM_RIGHT:
        x, y = width - mark_w - margin, height - mark_h - margin
    else:
        x, y = (width - mark_w) // 2, (height - mark_h) // 2
    return max(0, x), max(0, y)


def _restore_mode(original: Image.Image, composed: Image.Image) -> Image.Image:
    if original.mode in ("RGBA", "LA", "PA") or "transparency" in original.info:
        return composed
    return composed.convert("RGB")


def watermark(image: Image.Image, params: WatermarkParams) -> Image.Image:
    """Draw translucent text at an anchor or explicit origin."""
    base = image.convert("RGBA")
    font = ImageFont.load_default(size=params.font_size)

    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    left, top, right, bottom = draw.textbbox((0, 0), params.text, font=font)
    text_size = (right - left, bottom - top)

    if params.x is not None and params.y is not None:
        origin = (params.x, params.y)
    else:
        origin = _anchor(params.position, base.size, text_size, WATERMARK_MARGIN)

    fill = (*params.color, round(params.opacity * 255))
    draw.text((origin[0] - left, origin[1] - top), params.text, font=font, fill=fill)
    return _restore_mode(image, Image.alpha_composite(base, layer))


def watermark_image(image: Image.Image, params: WatermarkImageParams) -> Image.Image:
    """
    Blend an overlay covering a quarter of each dimension.

    The supplied overlay image is scaled to fit that box; without one a
    solid white block is used. Opacity scales the overlay's own alpha.
    """
    box = (image.width // 4, image.height // 4)
    if box[0] == 0 or box[1] == 0:
        return image.copy()

    overlay_bytes = params.overlay_bytes()
    if overlay_bytes is not None:
        try:
            mark, _ = decode_image(overlay_bytes)
        except ImageDecodeError as exc:
            raise ValueError(f"watermark image: {exc}") from exc
        mark = mark.convert("RGBA")
        mark.thumbnail(box, RESAMPLE)
    else:
        mark = Image.new("RGBA", box, (255, 255, 255, 255))

    alpha = mark.getchannel("A").point(lambda a: round(a * params.opacity))
    mark.putalpha(alpha)

    base = image.convert("RGBA")
    layer = Image.new("RGBA", base.size, (0, 0, 0, 0))
    layer.paste(mark, _anchor(params.position, base.size, mark.size, 0))
    return _restore_mode(image, Image.alpha_composite(base, layer))
