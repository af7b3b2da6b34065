"""
Image introspection with Pillow.

``inspect_image(bytes)`` is a pure function: it decodes the image and
reports dimensions, density, channel count, bit depth and format.  Corrupt
or unsupported input raises ``UnreadableImageError``.
"""

import io
import struct
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

DEFAULT_DPI = 72

_MODE_BIT_DEPTH = {
    "1": 1,
    "I;16": 16,
    "I;16B": 16,
    "I;16L": 16,
    "I": 32,
    "F": 32,
}

_CHANNEL_COLOR_MODES = {1: "Grayscale", 3: "RGB", 4: "CMYK"}


class UnreadableImageError(Exception):
    """Raised when image bytes cannot be decoded."""


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    dpi_horizontal: int
    dpi_vertical: int
    channels: int
    bit_depth: int
    format: str | None

    @property
    def color_mode(self) -> str:
        return _CHANNEL_COLOR_MODES.get(self.channels, "Unknown")

    @property
    def dpi(self) -> int:
        return min(self.dpi_horizontal, self.dpi_vertical)


def _channels(img: Image.Image) -> int:
    # Palette images decode to RGB (or RGBA with a transparency entry)
    if img.mode == "P":
        return 4 if "transparency" in img.info else 3
    return len(img.getbands())


def _density(img: Image.Image) -> tuple[int, int]:
    dpi = img.info.get("dpi")
    if not dpi:
        return DEFAULT_DPI, DEFAULT_DPI
    try:
        horizontal, vertical = (int(round(float(v))) for v in dpi)
    except (TypeError, ValueError):
        return DEFAULT_DPI, DEFAULT_DPI
    return horizontal or DEFAULT_DPI, vertical or DEFAULT_DPI


def inspect_image(data: bytes) -> ImageMetadata:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            width, height = img.size
            dpi_h, dpi_v = _density(img)
            return ImageMetadata(
                width=width,
                height=height,
                dpi_horizontal=dpi_h,
                dpi_vertical=dpi_v,
                channels=_channels(img),
                bit_depth=_MODE_BIT_DEPTH.get(img.mode, 8),
                format=img.format,
            )
    except (
        UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError,
        EOFError, IndexError, struct.error,
    ) as exc:
        raise UnreadableImageError(str(exc) or exc.__class__.__name__) from exc
