"""Fetch and decode the source image exactly once per job."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import DecodeError

logger = logging.getLogger(__name__)

# Pillow mode -> (color space, channels)
_MODES = {
    "1": ("b-w", 1),
    "L": ("b-w", 1),
    "LA": ("b-w", 2),
    "P": ("srgb", 1),
    "PA": ("srgb", 2),
    "RGB": ("srgb", 3),
    "RGBA": ("srgb", 4),
    "RGBX": ("srgb", 4),
    "CMYK": ("cmyk", 4),
    "YCbCr": ("ycbcr", 3),
    "LAB": ("lab", 3),
    "HSV": ("hsv", 3),
    "I": ("b-w", 1),
    "I;16": ("grey16", 1),
    "F": ("b-w", 1),
}


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    source_format: str
    color_space: str
    channels: int

    @property
    def pixel_bytes(self) -> int:
        return self.width * self.height * max(self.channels, 1)


class SourceImage:
    """Decoded source shared read-only by every variant render of a job.

    Renders must only derive new images from ``image`` (``resize``,
    ``convert``, ``copy``); nothing writes to it. ``close`` releases the
    pixel buffer when the job is done.
    """

    def __init__(self, data: bytes, image: Image.Image, metadata: ImageMetadata) -> None:
        self.data = data
        self.image = image
        self.metadata = metadata

    def close(self) -> None:
        self.image.close()

    def __enter__(self) -> "SourceImage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def decode(data: bytes) -> SourceImage:
    try:
        with Image.open(io.BytesIO(data)) as opened:
            source_format = opened.format
            opened.load()
            # bake EXIF orientation in so width/height are what viewers display
            img = ImageOps.exif_transpose(opened)
            if img is opened:
                img = opened.copy()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"not a decodable image: {e}") from e
    if not source_format:
        raise DecodeError("could not determine source image format")

    color_space, channels = _MODES.get(img.mode, (img.mode.lower(), len(img.getbands())))
    metadata = ImageMetadata(
        width=img.width,
        height=img.height,
        source_format=source_format,
        color_space=color_space,
        channels=channels,
    )
    return SourceImage(data, img, metadata)


def probe(store, location) -> SourceImage:
    """Single full fetch plus single full decode of ``location``."""
    head = store.head_object(location)
    logger.info("Original image size: %d bytes", head.content_length)

    data = store.get_object(location)
    source = decode(data)
    m = source.metadata
    logger.info("Original dimensions: %dx%d %s %s", m.width, m.height, m.source_format, m.color_space)
    return source
