"""Decide which width/format combinations to render for a source image."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Union

logger = logging.getLogger(__name__)

# width sentinel: re-encode at source resolution, no resize
ORIGINAL = "original"


class OutputFormat(str, enum.Enum):
    ORIGINAL_PRESERVING = "original"
    WEBP = "webp"


@dataclass(frozen=True)
class VariantSpec:
    target_width: Union[int, str]
    output_format: OutputFormat

    @property
    def is_original(self) -> bool:
        return self.target_width == ORIGINAL


def plan_variants(metadata, widths: Iterable[int], formats: Iterable[OutputFormat]) -> list:
    """Return the specs to render, in the order results are reported.

    Widths at or above the source width are dropped (no upscaling). One
    ``ORIGINAL`` spec per format is always appended.
    """
    formats = list(dict.fromkeys(formats))
    specs = []
    for width in dict.fromkeys(widths):
        if width >= metadata.width:
            logger.info("Skipping %dpx - not smaller than original (%dpx)", width, metadata.width)
            continue
        specs.extend(VariantSpec(width, fmt) for fmt in formats)
    specs.extend(VariantSpec(ORIGINAL, fmt) for fmt in formats)
    return specs
