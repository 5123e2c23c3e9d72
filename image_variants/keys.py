"""Deterministic object keys for rendered variants.

Keys only depend on (source key, width, format), so a redelivered job
overwrites exactly the objects an earlier run wrote.
"""

from __future__ import annotations

import posixpath

from .planner import ORIGINAL, OutputFormat

WEBP_EXTENSION = ".webp"


def sanitize_key(key: str) -> str:
    """Drop leading path separators. Applying it twice is a no-op."""
    return key.lstrip("/")


def split_key(key: str):
    directory, name = posixpath.split(key)
    base, ext = posixpath.splitext(name)
    return directory, base, ext


def output_key(original_key: str, target_width, output_format: OutputFormat) -> str:
    directory, base, ext = split_key(original_key)
    suffix = "" if target_width == ORIGINAL else f"-{target_width}w"
    if output_format is not OutputFormat.ORIGINAL_PRESERVING:
        ext = WEBP_EXTENSION
    key = posixpath.join(directory, base + suffix + ext)
    if key.startswith("./"):
        key = key[2:]
    return key


def unique_specs(specs, source_key: str) -> list:
    """Drop specs whose output key an earlier spec already claimed.

    Only happens when the source is itself a ``.webp`` object, where the
    format-preserving and WebP outputs share a key.
    """
    seen = set()
    unique = []
    for spec in specs:
        key = output_key(source_key, spec.target_width, spec.output_format)
        if key in seen:
            continue
        seen.add(key)
        unique.append(spec)
    return unique
