"""Turn an inbound notification into a validated Job."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass

from .errors import MalformedJob, UnsupportedMediaType
from .keys import sanitize_key, split_key

logger = logging.getLogger(__name__)

ACCEPTED_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "webp", "tiff", "avif"})


@dataclass(frozen=True)
class StorageLocation:
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass(frozen=True)
class Job:
    location: StorageLocation
    size_bytes: int

    @property
    def bucket(self) -> str:
        return self.location.bucket

    @property
    def key(self) -> str:
        return self.location.key


def decode_job(payload, routing_size=None) -> Job:
    """Validate a ``{"bucket", "key", "size"}`` notification.

    ``payload`` may be the decoded dict or its JSON text. ``routing_size`` is
    the optional numeric attribute the dispatch layer filtered on; the body
    size wins when they disagree.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise MalformedJob(f"notification is not valid JSON: {e}") from None
    if not isinstance(payload, dict):
        raise MalformedJob(f"notification must be a JSON object, got {type(payload).__name__}")

    bucket = payload.get("bucket")
    key = payload.get("key")
    if not isinstance(bucket, str) or not bucket:
        raise MalformedJob("Missing required field: bucket")
    if not isinstance(key, str) or not sanitize_key(key):
        raise MalformedJob("Missing required field: key")
    key = sanitize_key(key)

    _, _, ext = split_key(key)
    if ext.lstrip(".").lower() not in ACCEPTED_EXTENSIONS:
        raise UnsupportedMediaType(f"Unsupported file type: {ext or '(none)'}")

    size = _size(payload.get("size"))
    if routing_size is not None and _routed_size(routing_size) != size:
        logger.warning(
            "routing attribute size=%s disagrees with body size=%s for %s",
            routing_size, size, key,
        )

    return Job(location=StorageLocation(bucket, key), size_bytes=size)


def _routed_size(raw):
    try:
        return _size(raw)
    except MalformedJob:
        return None


def _size(raw) -> int:
    if isinstance(raw, str):
        try:
            raw = float(raw)
        except ValueError:
            raise MalformedJob(f"size must be a number, got {raw!r}") from None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise MalformedJob(f"Missing or invalid field: size ({raw!r})")
    if isinstance(raw, float) and not math.isfinite(raw):
        raise MalformedJob(f"size must be finite, got {raw!r}")
    if raw < 0 or int(raw) != raw:
        raise MalformedJob(f"size must be a non-negative integer, got {raw!r}")
    return int(raw)
