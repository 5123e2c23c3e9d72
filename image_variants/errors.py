"""Error taxonomy for the variant pipeline.

Errors raised before rendering starts are fatal to the Job and are
re-raised to the invoker so its redelivery policy applies. Render and
upload errors are caught per variant and only recorded.
"""

from __future__ import annotations


class ImageVariantError(Exception):
    kind = "ImageVariantError"
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ConfigError(ImageVariantError):
    kind = "ConfigError"


class MalformedJob(ImageVariantError):
    kind = "MalformedJob"


class UnsupportedMediaType(ImageVariantError):
    kind = "UnsupportedMediaType"


class SizeOutOfRange(ImageVariantError):
    kind = "SizeOutOfRange"


class FetchError(ImageVariantError):
    """Object store unreachable or object missing."""

    kind = "FetchError"
    retryable = True


class DecodeError(ImageVariantError):
    kind = "DecodeError"


class VariantRenderError(ImageVariantError):
    kind = "VariantRenderError"


class UploadError(ImageVariantError):
    kind = "UploadError"


class JobTimeout(ImageVariantError):
    kind = "JobTimeout"
    retryable = True


class UpscaleError(AssertionError):
    """A render was asked to enlarge the source. Planner bug, never recorded."""
