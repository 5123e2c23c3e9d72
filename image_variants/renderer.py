"""Render, encode and upload planned variants.

Each spec is rendered behind its own failure boundary: an encoder or
upload error is recorded on that variant's result and rendering moves on.
An upscale request is the one exception: the planner never emits one, so
seeing it means a bug, and it is raised to the caller.
"""

from __future__ import annotations

import io
import logging
import math
import time
import urllib.parse
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from PIL import Image

from .errors import ImageVariantError, JobTimeout, UpscaleError, VariantRenderError
from .jobs import StorageLocation
from .keys import output_key
from .planner import OutputFormat, VariantSpec
from .results import VariantResult

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "TIFF": "image/tiff",
    "AVIF": "image/avif",
}

# modes each encoder accepts without conversion
_ENCODER_MODES = {
    "JPEG": ("RGB", "L", "CMYK"),
    "PNG": ("RGB", "RGBA", "L", "LA"),
    "WEBP": ("RGB", "RGBA"),
    "TIFF": ("RGB", "RGBA", "L", "LA", "CMYK"),
    "AVIF": ("RGB", "RGBA"),
}


def target_size(spec, metadata):
    """(width, height) for ``spec``; height keeps the source aspect ratio."""
    if spec.is_original:
        return metadata.width, metadata.height
    if spec.target_width >= metadata.width:
        raise UpscaleError(
            f"refusing to render {spec.target_width}px from a {metadata.width}px source"
        )
    # round half up
    height = math.floor(spec.target_width * metadata.height / metadata.width + 0.5)
    return spec.target_width, max(height, 1)


def codec_for(spec, metadata) -> str:
    if spec.output_format is OutputFormat.WEBP:
        return "WEBP"
    codec = metadata.source_format.upper()
    if codec == "MPO":
        # multi-picture JPEG from cameras
        codec = "JPEG"
    if codec not in CONTENT_TYPES:
        raise VariantRenderError(f"no encoder for source format {metadata.source_format}")
    return codec


def encode(image: Image.Image, codec: str, quality: int) -> bytes:
    buf = io.BytesIO()
    if codec == "JPEG":
        image.save(buf, format="JPEG", quality=quality, optimize=True)
    elif codec == "PNG":
        image.save(buf, format="PNG", optimize=True)
    elif codec == "WEBP":
        image.save(buf, format="WEBP", quality=quality, method=4)
    elif codec == "TIFF":
        image.save(buf, format="TIFF", compression="tiff_lzw")
    elif codec == "AVIF":
        image.save(buf, format="AVIF", quality=quality)
    else:
        raise VariantRenderError(f"no encoder for {codec}")
    return buf.getvalue()


def _prepare(image: Image.Image, codec: str) -> Image.Image:
    """Convert to a mode ``codec`` can write. Always returns a new image or ``image`` untouched."""
    allowed = _ENCODER_MODES[codec]
    if image.mode in allowed:
        return image
    if image.mode.startswith("I"):
        # 16-bit grey: scale to 8 bits, a plain convert clips everything above 255
        image = image.convert("I").point(lambda v: v * (1 / 256)).convert("L")
        if image.mode in allowed:
            return image
    has_alpha = image.has_transparency_data
    if has_alpha and "RGBA" in allowed:
        return image.convert("RGBA")
    if has_alpha:
        # composite onto white, JPEG has no alpha channel
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


def max_parallel_renders(config, tier, source) -> int:
    """Bound concurrent renders so their buffers fit the tier's memory budget.

    Each in-flight render holds at most one converted copy and one resized
    copy of the source, both no larger than the decoded source.
    """
    if config.render_concurrency <= 1 or tier is None:
        return 1
    decoded = source.metadata.pixel_bytes
    available = tier.memory_bytes - decoded - len(source.data)
    per_render = max(2 * decoded, 1)
    return max(1, min(config.render_concurrency, available // per_render))


class VariantRenderer:
    """Renders every spec of one job from its shared, decoded source."""

    def __init__(self, job, source, store, config, tier=None, deadline=None,
                 clock=time.monotonic, now=None) -> None:
        self.job = job
        self.source = source
        self.store = store
        self.config = config
        self.tier = tier
        self.deadline = deadline
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.output_bucket = config.output_bucket or job.bucket
        self.cancelled = False

    @property
    def timed_out(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    def render_all(self, specs) -> list:
        """Render ``specs``; results come back in the order given."""
        workers = max_parallel_renders(self.config, self.tier, self.source)
        if workers <= 1 or len(specs) <= 1:
            return [self.render(spec) for spec in specs]
        logger.info("Rendering %d variants with %d workers", len(specs), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="variant") as pool:
            return list(pool.map(self.render, specs))

    def render(self, spec) -> VariantResult:
        metadata = self.source.metadata
        key = output_key(self.job.key, spec.target_width, spec.output_format)
        width, height = target_size(spec, metadata)

        location = StorageLocation(self.output_bucket, key)
        try:
            self._check_deadline()
            if location == self.job.location:
                # never replace the source with a re-encode of itself, a
                # redelivered job must read the same bytes again
                codec = codec_for(VariantSpec(spec.target_width, OutputFormat.ORIGINAL_PRESERVING), metadata)
                body = self.source.data
            else:
                codec = codec_for(spec, metadata)
                body = self._render_bytes(codec, width, height)
            # nothing is uploaded once the job is out of time
            self._check_deadline()
            self.store.put_object(
                location,
                body,
                content_type=CONTENT_TYPES[codec],
                cache_control=self.config.cache_control,
                metadata={
                    # S3 metadata values must be ASCII, keys need not be
                    "source-key": urllib.parse.quote(self.job.key, safe="/"),
                    "width": str(width),
                    "height": str(height),
                    "format": codec.lower(),
                    "processed-at": self._now().isoformat(),
                },
            )
        except ImageVariantError as e:
            logger.error("Error processing %s %s: %s", spec.target_width, spec.output_format.value, e)
            return VariantResult.failure(spec, key, f"{e.kind}: {e.message}")
        except Exception as e:
            logger.exception("Error processing %s %s", spec.target_width, spec.output_format.value)
            return VariantResult.failure(spec, key, f"VariantRenderError: {e}")

        logger.info("Uploaded: %s (%d bytes, %dx%d)", key, len(body), width, height)
        return VariantResult.success(spec, key, len(body), width, height)

    def _render_bytes(self, codec: str, width: int, height: int) -> bytes:
        image = _prepare(self.source.image, codec)
        if (width, height) != image.size:
            image = image.resize((width, height), Image.LANCZOS)
        elif image is self.source.image:
            # save() writes encoder state onto the image object
            image = image.copy()
        return encode(image, codec, self.config.quality)

    def _check_deadline(self) -> None:
        if self.timed_out:
            self.cancelled = True
            raise JobTimeout("job deadline exceeded before this variant finished")
