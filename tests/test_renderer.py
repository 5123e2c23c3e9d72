import io
from datetime import datetime, timezone

import boto3
import pytest
from botocore.stub import ANY, Stubber
from PIL import Image

import image_variants.renderer as renderer_mod
from image_variants.config import Config
from image_variants.errors import UpscaleError
from image_variants.jobs import Job, StorageLocation
from image_variants.planner import ORIGINAL, OutputFormat, VariantSpec, plan_variants
from image_variants.probe import ImageMetadata, decode
from image_variants.renderer import VariantRenderer, max_parallel_renders, target_size
from image_variants.storage import S3ObjectStore
from image_variants.tiers import DEFAULT_TIERS, Tier

WEBP = OutputFormat.WEBP
KEEP = OutputFormat.ORIGINAL_PRESERVING
FIXED_NOW = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def build(store, data, key="photos/vacation.jpg", config=None, **kwargs):
    source = decode(data)
    job = Job(StorageLocation("src-bucket", key), len(data))
    kwargs.setdefault("now", lambda: FIXED_NOW)
    return VariantRenderer(job, source, store, config or Config(), **kwargs), source


def meta(width, height, fmt="JPEG"):
    return ImageMetadata(width, height, fmt, "srgb", 3)


# Height follows the source aspect ratio, ORIGINAL keeps source size
def test_target_size():
    m = meta(2000, 1000)
    assert target_size(VariantSpec(700, WEBP), m) == (700, 350)
    assert target_size(VariantSpec(1400, KEEP), m) == (1400, 700)
    assert target_size(VariantSpec(ORIGINAL, WEBP), m) == (2000, 1000)
    assert target_size(VariantSpec(700, WEBP), meta(1333, 1000)) == (700, 525)


# Output aspect ratio stays within 0.01 of the source
@pytest.mark.parametrize("w,h", [(2000, 1000), (1999, 1333), (3000, 7), (1024, 768), (800, 3000)])
def test_aspect_ratio_is_preserved(w, h):
    for width in (100, 333, 700):
        if width >= w:
            continue
        ow, oh = target_size(VariantSpec(width, WEBP), meta(w, h))
        assert ow == width < w
        assert abs(oh / ow - h / w) < 0.01


# An upscale request is a programming error, never clamped or uploaded
def test_upscale_is_fatal(store, make_image):
    with pytest.raises(UpscaleError):
        target_size(VariantSpec(2000, WEBP), meta(2000, 1000))
    r, _ = build(store, make_image(800, 400))
    with pytest.raises(UpscaleError):
        r.render(VariantSpec(900, WEBP))
    assert store.puts == []


# WebP variant is resized, encoded and uploaded with its headers and tags
def test_render_webp_variant(store, make_image):
    r, _ = build(store, make_image(2000, 1000))
    result = r.render(VariantSpec(700, WEBP))

    assert result.succeeded
    assert result.output_key == "photos/vacation-700w.webp"
    assert (result.output_width, result.output_height) == (700, 350)
    put = store.puts[0]
    assert put["bucket"] == "src-bucket"
    assert put["content_type"] == "image/webp"
    assert put["cache_control"] == "max-age=31536000"
    assert put["metadata"] == {
        "source-key": "photos/vacation.jpg",
        "width": "700",
        "height": "350",
        "format": "webp",
        "processed-at": FIXED_NOW.isoformat(),
    }
    assert result.output_byte_count == len(put["body"])
    with Image.open(io.BytesIO(put["body"])) as out:
        assert out.format == "WEBP"
        assert out.size == (700, 350)


# Format-preserving variants use the source codec
@pytest.mark.parametrize("fmt,key,content_type", [
    ("JPEG", "p/a.jpg", "image/jpeg"),
    ("PNG", "p/a.png", "image/png"),
    ("TIFF", "p/a.tiff", "image/tiff"),
])
def test_render_preserves_source_codec(store, make_image, fmt, key, content_type):
    r, _ = build(store, make_image(1000, 500, fmt=fmt), key=key)
    result = r.render(VariantSpec(700, KEEP))
    assert result.succeeded
    put = store.puts[0]
    assert put["content_type"] == content_type
    with Image.open(io.BytesIO(put["body"])) as out:
        assert out.format == fmt
        assert out.size == (700, 350)


# Transparency survives PNG and WebP re-encodes
def test_alpha_is_kept(store, make_image):
    r, _ = build(store, make_image(1000, 500, fmt="PNG", mode="RGBA"), key="a.png")
    for spec in (VariantSpec(700, KEEP), VariantSpec(700, WEBP)):
        assert r.render(spec).succeeded
    for put in store.puts:
        with Image.open(io.BytesIO(put["body"])) as out:
            assert out.mode == "RGBA"


# ORIGINAL specs re-encode at source resolution
def test_original_width_render(store, make_image):
    r, _ = build(store, make_image(640, 480))
    result = r.render(VariantSpec(ORIGINAL, WEBP))
    assert result.output_key == "photos/vacation.webp"
    assert (result.output_width, result.output_height) == (640, 480)


# One failing encode leaves every sibling variant successful
def test_encode_failure_is_isolated(store, make_image, monkeypatch):
    real_encode = renderer_mod.encode

    def flaky_encode(image, codec, quality):
        if codec == "WEBP" and image.width == 700:
            raise OSError("encoder exploded")
        return real_encode(image, codec, quality)

    monkeypatch.setattr(renderer_mod, "encode", flaky_encode)
    r, source = build(store, make_image(2000, 1000))
    specs = plan_variants(source.metadata, [700, 1400], [WEBP, KEEP])
    results = r.render_all(specs)

    assert len(results) == len(specs) == 6
    failed = [res for res in results if not res.succeeded]
    assert [res.output_key for res in failed] == ["photos/vacation-700w.webp"]
    assert "encoder exploded" in failed[0].error_message
    assert all(res.succeeded for res in results if res is not failed[0])
    assert len(store.puts) == 5


# Upload failures are recorded on the variant only
def test_upload_failure_is_isolated(store, make_image):
    store.fail_put_keys = {"photos/vacation-1400w.jpg"}
    r, source = build(store, make_image(2000, 1000))
    results = r.render_all(plan_variants(source.metadata, [700, 1400], [WEBP, KEEP]))
    by_key = {res.output_key: res for res in results}
    assert by_key["photos/vacation-1400w.jpg"].error_message.startswith("UploadError")
    assert sum(res.succeeded for res in results) == 5


# Rendering never modifies the shared source image
def test_source_is_not_mutated(store, make_image):
    r, source = build(store, make_image(1200, 900, fmt="PNG", mode="RGBA"), key="a.png")
    before = (source.image.mode, source.image.size, source.image.tobytes())
    r.render_all(plan_variants(source.metadata, [300, 700], [WEBP, KEEP]))
    assert (source.image.mode, source.image.size, source.image.tobytes()) == before


# After the deadline passes, remaining variants fail and nothing more is uploaded
def test_deadline_cancels_remaining_variants(store, make_image):
    now = [0.0]
    real_put = store.put_object

    def put_then_expire(*args, **kwargs):
        real_put(*args, **kwargs)
        now[0] = 10.0

    store.put_object = put_then_expire
    r, source = build(store, make_image(2000, 1000), deadline=5.0, clock=lambda: now[0])
    results = r.render_all(plan_variants(source.metadata, [700, 1400], [WEBP, KEEP]))

    assert len(results) == 6
    assert results[0].succeeded
    assert all(not res.succeeded and "JobTimeout" in res.error_message for res in results[1:])
    assert len(store.puts) == 1
    assert r.cancelled


# Concurrent rendering keeps planning order
def test_concurrent_render_keeps_planning_order(store, make_image):
    config = Config(render_concurrency=4)
    r, source = build(store, make_image(2000, 1000), config=config, tier=DEFAULT_TIERS[0])
    specs = plan_variants(source.metadata, [100, 300, 700, 1400], [WEBP, KEEP])
    results = r.render_all(specs)
    assert [(res.target_width, res.output_format) for res in results] == \
        [(s.target_width, s.output_format.value) for s in specs]
    assert all(res.succeeded for res in results)
    assert len(store.puts) == len(specs)


# Parallelism is capped by configuration and by the tier memory budget
def test_max_parallel_renders(make_image):
    source = decode(make_image(2000, 1000))
    assert max_parallel_renders(Config(), DEFAULT_TIERS[0], source) == 1
    assert max_parallel_renders(Config(render_concurrency=4), None, source) == 1
    assert max_parallel_renders(Config(render_concurrency=4), DEFAULT_TIERS[0], source) == 4
    tiny = Tier("tiny", 0, 10, memory_mb=8, ephemeral_storage_mb=1, timeout_s=1)
    assert max_parallel_renders(Config(render_concurrency=4), tiny, source) == 1


# 16-bit greyscale is scaled down to 8 bits, not clipped to white
@pytest.mark.parametrize("spec,codec", [
    (VariantSpec(700, KEEP), "PNG"),
    (VariantSpec(700, WEBP), "WEBP"),
    (VariantSpec(ORIGINAL, WEBP), "WEBP"),
])
def test_sixteen_bit_grey_is_scaled(store, spec, codec):
    buf = io.BytesIO()
    Image.new("I;16", (1000, 500), 20000).save(buf, format="PNG")
    r, source = build(store, buf.getvalue(), key="scans/plate.png")
    assert source.image.mode in ("I;16", "I")

    result = r.render(spec)
    assert result.succeeded
    with Image.open(io.BytesIO(store.puts[0]["body"])) as out:
        assert out.format == codec
        pixel = out.convert("L").getpixel((out.width // 2, out.height // 2))
    # 20000 / 256
    assert abs(pixel - 78) <= 3


# Non-ASCII source keys are percent-encoded in the object metadata
def test_non_ascii_key_metadata_is_accepted_by_s3_client(make_image):
    s3 = boto3.client("s3", region_name="us-east-1",
                      aws_access_key_id="testing", aws_secret_access_key="testing")
    stubber = Stubber(s3)
    stubber.add_response("put_object", {}, {
        "Bucket": "src-bucket",
        "Key": "photos/café-700w.webp",
        "Body": ANY,
        "ContentType": "image/webp",
        "CacheControl": "max-age=31536000",
        "Metadata": {
            "source-key": "photos/caf%C3%A9.jpg",
            "width": "700",
            "height": "350",
            "format": "webp",
            "processed-at": FIXED_NOW.isoformat(),
        },
    })
    r, _ = build(S3ObjectStore(s3), make_image(2000, 1000), key="photos/café.jpg")
    with stubber:
        result = r.render(VariantSpec(700, WEBP))
    assert result.succeeded, result.error_message
    stubber.assert_no_pending_responses()


# Decoding releases the opened file and keeps a detached pixel copy
@pytest.mark.parametrize("fmt", ["JPEG", "PNG"])
def test_decode_releases_opened_image(monkeypatch, make_image, fmt):
    real_open = Image.open
    opened = []

    def tracking_open(*args, **kwargs):
        img = real_open(*args, **kwargs)
        opened.append(img)
        return img

    monkeypatch.setattr(Image, "open", tracking_open)
    source = decode(make_image(64, 32, fmt=fmt))

    assert len(opened) == 1
    assert opened[0].fp is None
    assert source.image is not opened[0]
    assert source.image.size == (64, 32)
    assert source.image.getpixel((0, 0)) is not None
    source.close()


# A variant that lands on the source object uploads the source bytes unchanged
def test_variant_at_source_location_is_passed_through(store, make_image):
    data = make_image(640, 480)
    r, _ = build(store, data)
    result = r.render(VariantSpec(ORIGINAL, KEEP))
    assert result.succeeded
    assert result.output_key == "photos/vacation.jpg"
    assert store.puts[0]["body"] == data
    assert store.puts[0]["content_type"] == "image/jpeg"
    assert store.puts[0]["metadata"]["format"] == "jpeg"
