import io

import pytest
from PIL import Image

from image_variants.errors import FetchError, UploadError
from image_variants.storage import ObjectHead


def image_bytes(width, height, fmt="JPEG", mode="RGB", color=(200, 80, 40)):
    """Encode a solid-colour test image."""
    if mode in ("L", "P"):
        color = 128
    elif mode in ("RGBA", "LA"):
        color = (200, 80, 40, 128)[: len(mode)]
    img = Image.new(mode, (width, height), color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


class FakeStore:
    """In-memory object store with the same surface as S3ObjectStore."""

    def __init__(self, objects=None):
        self.objects = dict(objects or {})
        self.heads = []
        self.gets = []
        self.puts = []
        self.fail_put_keys = set()

    def head_object(self, location):
        self.heads.append((location.bucket, location.key))
        data = self.objects.get((location.bucket, location.key))
        if data is None:
            raise FetchError(f"head {location} failed: 404: Not Found")
        return ObjectHead(len(data), None)

    def get_object(self, location):
        self.gets.append((location.bucket, location.key))
        data = self.objects.get((location.bucket, location.key))
        if data is None:
            raise FetchError(f"get {location} failed: NoSuchKey")
        return data

    def put_object(self, location, body, content_type, cache_control, metadata):
        if location.key in self.fail_put_keys:
            raise UploadError(f"put {location} failed: SlowDown")
        self.objects[(location.bucket, location.key)] = body
        self.puts.append({
            "bucket": location.bucket,
            "key": location.key,
            "body": body,
            "content_type": content_type,
            "cache_control": cache_control,
            "metadata": metadata,
        })


@pytest.fixture()
def store():
    return FakeStore()


@pytest.fixture()
def make_image():
    return image_bytes
