"""Object store adapter over a boto3 S3 client.

Client errors are translated into the pipeline's taxonomy: anything that
goes wrong while reading the source is a ``FetchError``, anything while
writing a variant is an ``UploadError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from botocore.exceptions import BotoCoreError, ClientError

from .errors import FetchError, UploadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectHead:
    content_length: int
    content_type: str | None = None


class S3ObjectStore:
    def __init__(self, client) -> None:
        self._s3 = client

    def head_object(self, location) -> ObjectHead:
        try:
            res = self._s3.head_object(Bucket=location.bucket, Key=location.key)
        except (ClientError, BotoCoreError) as e:
            raise FetchError(f"head {location} failed: {_describe(e)}") from e
        return ObjectHead(int(res.get("ContentLength", 0)), res.get("ContentType"))

    def get_object(self, location) -> bytes:
        try:
            obj = self._s3.get_object(Bucket=location.bucket, Key=location.key)
            return obj["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise FetchError(f"get {location} failed: {_describe(e)}") from e

    def put_object(self, location, body: bytes, content_type: str,
                   cache_control: str, metadata: dict) -> None:
        # PutObject is atomic: readers see the previous object or the new one
        try:
            self._s3.put_object(
                Bucket=location.bucket,
                Key=location.key,
                Body=body,
                ContentType=content_type,
                CacheControl=cache_control,
                Metadata=metadata,
            )
        except (ClientError, BotoCoreError) as e:
            raise UploadError(f"put {location} failed: {_describe(e)}") from e


def _describe(e: Exception) -> str:
    if isinstance(e, ClientError):
        err = e.response.get("Error", {})
        return f"{err.get('Code', 'Unknown')}: {err.get('Message', '')}".rstrip(": ")
    return str(e)
