"""Per-variant and per-job result records."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class VariantResult:
    target_width: object
    output_format: str
    output_key: str
    succeeded: bool
    error_message: str | None = None
    output_byte_count: int | None = None
    output_width: int | None = None
    output_height: int | None = None

    @classmethod
    def success(cls, spec, key, byte_count, width, height) -> "VariantResult":
        return cls(spec.target_width, spec.output_format.value, key, True,
                   output_byte_count=byte_count, output_width=width, output_height=height)

    @classmethod
    def failure(cls, spec, key, message) -> "VariantResult":
        return cls(spec.target_width, spec.output_format.value, key, False, error_message=message)

    def to_dict(self) -> dict:
        d = {
            "width": self.target_width,
            "format": self.output_format,
            "key": self.output_key,
            "success": self.succeeded,
        }
        if self.succeeded:
            d.update(bytes=self.output_byte_count, outputWidth=self.output_width,
                     outputHeight=self.output_height)
        else:
            d["error"] = self.error_message
        return d


@dataclass(frozen=True)
class JobResult:
    bucket: str
    key: str
    variants: tuple = ()
    tier: str | None = None
    timed_out: bool = False
    error: dict | None = None

    @property
    def status(self) -> str:
        if self.error is not None:
            return "failed"
        if all(v.succeeded for v in self.variants):
            return "completed"
        return "degraded"

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        d = {
            "bucket": self.bucket,
            "key": self.key,
            "status": self.status,
            "tier": self.tier,
            "results": [v.to_dict() for v in self.variants],
        }
        if self.timed_out:
            d["timedOut"] = True
        if self.error is not None:
            d["error"] = self.error
        return d


def aggregate(job, specs, results, tier=None, timed_out=False) -> JobResult:
    """Collect results in planning order; every planned spec has one entry."""
    results = tuple(results)
    if len(results) != len(specs):
        raise AssertionError(f"{len(specs)} variants planned but {len(results)} results")
    for spec, result in zip(specs, results):
        if result.target_width != spec.target_width or result.output_format != spec.output_format.value:
            raise AssertionError(f"result for {result.output_key} is out of planning order")
    return JobResult(
        bucket=job.bucket,
        key=job.key,
        variants=results,
        tier=tier.name if tier is not None else None,
        timed_out=timed_out,
    )


def failed(error, bucket: str = "", key: str = "") -> JobResult:
    return JobResult(bucket=bucket, key=key, error=error.to_dict())
