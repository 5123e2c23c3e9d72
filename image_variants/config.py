"""Process configuration.

Values are read from the environment once at cold start and then passed
explicitly to the planner, renderer and pipeline.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Mapping

from .errors import ConfigError
from .planner import OutputFormat
from .tiers import DEFAULT_TIERS, Tier, validate_tiers

DEFAULT_QUALITY = 85
DEFAULT_TARGET_SIZES = (700, 1400)
DEFAULT_OUTPUT_FORMATS = (OutputFormat.WEBP, OutputFormat.ORIGINAL_PRESERVING)
DEFAULT_CACHE_CONTROL = "max-age=31536000"  # 1 year


@dataclass(frozen=True)
class Config:
    quality: int = DEFAULT_QUALITY
    target_widths: tuple = DEFAULT_TARGET_SIZES
    output_formats: tuple = DEFAULT_OUTPUT_FORMATS
    tiers: tuple = DEFAULT_TIERS
    render_concurrency: int = 1
    cache_control: str = DEFAULT_CACHE_CONTROL
    # empty means outputs are written next to the source object
    output_bucket: str = ""
    worker_tier: str = ""

    def __post_init__(self) -> None:
        if isinstance(self.quality, bool) or not isinstance(self.quality, int):
            raise ConfigError(f"quality must be an integer, got {self.quality!r}")
        if not 1 <= self.quality <= 100:
            raise ConfigError(f"quality must be within 1..100, got {self.quality}")

        widths = tuple(self.target_widths)
        for w in widths:
            if isinstance(w, bool) or not isinstance(w, int) or w <= 0:
                raise ConfigError(f"target width must be a positive integer, got {w!r}")
        if list(widths) != sorted(set(widths)):
            raise ConfigError(f"target widths must be strictly ascending, got {list(widths)}")
        object.__setattr__(self, "target_widths", widths)

        try:
            formats = tuple(OutputFormat(f) for f in self.output_formats)
        except ValueError:
            raise ConfigError(f"unknown output format in {list(self.output_formats)}") from None
        if not formats:
            raise ConfigError("at least one output format is required")
        if len(set(formats)) != len(formats):
            raise ConfigError(f"duplicate output formats: {[f.value for f in formats]}")
        object.__setattr__(self, "output_formats", formats)

        if isinstance(self.render_concurrency, bool) or not isinstance(self.render_concurrency, int):
            raise ConfigError(f"render concurrency must be an integer, got {self.render_concurrency!r}")
        if self.render_concurrency < 1:
            raise ConfigError("render concurrency must be >= 1")

        tiers = tuple(self.tiers)
        validate_tiers(tiers)
        object.__setattr__(self, "tiers", tiers)
        if self.worker_tier and self.worker_tier not in {t.name for t in tiers}:
            raise ConfigError(f"unknown worker tier: {self.worker_tier}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Config":
        env = os.environ if environ is None else environ
        return cls(
            quality=_get_int(env, "QUALITY", _get_int(env, "WEBP_QUALITY", DEFAULT_QUALITY)),
            target_widths=_get_sizes(env),
            output_formats=_get_formats(env),
            tiers=_get_tiers(env),
            render_concurrency=_get_int(env, "RENDER_CONCURRENCY", 1),
            cache_control=env.get("CACHE_CONTROL", DEFAULT_CACHE_CONTROL).strip() or DEFAULT_CACHE_CONTROL,
            output_bucket=env.get("DST_BUCKET", "").strip(),
            worker_tier=env.get("WORKER_TIER", "").strip().lower(),
        )

    def tier_named(self, name: str) -> Tier:
        for tier in self.tiers:
            if tier.name == name:
                return tier
        raise KeyError(name)


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _get_sizes(env: Mapping[str, str]) -> tuple:
    raw = env.get("TARGET_SIZES", "").strip()
    if not raw:
        return DEFAULT_TARGET_SIZES
    try:
        sizes = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"TARGET_SIZES is not valid JSON: {e}") from None
    if not isinstance(sizes, list):
        raise ConfigError("TARGET_SIZES must be a JSON list")
    return tuple(sizes)


def _get_formats(env: Mapping[str, str]) -> tuple:
    raw = env.get("OUTPUT_FORMATS", "").strip()
    if not raw:
        return DEFAULT_OUTPUT_FORMATS
    names = [part.strip().lower() for part in raw.split(",") if part.strip()]
    try:
        return tuple(OutputFormat(n) for n in names)
    except ValueError:
        raise ConfigError(f"OUTPUT_FORMATS has an unknown format: {raw!r}") from None


def _get_tiers(env: Mapping[str, str]) -> tuple:
    tiers = []
    for n, tier in enumerate(DEFAULT_TIERS, start=1):
        tiers.append(
            tier.with_budgets(
                memory_mb=_get_int(env, f"TIER{n}_MEMORY_MB", tier.memory_mb),
                ephemeral_storage_mb=_get_int(env, f"TIER{n}_STORAGE_MB", tier.ephemeral_storage_mb),
                timeout_s=_get_int(env, f"TIER{n}_TIMEOUT_S", tier.timeout_s),
            )
        )
    return tuple(tiers)
