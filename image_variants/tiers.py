"""Size-tiered resource profiles.

Each tier is a cost/latency trade-off point, not a correctness boundary:
a job routed to the wrong tier renders the same variants, only slower or
more expensively.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

from .errors import ConfigError, SizeOutOfRange

MB = 1024 * 1024


@dataclass(frozen=True)
class Tier:
    name: str
    min_bytes: int
    max_bytes: int
    memory_mb: int
    ephemeral_storage_mb: int
    timeout_s: int
    # only the last tier includes its upper bound
    max_inclusive: bool = False

    def contains(self, size_bytes: int) -> bool:
        if size_bytes < self.min_bytes:
            return False
        if self.max_inclusive:
            return size_bytes <= self.max_bytes
        return size_bytes < self.max_bytes

    def with_budgets(self, memory_mb: int, ephemeral_storage_mb: int, timeout_s: int) -> "Tier":
        return dataclasses.replace(
            self,
            memory_mb=memory_mb,
            ephemeral_storage_mb=ephemeral_storage_mb,
            timeout_s=timeout_s,
        )

    @property
    def memory_bytes(self) -> int:
        return self.memory_mb * MB


DEFAULT_TIERS = (
    Tier("tier1", 0, 5 * MB, memory_mb=1024, ephemeral_storage_mb=512, timeout_s=60),
    Tier("tier2", 5 * MB, 15 * MB, memory_mb=2048, ephemeral_storage_mb=1024, timeout_s=120),
    Tier("tier3", 15 * MB, 25 * MB, memory_mb=3008, ephemeral_storage_mb=2048, timeout_s=300,
         max_inclusive=True),
)


def validate_tiers(tiers) -> None:
    """Check that tiers partition [0, last.max_bytes] contiguously and ascending."""
    if not tiers:
        raise ConfigError("at least one tier is required")
    if tiers[0].min_bytes != 0:
        raise ConfigError(f"first tier must start at 0, starts at {tiers[0].min_bytes}")

    names = set()
    for i, tier in enumerate(tiers):
        if tier.name in names:
            raise ConfigError(f"duplicate tier name: {tier.name}")
        names.add(tier.name)
        if tier.min_bytes >= tier.max_bytes:
            raise ConfigError(f"{tier.name}: min_bytes must be below max_bytes")
        if min(tier.memory_mb, tier.ephemeral_storage_mb, tier.timeout_s) <= 0:
            raise ConfigError(f"{tier.name}: budgets must be positive")
        last = i == len(tiers) - 1
        if tier.max_inclusive != last:
            raise ConfigError(f"{tier.name}: only the last tier may include its upper bound")
        if not last and tiers[i + 1].min_bytes != tier.max_bytes:
            raise ConfigError(
                f"{tier.name} and {tiers[i + 1].name} are not contiguous "
                f"({tier.max_bytes} != {tiers[i + 1].min_bytes})"
            )


def select_tier(size_bytes: int, tiers=DEFAULT_TIERS) -> Tier:
    for tier in tiers:
        if tier.contains(size_bytes):
            return tier
    raise SizeOutOfRange(
        f"size {size_bytes} bytes is outside the supported range "
        f"[0, {tiers[-1].max_bytes}]"
    )


def filter_policy(tier: Tier, attribute: str = "size") -> dict:
    """SNS numeric filter policy that routes a message to ``tier``'s worker pool."""
    condition = []
    if tier.min_bytes > 0:
        condition += [">=", tier.min_bytes]
    condition += ["<=" if tier.max_inclusive else "<", tier.max_bytes]
    return {attribute: [{"numeric": condition}]}
