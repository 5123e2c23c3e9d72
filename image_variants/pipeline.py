"""End-to-end processing of one job.

    RECEIVED -> VALIDATED -> METADATA_PROBED -> PLANNED -> RENDERING -> COMPLETED
    RECEIVED | VALIDATED | METADATA_PROBED -> FAILED

Errors before planning abort the job and are re-raised so the messaging
layer redelivers it. Once rendering starts the job always completes,
possibly degraded.
"""

from __future__ import annotations

import enum
import logging
import time

from .errors import ImageVariantError, JobTimeout
from .jobs import decode_job
from .keys import unique_specs
from .planner import plan_variants
from .probe import probe
from .renderer import VariantRenderer
from .results import aggregate
from .tiers import select_tier

logger = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    METADATA_PROBED = "metadata_probed"
    PLANNED = "planned"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"


def process_job(payload, store, config, routing_size=None, deadline=None,
                clock=time.monotonic, now=None):
    """Run one notification through decode, probe, plan, render and aggregate.

    ``deadline`` is an absolute ``clock()`` value; variants that have not
    finished by then are recorded as failed and never uploaded.
    """
    state = JobState.RECEIVED
    key = None
    try:
        job = decode_job(payload, routing_size=routing_size)
        key = job.key
        tier = select_tier(job.size_bytes, config.tiers)
        if config.worker_tier and tier != config.tier_named(config.worker_tier):
            logger.warning("%s (%d bytes) belongs to %s but ran on %s",
                           job.key, job.size_bytes, tier.name, config.worker_tier)
        state = _advance(key, state, JobState.VALIDATED)
        logger.info("Processing image: %s (%d bytes, %s)", job.location, job.size_bytes, tier.name)

        source = probe(store, job.location)
        state = _advance(key, state, JobState.METADATA_PROBED)
    except ImageVariantError as e:
        _advance(key, state, JobState.FAILED)
        logger.error("Job %s failed: %s", key or "(undecoded)", e.to_dict())
        raise

    with source:
        specs = unique_specs(
            plan_variants(source.metadata, config.target_widths, config.output_formats),
            job.key,
        )
        state = _advance(key, state, JobState.PLANNED)

        renderer = VariantRenderer(job, source, store, config, tier=tier,
                                   deadline=deadline, clock=clock, now=now)
        if renderer.timed_out:
            _advance(key, state, JobState.FAILED)
            raise JobTimeout(f"deadline passed before rendering {job.key}")

        state = _advance(key, state, JobState.RENDERING)
        results = renderer.render_all(specs)

    result = aggregate(job, specs, results, tier=tier, timed_out=renderer.cancelled)
    _advance(key, state, JobState.COMPLETED)
    logger.info("Processing complete: %s %s, %d/%d variants", job.key, result.status,
                sum(v.succeeded for v in result.variants), len(result.variants))
    return result


def _advance(key, old: JobState, new: JobState) -> JobState:
    logger.debug("%s: %s -> %s", key, old.value, new.value)
    return new
