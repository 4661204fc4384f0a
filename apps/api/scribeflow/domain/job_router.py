"""Pure routing decisions for newly funded jobs and pipeline outcomes.

Nothing in this module performs I/O; services apply the returned statuses
through the store so every move is validated by the state machine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from scribeflow.schemas.job import JobStatus
from scribeflow.schemas.pricing import ServiceTier

_INITIAL_ROUTE: dict[ServiceTier, JobStatus] = {
    ServiceTier.AI: JobStatus.PROCESSING,
    ServiceTier.HYBRID: JobStatus.PROCESSING,
    ServiceTier.HUMAN: JobStatus.ASSIGNED,
}

_AFTER_PIPELINE: dict[ServiceTier, JobStatus] = {
    ServiceTier.AI: JobStatus.COMPLETED,
    ServiceTier.HYBRID: JobStatus.HUMAN_REVIEW,
}

# States in which the job waits for (or holds) a human assignment.
HUMAN_WORK_STATES: dict[ServiceTier, JobStatus] = {
    ServiceTier.HYBRID: JobStatus.HUMAN_REVIEW,
    ServiceTier.HUMAN: JobStatus.PENDING,
}


def initial_route(tier: ServiceTier) -> JobStatus:
    """First status after PENDING; ASSIGNED is only reachable with a worker."""
    return _INITIAL_ROUTE[tier]


def requires_human(tier: ServiceTier) -> bool:
    return tier is not ServiceTier.AI


def uses_pipeline(tier: ServiceTier) -> bool:
    return tier in _AFTER_PIPELINE


def next_status_after_pipeline(tier: ServiceTier) -> JobStatus:
    try:
        return _AFTER_PIPELINE[tier]
    except KeyError:
        raise ValueError(f"tier {tier.value} does not use the automated pipeline") from None


def next_status_after_review(tier: ServiceTier) -> JobStatus:
    if not requires_human(tier):
        raise ValueError(f"tier {tier.value} has no human stage")
    return JobStatus.COMPLETED


def status_on_assignment(tier: ServiceTier) -> JobStatus | None:
    """Status a job moves to when an assignment is created, or None to stay put."""
    if tier is ServiceTier.HUMAN:
        return JobStatus.ASSIGNED
    return None


@dataclass(frozen=True, slots=True)
class RetryDecision:
    retry: bool
    attempts: int
    next_attempt_at: datetime | None = None


def pipeline_failure_decision(
    *,
    attempts: int,
    max_retries: int,
    backoff_base_seconds: float,
    now: datetime,
) -> RetryDecision:
    """Decide what follows a transient pipeline failure.

    ``attempts`` counts failed attempts including the one just observed, so a
    job is retried ``max_retries`` times before it fails for good. The
    delay doubles with each failure: base, 2*base, 4*base...
    """
    if attempts > max_retries:
        return RetryDecision(retry=False, attempts=attempts)
    delay = backoff_base_seconds * (2 ** (attempts - 1))
    return RetryDecision(retry=True, attempts=attempts, next_attempt_at=now + timedelta(seconds=delay))
