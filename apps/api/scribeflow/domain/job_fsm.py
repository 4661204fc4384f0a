"""Job lifecycle transition rules, per service tier."""

from scribeflow.errors import ApiError
from scribeflow.schemas.job import JobStatus
from scribeflow.schemas.pricing import ServiceTier

TERMINAL_STATES: frozenset[JobStatus] = frozenset(
    {
        JobStatus.COMPLETED,
        JobStatus.ERROR,
        JobStatus.CANCELLED,
    }
)

_ALLOWED_TRANSITIONS: dict[ServiceTier, dict[JobStatus, set[JobStatus]]] = {
    ServiceTier.AI: {
        JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.CANCELLED},
        # PROCESSING -> PROCESSING is the bounded pipeline retry loop.
        JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.ERROR, JobStatus.CANCELLED},
    },
    ServiceTier.HYBRID: {
        JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.CANCELLED},
        JobStatus.PROCESSING: {
            JobStatus.PROCESSING,
            JobStatus.HUMAN_REVIEW,
            JobStatus.ERROR,
            JobStatus.CANCELLED,
        },
        JobStatus.HUMAN_REVIEW: {JobStatus.COMPLETED, JobStatus.ERROR},
    },
    ServiceTier.HUMAN: {
        JobStatus.PENDING: {JobStatus.ASSIGNED, JobStatus.CANCELLED},
        JobStatus.ASSIGNED: {JobStatus.IN_PROGRESS},
        JobStatus.IN_PROGRESS: {JobStatus.COMPLETED, JobStatus.ERROR},
    },
}


def allowed_next_statuses(tier: ServiceTier, status: JobStatus) -> list[JobStatus]:
    """Return deterministically ordered allowed successors for a status."""
    return sorted(_ALLOWED_TRANSITIONS[tier].get(status, set()), key=lambda s: s.value)


def ensure_transition(tier: ServiceTier, old_status: JobStatus, new_status: JobStatus) -> None:
    """Validate transition according to the tier's lifecycle rules."""
    if old_status in TERMINAL_STATES:
        raise ApiError(
            status_code=409,
            code="FSM_TERMINAL_IMMUTABLE",
            message="Terminal state cannot be mutated",
            details={
                "tier": tier,
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": [],
            },
        )

    if new_status not in _ALLOWED_TRANSITIONS[tier].get(old_status, set()):
        raise ApiError(
            status_code=409,
            code="FSM_TRANSITION_INVALID",
            message="Invalid status transition",
            details={
                "tier": tier,
                "current_status": old_status,
                "attempted_status": new_status,
                "allowed_next_statuses": allowed_next_statuses(tier, old_status),
            },
        )
