"""Least-outstanding-work selection over the human worker pool."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from scribeflow.domain.pricing import ZERO
from scribeflow.domain.records import AssignmentRecord, HumanWorkerRecord
from scribeflow.schemas.assignment import WorkerStatus


def estimate_effort(quantity: Decimal, multiplier: Decimal) -> Decimal:
    """Human effort for a job, in the same unit as the media duration."""
    return quantity * multiplier


def derive_workloads(
    workers: Iterable[HumanWorkerRecord],
    assignments: Iterable[AssignmentRecord],
) -> dict[str, Decimal]:
    """Sum estimated effort of open assignments per worker; idle workers get zero."""
    workloads = {worker.id: ZERO for worker in workers}
    for assignment in assignments:
        if assignment.is_open and assignment.worker_id in workloads:
            workloads[assignment.worker_id] += assignment.estimated_units
    return workloads


def select_least_loaded(
    workers: Iterable[HumanWorkerRecord],
    assignments: Iterable[AssignmentRecord],
) -> str | None:
    """Return the active worker with the lowest derived workload.

    Ties go to the earliest registration. None means nobody is available.
    """
    candidates = [worker for worker in workers if worker.status is WorkerStatus.ACTIVE]
    if not candidates:
        return None
    workloads = derive_workloads(candidates, assignments)
    chosen = min(candidates, key=lambda worker: (workloads[worker.id], worker.registration_seq))
    return chosen.id
