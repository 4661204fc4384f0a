"""Store-backed worker selection."""

import logging

from scribeflow.core.logging_safety import WORKER_PREFIX, safe_log_identifier
from scribeflow.domain.workload import select_least_loaded
from scribeflow.repositories.memory import InMemoryStore
from scribeflow.schemas.pricing import ServiceTier

logger = logging.getLogger(__name__)


class WorkloadBalancer:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def select_worker(self, tier: ServiceTier) -> str | None:
        """Least-loaded active worker for a human stage of ``tier``, or None when nobody is active.

        The read is not locked against concurrent assignment creation.
        """
        worker_id = select_least_loaded(self._store.list_workers(), self._store.list_open_assignments())
        if worker_id is None:
            logger.info("workload.no_worker_available tier=%s", tier.value)
        else:
            logger.debug(
                "workload.worker_selected tier=%s worker_id=%s",
                tier.value,
                safe_log_identifier(worker_id, prefix=WORKER_PREFIX),
            )
        return worker_id
