"""
Summary statistics over the calls ledger, computed fresh on every request.
"""

import logging

from calltracker.errors import MetricsUnavailable, TransientStoreError
from calltracker.models import CallStatus
from calltracker.retry import with_retry
from calltracker.schemas import MetricsSnapshot
from calltracker.storage import CallStore

logger = logging.getLogger(__name__)


class MetricsAggregator:
    """
    Builds a MetricsSnapshot from the calls ledger.

    All four reads belong to one attempt; if any of them fails the attempt
    is retried as a whole. Partial snapshots are never returned.
    """

    def __init__(self, store: CallStore, max_attempts: int = 3, base_delay: float = 1.0):
        self.store = store
        self._compute = with_retry(max_attempts=max_attempts, base_delay=base_delay)(self._snapshot)

    def compute(self) -> MetricsSnapshot:
        """
        Raises:
            MetricsUnavailable: the store could not be read after retries
        """
        logger.info("Computing call metrics")
        try:
            snapshot = self._compute()
        except TransientStoreError as e:
            logger.error(f"Error fetching metrics: {e}")
            raise MetricsUnavailable(details=e.error) from e

        logger.info(
            f"Metrics computed: total={snapshot.total_calls}, failed={snapshot.failed_calls}, "
            f"pending={snapshot.pending_calls}"
        )
        return snapshot

    def _snapshot(self) -> MetricsSnapshot:
        total = self.store.count_calls()
        failed = self.store.count_calls(CallStatus.FAILED)
        pending = self.store.count_calls(CallStatus.STARTED)
        durations = self.store.list_durations()
        logger.debug(f"Fetched {len(durations)} durations")

        return MetricsSnapshot(
            total_calls=total,
            failed_calls=failed,
            pending_calls=pending,
            error_rate=(failed / total) * 100 if total > 0 else 0,
            average_duration=sum(durations) / len(durations) if durations else 0,
            max_duration=max(durations) if durations else 0,
            min_duration=min(durations) if durations else 0,
        )
