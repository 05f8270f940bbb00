"""
Stale-call reconciliation.

The sweep force-closes calls that started between STALE_CALL_WINDOW_MINUTES
and STALE_CALL_AFTER_MINUTES ago and never received an end event. Calls older
than the window are left alone; count_overdue() reports them for alerting.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from calltracker.duration import elapsed_seconds, utcnow
from calltracker.errors import TransientStoreError, UnavailableError
from calltracker.retry import with_retry
from calltracker.storage import CallStore

logger = logging.getLogger(__name__)


class StaleCallReconciler:
    """
    Closes calls left open without an end event.

    Args:
        store: Storage collaborator for the calls table
        clock: Source of the current time
        stale_after: Age at which an open call counts as stale
        window: Oldest start time the sweep still picks up
        max_attempts: Attempts for the candidate read
        base_delay: Backoff base for the candidate read, in seconds
    """

    def __init__(
        self,
        store: CallStore,
        clock: Callable[[], datetime] = utcnow,
        stale_after: timedelta = timedelta(hours=1),
        window: timedelta = timedelta(hours=2),
        max_attempts: int = 3,
        base_delay: float = 1.0,
    ):
        if window < stale_after:
            raise ValueError("window must not be shorter than stale_after")
        self.store = store
        self.clock = clock
        self.stale_after = stale_after
        self.window = window
        self._retry = with_retry(max_attempts=max_attempts, base_delay=base_delay)

    def run(self) -> int:
        """
        Run one reconciliation sweep.

        Returns:
            Number of calls closed. 0 if the candidate read failed; the next
            scheduled sweep picks them up again.
        """
        now = self.clock()
        lower = now - self.window
        upper = now - self.stale_after
        logger.info(f"Checking for calls started between {lower.isoformat()} and {upper.isoformat()}")

        fetch = self._retry(self.store.find_open_calls_started_between)
        try:
            candidates = fetch(lower, upper)
        except TransientStoreError as e:
            logger.error(f"Error fetching stale calls: {e}")
            return 0

        logger.info(f"Found {len(candidates)} stale calls")

        # Snapshot ids and start times; a failed update rolls back and
        # expires the loaded rows
        pending = [(call.id, call.started) for call in candidates]

        updated = 0
        for call_id, started in pending:
            # Past the ingestion ceiling by construction; no maximum applied
            duration = max(elapsed_seconds(started, now), 0)
            try:
                closed = self.store.end_call(call_id, now, duration)
            except TransientStoreError as e:
                logger.error(f"Error updating stale call {call_id}: {e}")
                continue

            if not closed:
                logger.warning(f"Stale call {call_id} was closed by another writer, skipping")
                continue

            logger.info(f"Closed stale call {call_id} after {duration}s")
            updated += 1

        logger.info(f"Successfully updated {updated} calls")
        return updated

    def count_overdue(self) -> int:
        """
        Count calls still open past the sweep window. Read only.

        Raises:
            UnavailableError: the store could not be read after retries
        """
        cutoff = self.clock() - self.window
        count = self._retry(self.store.count_open_calls_started_before)
        try:
            overdue = count(cutoff)
        except TransientStoreError as e:
            logger.error(f"Error fetching overdue calls: {e}")
            raise UnavailableError("Internal Server Error", details=e.error) from e

        if overdue:
            logger.warning(f"{overdue} calls open for more than {self.window}")
        return overdue
