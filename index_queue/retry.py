"""Retry scheduling for failed queue entries."""

import traceback
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from index_queue.models import QueueEntry, utc_now

DEFAULT_RETRY_INTERVAL = timedelta(seconds=60)


def error_details(error: BaseException, message: Optional[str] = None) -> Dict[str, Any]:
    """Build the structured ``last_error`` record for an exception."""
    trace = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )
    return {
        "message": message or str(error),
        "type": type(error).__name__,
        "trace": trace,
        "timestamp": utc_now().isoformat(),
    }


class RetryScheduler:
    """
    Linear backoff for entries that failed at the document level.

    The n-th consecutive failure makes an entry due again after
    ``retry_interval * n``. With ``max_retry_interval`` set, the delay stops
    growing at that value; attempts are never capped.
    """

    def __init__(
        self,
        retry_interval: timedelta = DEFAULT_RETRY_INTERVAL,
        max_retry_interval: Optional[timedelta] = None,
    ):
        if retry_interval <= timedelta(0):
            raise ValueError("retry_interval must be positive")
        if max_retry_interval is not None and max_retry_interval < retry_interval:
            raise ValueError("max_retry_interval must not be shorter than retry_interval")
        self.retry_interval = retry_interval
        self.max_retry_interval = max_retry_interval

    def delay_for(self, attempts: int) -> timedelta:
        """Backoff delay after ``attempts`` failures (1-indexed)."""
        delay = self.retry_interval * max(attempts, 1)
        if self.max_retry_interval is not None:
            delay = min(delay, self.max_retry_interval)
        return delay

    def next_run_at(self, attempts: int, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()) + self.delay_for(attempts)

    def on_failure(self, entry: QueueEntry, now: Optional[datetime] = None) -> datetime:
        """
        Compute the new ``run_at`` for an entry that just failed.

        ``entry.attempts`` is the count before this failure; the store
        increments the persisted counter when the failure is recorded.
        """
        return self.next_run_at(entry.attempts + 1, now)

    def on_outage(self, entries: List[QueueEntry]) -> List[QueueEntry]:
        """
        Entries to hand back after a whole-batch outage.

        Attempts and run_at stay as they were before the claim; an outage
        says nothing about the documents themselves.
        """
        return list(entries)
