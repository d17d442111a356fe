"""Queue engine: enqueueing, claiming and processing index entries."""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import timedelta
from typing import Any, Iterator, List, Optional

from index_queue.dispatcher import BatchDispatcher
from index_queue.errors import BackendUnreachableError, EntryNotFoundError
from index_queue.models import (
    DEFAULT_PRIORITY,
    Operation,
    ProcessOptions,
    ProcessResult,
    QueueEntry,
    QueueStats,
    utc_now,
)
from index_queue.retry import RetryScheduler
from index_queue.store import EntryStore

_priority_override: ContextVar[Optional[int]] = ContextVar(
    "index_queue_priority_override", default=None
)


@contextmanager
def priority_scope(value: int) -> Iterator[int]:
    """
    Use ``value`` as the priority of entries queued inside the block.

    The override lives in a context variable, so it is private to the
    current asyncio task or thread. Nested scopes restore the outer value
    on exit, including when the block raises.
    """
    token = _priority_override.set(int(value))
    try:
        yield value
    finally:
        _priority_override.reset(token)


def current_priority() -> Optional[int]:
    """The active priority override, if any."""
    return _priority_override.get()


class QueueEngine:
    """High-level API for the index queue."""

    def __init__(
        self,
        store: EntryStore,
        dispatcher: BatchDispatcher,
        retry_scheduler: Optional[RetryScheduler] = None,
        claim_timeout: Optional[timedelta] = None,
        batch_size: int = 100,
        record_types: Optional[List[str]] = None,
        default_priority: int = DEFAULT_PRIORITY,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            store: Entry store shared by every worker
            dispatcher: Dispatcher submitting batches to the search backend
            retry_scheduler: Backoff policy for rejected entries
            claim_timeout: How long a claimed entry stays hidden from other
                workers; defaults to the retry interval
            batch_size: Default maximum entries per ``process`` call
            record_types: Default record type filter for ``process``
            default_priority: Priority of entries queued without an override
            logger: Logger instance
        """
        self.store = store
        self.dispatcher = dispatcher
        self.retry = retry_scheduler or RetryScheduler()
        self.claim_timeout = claim_timeout or self.retry.retry_interval
        self.batch_size = batch_size
        self.record_types = record_types
        self.default_priority = default_priority
        self.logger = logger or logging.getLogger(__name__)

    def set_priority(self, value: int):
        """Context manager overriding the priority of entries queued inside it."""
        return priority_scope(value)

    def resolve_priority(self, priority: Optional[int] = None) -> int:
        if priority is not None:
            return priority
        override = current_priority()
        if override is not None:
            return override
        return self.default_priority

    async def enqueue(
        self,
        record_type: str,
        record_id: Any,
        operation: Operation,
        priority: Optional[int] = None,
    ) -> QueueEntry:
        """
        Queue an operation for a record.

        If the record already has an entry, the new operation is coalesced
        into it: the latest operation wins, the entry becomes due now and
        keeps the higher of the two priorities.
        """
        entry = await self.store.upsert(
            record_type=record_type,
            record_id=str(record_id),
            operation=Operation(operation),
            priority=self.resolve_priority(priority),
            run_at=utc_now(),
        )
        self.logger.debug(
            f"Queued {entry.operation.value} for {record_type} {record_id} "
            f"(priority={entry.priority})"
        )
        return entry

    async def index(
        self, record_type: str, record_id: Any, priority: Optional[int] = None
    ) -> QueueEntry:
        return await self.enqueue(record_type, record_id, Operation.INDEX, priority)

    async def remove(
        self, record_type: str, record_id: Any, priority: Optional[int] = None
    ) -> QueueEntry:
        return await self.enqueue(record_type, record_id, Operation.DELETE, priority)

    async def process(
        self, options: Optional[ProcessOptions] = None, **overrides
    ) -> ProcessResult:
        """
        Claim one batch of due entries and submit it.

        Succeeded entries are deleted; rejected entries are rescheduled with
        linear backoff and keep their error. Neither escapes this call.

        Raises:
            BackendUnreachableError: The search service is down. The batch
                has been released with attempts and run_at unchanged; the
                exception's ``result`` counts the batch as skipped.
            StoreUnavailableError: The entry store cannot be reached.
        """
        if options is None:
            overrides.setdefault("batch_size", self.batch_size)
            overrides.setdefault("record_types", self.record_types)
            options = ProcessOptions(**overrides)
        elif overrides:
            options = options.model_copy(update=overrides)

        now = utc_now()
        entries = await self.store.claim(
            limit=options.batch_size,
            now=now,
            claim_until=now + self.claim_timeout,
            record_types=options.record_types,
            min_priority=options.min_priority,
        )

        result = ProcessResult()
        if not entries:
            return result

        self.logger.info(f"Claimed {len(entries)} entries for indexing")

        dispatch = await self.dispatcher.dispatch(entries)

        if dispatch.is_outage:
            await self.store.release(self.retry.on_outage(entries))
            result.skipped = len(entries)
            result.outage = True
            self.logger.warning(
                f"Search backend unreachable, released {len(entries)} entries: "
                f"{dispatch.message}"
            )
            raise BackendUnreachableError(dispatch.message, result=result)

        for entry in entries:
            error = dispatch.rejected.get(entry.id)
            if error is None:
                deleted = await self.store.delete(entry.id, claim_token=entry.claim_token)
                if not deleted:
                    self.logger.debug(
                        f"{entry.record_type} {entry.record_id} changed while in "
                        "flight, keeping its entry"
                    )
                result.succeeded += 1
                continue

            run_at = self.retry.on_failure(entry, now=utc_now())
            recorded = await self.store.record_failure(
                entry.id, error, run_at, claim_token=entry.claim_token
            )
            if not recorded:
                self.logger.debug(
                    f"{entry.record_type} {entry.record_id} changed while in "
                    "flight, dropping its stale failure"
                )
                continue
            result.failed += 1
            self.logger.warning(
                f"Failed to {entry.operation.value} {entry.record_type} "
                f"{entry.record_id} (attempt {entry.attempts + 1}), retrying at "
                f"{run_at.isoformat()}: {error.get('message')}"
            )

        self.logger.info(
            f"Processed batch: {result.succeeded} succeeded, {result.failed} failed"
        )
        return result

    async def get_entry(self, record_type: str, record_id: Any) -> QueueEntry:
        """Get the queued entry for a record."""
        entry = await self.store.get_entry(record_type, str(record_id))
        if entry is None:
            raise EntryNotFoundError(f"{record_type} {record_id}")
        return entry

    async def stats(self, record_types: Optional[List[str]] = None) -> QueueStats:
        """Total, ready and failed entry counts."""
        return await self.store.stats(utc_now(), record_types or self.record_types)

    async def errors(self, limit: int = 50, offset: int = 0) -> List[QueueEntry]:
        """Entries that have failed at least once."""
        return await self.store.list_errors(limit=limit, offset=offset)

    async def reset(self) -> int:
        """Make every failed entry due now with its attempt counter cleared."""
        count = await self.store.reset_errors(utc_now())
        if count > 0:
            self.logger.info(f"Reset {count} failed entries")
        return count

    async def clear(self, record_types: Optional[List[str]] = None) -> int:
        """Drop queued entries without dispatching them."""
        count = await self.store.clear(record_types)
        self.logger.info(f"Cleared {count} entries from the queue")
        return count
