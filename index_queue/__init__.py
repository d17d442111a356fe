"""Durable queue for pushing record changes into a search index."""

from index_queue.config import IndexQueueConfig
from index_queue.ddl import INDEX_QUEUE_TABLE_DDL
from index_queue.dispatcher import BatchDispatcher
from index_queue.engine import QueueEngine, current_priority, priority_scope
from index_queue.errors import (
    BackendUnreachableError,
    DocumentRejectedError,
    EntryNotFoundError,
    IndexQueueError,
    LoaderNotFoundError,
    SearchHttpError,
    StoreUnavailableError,
)
from index_queue.models import (
    DispatchOutcome,
    DispatchResult,
    Operation,
    ProcessOptions,
    ProcessResult,
    QueueEntry,
    QueueStats,
)
from index_queue.registry import LoaderRegistry, loader_registry
from index_queue.retry import RetryScheduler
from index_queue.search_client import HttpSearchClient, SearchClient
from index_queue.session import SessionProxy
from index_queue.store import EntryStore, MemoryEntryStore, PostgresEntryStore
from index_queue.worker import run_worker_loop

__version__ = "0.1.0"

__all__ = [
    "IndexQueueConfig",
    "INDEX_QUEUE_TABLE_DDL",
    "BatchDispatcher",
    "QueueEngine",
    "current_priority",
    "priority_scope",
    "BackendUnreachableError",
    "DocumentRejectedError",
    "EntryNotFoundError",
    "IndexQueueError",
    "LoaderNotFoundError",
    "SearchHttpError",
    "StoreUnavailableError",
    "DispatchOutcome",
    "DispatchResult",
    "Operation",
    "ProcessOptions",
    "ProcessResult",
    "QueueEntry",
    "QueueStats",
    "LoaderRegistry",
    "loader_registry",
    "RetryScheduler",
    "HttpSearchClient",
    "SearchClient",
    "SessionProxy",
    "EntryStore",
    "MemoryEntryStore",
    "PostgresEntryStore",
    "run_worker_loop",
]
