"""CLI entrypoint and programmatic interface for the index queue worker."""

import argparse
import asyncio
import importlib
import logging
import os
import signal
import sys
from typing import List, Optional

import asyncpg

from index_queue.config import IndexQueueConfig
from index_queue.dispatcher import BatchDispatcher
from index_queue.engine import QueueEngine
from index_queue.models import ProcessOptions
from index_queue.registry import LoaderRegistry, loader_registry
from index_queue.retry import RetryScheduler
from index_queue.search_client import HttpSearchClient
from index_queue.store import PostgresEntryStore
from index_queue.worker import run_worker_loop


def setup_logging():
    """Setup logging configuration."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def create_db_pool(config: IndexQueueConfig):
    """Create database connection pool."""
    return await asyncpg.create_pool(config.db_dsn, min_size=1, max_size=5)


def load_loaders(loaders_module: Optional[str] = None, logger: Optional[logging.Logger] = None):
    """Import the module that registers document loaders."""
    logger = logger or logging.getLogger(__name__)
    loaders_module = loaders_module or os.getenv("INDEX_QUEUE_LOADERS_MODULE")
    if not loaders_module:
        logger.warning(
            "INDEX_QUEUE_LOADERS_MODULE not set, index entries will fail without loaders"
        )
        return
    try:
        importlib.import_module(loaders_module)
        logger.info(f"Loaded document loaders from {loaders_module}")
    except ImportError as e:
        logger.warning(f"Failed to import loaders module {loaders_module}: {e}")


def build_engine(
    config: IndexQueueConfig,
    db_pool,
    registry: Optional[LoaderRegistry] = None,
    search_client=None,
    logger: Optional[logging.Logger] = None,
) -> QueueEngine:
    """Wire store, search client, dispatcher and retry policy from config."""
    if search_client is None:
        search_client = HttpSearchClient(
            config.search_url,
            index=config.search_index,
            api_key=config.search_api_key,
            timeout=config.search_timeout_seconds,
        )
    dispatcher = BatchDispatcher(search_client, registry=registry, logger=logger)
    retry_scheduler = RetryScheduler(
        retry_interval=config.retry_interval,
        max_retry_interval=config.max_retry_interval,
    )
    return QueueEngine(
        store=PostgresEntryStore(db_pool),
        dispatcher=dispatcher,
        retry_scheduler=retry_scheduler,
        batch_size=config.batch_size,
        record_types=config.record_types,
        default_priority=config.default_priority,
        logger=logger,
    )


async def run_worker(
    config: Optional[IndexQueueConfig] = None,
    db_pool=None,
    search_client=None,
    registry: Optional[LoaderRegistry] = None,
    logger: Optional[logging.Logger] = None,
    shutdown_event: Optional[asyncio.Event] = None,
    record_types: Optional[List[str]] = None,
    batch_size: Optional[int] = None,
    min_priority: Optional[int] = None,
    loaders_module: Optional[str] = None,
):
    """
    Run the worker programmatically.

    Args:
        config: IndexQueueConfig instance. If None, will load from environment.
        db_pool: Database connection pool. If None, will create from config.
        search_client: Search client. If None, an HttpSearchClient is built from config.
        registry: LoaderRegistry instance. If None, will use global loader_registry.
        logger: Logger instance. If None, will create default logger.
        shutdown_event: Optional asyncio.Event for graceful shutdown.
        record_types: Only process these record types.
        batch_size: Max entries per batch. Defaults to the configured batch size.
        min_priority: Only process entries at or above this priority.
        loaders_module: Module path registering loaders. If None, uses INDEX_QUEUE_LOADERS_MODULE.

    Example:
        ```python
        from index_queue.worker_main import run_worker
        import asyncio

        asyncio.run(run_worker(loaders_module="myapp.search.loaders"))
        ```
    """
    if config is None:
        config = IndexQueueConfig.from_env()

    if logger is None:
        logger = logging.getLogger(__name__)

    if registry is None:
        registry = loader_registry

    load_loaders(loaders_module, logger)

    db_pool_provided = db_pool is not None
    if db_pool is None:
        db_pool = await create_db_pool(config)

    engine = build_engine(config, db_pool, registry, search_client, logger)
    options = ProcessOptions(
        batch_size=batch_size or config.batch_size,
        record_types=record_types or config.record_types,
        min_priority=min_priority,
    )

    try:
        return await run_worker_loop(
            engine=engine,
            logger=logger,
            options=options,
            shutdown_event=shutdown_event,
            idle_delay_seconds=config.idle_delay_seconds,
            outage_delay_seconds=config.outage_delay_seconds,
        )
    finally:
        if not db_pool_provided and db_pool:
            await db_pool.close()


def main():
    """Main entrypoint for worker."""
    setup_logging()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(description="Index Queue Worker")
    parser.add_argument(
        "--record-types",
        default=None,
        help="Comma separated record types to process (default: all)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Max entries per batch (default: INDEX_QUEUE_BATCH_SIZE or 100)",
    )
    parser.add_argument(
        "--min-priority",
        type=int,
        default=None,
        help="Only process entries at or above this priority",
    )
    parser.add_argument(
        "--loaders-module",
        default=None,
        help="Module that registers document loaders",
    )

    args = parser.parse_args()

    try:
        config = IndexQueueConfig.from_env()
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    record_types = None
    if args.record_types:
        record_types = [name.strip() for name in args.record_types.split(",") if name.strip()]

    shutdown_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down after the current batch...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    async def run():
        """Async main function."""
        try:
            await run_worker(
                config=config,
                logger=logger,
                shutdown_event=shutdown_event,
                record_types=record_types,
                batch_size=args.batch_size,
                min_priority=args.min_priority,
                loaders_module=args.loaders_module,
            )
        except Exception as e:
            logger.error(f"Fatal error in worker: {e}", exc_info=True)
            sys.exit(1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
