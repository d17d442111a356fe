"""Session proxy that queues index writes instead of sending them."""

from typing import Any, Dict, List, Optional

from index_queue.engine import QueueEngine
from index_queue.models import QueueEntry
from index_queue.search_client import SearchClient


def record_type_of(record: Any) -> str:
    """Record type used for queueing: ``__index_type__`` or the class name."""
    return getattr(record, "__index_type__", None) or type(record).__name__


class SessionProxy:
    """
    Application-facing search session.

    ``index`` and ``remove`` become queue entries; reads and whole-type
    operations go straight to the search client.

    Example:
        ```python
        session = SessionProxy(engine, search_client)
        await session.index(post)
        with engine.set_priority(10):
            await session.remove(comment)
        hits = await session.search({"query": {"match": {"title": "hello"}}})
        ```
    """

    def __init__(self, engine: QueueEngine, search_client: SearchClient):
        self.engine = engine
        self.search_client = search_client

    async def index(self, *records: Any, priority: Optional[int] = None) -> List[QueueEntry]:
        """Queue records for indexing."""
        return [
            await self.engine.index(record_type_of(record), record.id, priority=priority)
            for record in records
        ]

    async def remove(self, *records: Any, priority: Optional[int] = None) -> List[QueueEntry]:
        """Queue records for removal from the index."""
        return [
            await self.engine.remove(record_type_of(record), record.id, priority=priority)
            for record in records
        ]

    async def index_by_id(
        self, record_type: str, *record_ids: Any, priority: Optional[int] = None
    ) -> List[QueueEntry]:
        return [
            await self.engine.index(record_type, record_id, priority=priority)
            for record_id in record_ids
        ]

    async def remove_by_id(
        self, record_type: str, *record_ids: Any, priority: Optional[int] = None
    ) -> List[QueueEntry]:
        return [
            await self.engine.remove(record_type, record_id, priority=priority)
            for record_id in record_ids
        ]

    async def search(self, query: Dict[str, Any]) -> Dict[str, Any]:
        return await self.search_client.search(query)

    async def remove_all(self, record_type: str) -> None:
        """Remove every document of a type now and drop its queued entries."""
        await self.search_client.delete_by_type(record_type)
        await self.engine.clear([record_type])

    async def commit(self) -> None:
        await self.search_client.refresh()
