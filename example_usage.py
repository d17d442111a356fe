"""Example usage of the index_queue library.

Runs entirely in memory: a MemoryEntryStore and a toy search backend stand
in for PostgreSQL and Elasticsearch.
"""

import asyncio
import logging

from index_queue import (
    BackendUnreachableError,
    BatchDispatcher,
    LoaderRegistry,
    MemoryEntryStore,
    QueueEngine,
    SessionProxy,
)


class ToySearchBackend:
    """Keeps documents in a dict; can be switched off to simulate an outage."""

    def __init__(self):
        self.documents = {}
        self.online = True

    async def bulk_index(self, documents):
        if not self.online:
            raise BackendUnreachableError("search backend is offline")
        errors = {}
        for doc_id, document in documents.items():
            if not document.get("title"):
                errors[doc_id] = "title is required"
            else:
                self.documents[doc_id] = document
        return errors

    async def bulk_delete(self, ids):
        if not self.online:
            raise BackendUnreachableError("search backend is offline")
        for doc_id in ids:
            self.documents.pop(doc_id, None)
        return {}

    async def search(self, query):
        term = query.get("title", "")
        return [doc for doc in self.documents.values() if term in doc["title"]]

    async def delete_by_type(self, record_type):
        for doc_id in [d for d in self.documents if d.startswith(f"{record_type} ")]:
            del self.documents[doc_id]

    async def refresh(self):
        pass


class Post:
    def __init__(self, id, title):
        self.id = id
        self.title = title


POSTS = {1: Post(1, "Hello queue"), 2: Post(2, ""), 3: Post(3, "Batching")}

registry = LoaderRegistry()


@registry.loader("Post", id_type=int)
async def load_posts(ids):
    return {i: {"title": POSTS[i].title} for i in ids if i in POSTS}


async def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    backend = ToySearchBackend()
    engine = QueueEngine(MemoryEntryStore(), BatchDispatcher(backend, registry=registry))
    session = SessionProxy(engine, backend)

    # Example 1: saves are queued, nothing reaches the backend yet
    await session.index(*POSTS.values())
    print("Queued:", (await engine.stats()).total, "indexed:", len(backend.documents))

    # Example 2: urgent changes jump the queue
    with engine.set_priority(10):
        await session.remove(POSTS[3])

    # Example 3: an outage leaves the batch untouched
    backend.online = False
    try:
        await engine.process()
    except BackendUnreachableError as e:
        print("Outage, skipped", e.result.skipped, "entries")

    # Example 4: a normal batch; post 2 has no title and is retried later
    backend.online = True
    result = await engine.process()
    print("Processed:", result)
    for entry in await engine.errors():
        print("Failed:", entry, entry.last_error["message"])

    print("Search:", await session.search({"title": "Hello"}))


if __name__ == "__main__":
    asyncio.run(main())
