"""FastAPI example: queue search index writes from request handlers."""

import os
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI

from index_queue import (
    INDEX_QUEUE_TABLE_DDL,
    BatchDispatcher,
    HttpSearchClient,
    IndexQueueConfig,
    PostgresEntryStore,
    QueueEngine,
    SessionProxy,
)
from index_queue.fastapi_router import create_queue_router

import examples.loaders  # noqa: F401  registers loaders

state = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = IndexQueueConfig.from_env()
    db_pool = await asyncpg.create_pool(config.db_dsn)

    # Apply schema (in production, use migrations)
    async with db_pool.acquire() as conn:
        await conn.execute(INDEX_QUEUE_TABLE_DDL)

    search_client = HttpSearchClient(config.search_url, index=config.search_index)
    engine = QueueEngine(PostgresEntryStore(db_pool), BatchDispatcher(search_client))
    state["engine"] = engine
    state["session"] = SessionProxy(engine, search_client)

    yield

    await db_pool.close()


app = FastAPI(lifespan=lifespan)
app.include_router(
    create_queue_router(
        lambda: state["engine"],
        auth_token=os.getenv("INDEX_QUEUE_ADMIN_AUTH_TOKEN"),
    ),
    prefix="/admin",
)


@app.post("/posts/{post_id}/publish")
async def publish_post(post_id: int):
    """Save a post; the index update is queued, not sent."""
    examples.loaders.POSTS.setdefault(post_id, {"title": f"Post {post_id}", "body": ""})
    entries = await state["session"].index_by_id("Post", post_id)
    return {"queued": entries[0].to_dict()}


@app.delete("/posts/{post_id}")
async def delete_post(post_id: int):
    """Delete a post urgently: removals jump the queue."""
    examples.loaders.POSTS.pop(post_id, None)
    with state["engine"].set_priority(10):
        entries = await state["session"].remove_by_id("Post", post_id)
    return {"queued": entries[0].to_dict()}


@app.get("/search")
async def search(q: str):
    """Reads go straight to the search backend."""
    return await state["session"].search({"query": {"match": {"title": q}}})
