"""Integration tests for the PostgreSQL entry store using testcontainers."""

import asyncio
from datetime import timedelta

import pytest

asyncpg = pytest.importorskip("asyncpg")
pytest.importorskip("testcontainers")

import pytest_asyncio  # noqa: E402
from testcontainers.postgres import PostgresContainer  # noqa: E402

from index_queue.ddl import INDEX_QUEUE_TABLE_DDL  # noqa: E402
from index_queue.dispatcher import BatchDispatcher  # noqa: E402
from index_queue.engine import QueueEngine  # noqa: E402
from index_queue.errors import BackendUnreachableError  # noqa: E402
from index_queue.models import Operation, utc_now  # noqa: E402
from index_queue.store import PostgresEntryStore  # noqa: E402


@pytest.fixture(scope="module")
def postgres_container():
    """Create a PostgreSQL test container."""
    try:
        with PostgresContainer("postgres:15") as postgres:
            yield postgres
    except Exception as e:
        pytest.skip(f"Docker not available: {e}")


@pytest_asyncio.fixture
async def db_pool(postgres_container):
    """Create a database connection pool with a clean queue table."""
    dsn = postgres_container.get_connection_url().replace("postgresql+psycopg2", "postgresql")
    pool = await asyncpg.create_pool(dsn, min_size=1, max_size=5)

    async with pool.acquire() as conn:
        await conn.execute(INDEX_QUEUE_TABLE_DDL)
        await conn.execute("TRUNCATE index_queue_entries")

    yield pool

    await pool.close()


@pytest.fixture
def pg_store(db_pool):
    return PostgresEntryStore(db_pool)


@pytest.mark.asyncio
async def test_upsert_coalesces(pg_store):
    """Test that the unique key coalesces mutations of one record."""
    now = utc_now()
    first = await pg_store.upsert("Post", "1", Operation.INDEX, 0, now)
    second = await pg_store.upsert("Post", "1", Operation.DELETE, 2, now)
    third = await pg_store.upsert("Post", "1", Operation.INDEX, 1, now)

    assert first.id == second.id == third.id
    assert third.operation == Operation.INDEX
    assert third.priority == 2
    assert (await pg_store.stats(now)).total == 1


@pytest.mark.asyncio
async def test_claim_order_and_release(pg_store):
    """Test claim ordering, hiding and release back to the original run_at."""
    now = utc_now()
    await pg_store.upsert("Post", "a", Operation.INDEX, 0, now)
    await pg_store.upsert("Post", "b", Operation.INDEX, 1, now)
    await pg_store.upsert("Post", "future", Operation.INDEX, 9, now + timedelta(hours=1))

    claimed = await pg_store.claim(10, now, now + timedelta(minutes=1))

    assert [e.record_id for e in claimed] == ["b", "a"]
    assert all(e.run_at == now for e in claimed)
    assert await pg_store.find_due(10, now) == []

    await pg_store.release(claimed)

    due = await pg_store.find_due(10, now)
    assert [e.record_id for e in due] == ["b", "a"]
    assert all(e.claim_token is None for e in due)


@pytest.mark.asyncio
async def test_concurrent_claims_do_not_overlap(pg_store):
    """Test that simultaneous workers split due entries between them."""
    now = utc_now()
    for record_id in range(20):
        await pg_store.upsert("Post", str(record_id), Operation.INDEX, 0, now)

    batches = await asyncio.gather(
        *(pg_store.claim(20, now, now + timedelta(minutes=1)) for _ in range(4))
    )

    claimed = [entry.id for batch in batches for entry in batch]
    assert len(claimed) == 20
    assert len(set(claimed)) == 20


@pytest.mark.asyncio
async def test_failure_delete_and_claim_guard(pg_store):
    """Test failure recording, guarded delete and admin views."""
    now = utc_now()
    await pg_store.upsert("Post", "1", Operation.INDEX, 0, now)
    claimed = (await pg_store.claim(10, now, now + timedelta(minutes=1)))[0]

    assert await pg_store.record_failure(
        claimed.id, {"message": "bad"}, now + timedelta(minutes=1), claim_token=claimed.claim_token
    )
    entry = await pg_store.get_entry("Post", "1")
    assert entry.attempts == 1
    assert entry.last_error == {"message": "bad"}

    assert await pg_store.delete(claimed.id, claim_token=claimed.claim_token) is False
    assert [e.record_id for e in await pg_store.list_errors()] == ["1"]

    assert await pg_store.reset_errors(now) == 1
    assert (await pg_store.stats(now)).ready == 1
    assert await pg_store.clear() == 1


@pytest.mark.asyncio
async def test_engine_against_postgres(pg_store, search_client, registry, posts):
    """Test processing, rejection and outage against a real database."""
    engine = QueueEngine(pg_store, BatchDispatcher(search_client, registry=registry))
    await engine.index("Post", 1)
    await engine.index("Post", 2, priority=1)
    search_client.rejections["Post 2"] = "invalid field"

    result = await engine.process()

    assert (result.succeeded, result.failed) == (1, 1)
    failed = await engine.get_entry("Post", 2)
    assert failed.attempts == 1
    assert failed.last_error["message"] == "invalid field"

    await engine.index("Post", 3)
    search_client.down = True
    with pytest.raises(BackendUnreachableError):
        await engine.process()

    entry = await engine.get_entry("Post", 3)
    assert entry.attempts == 0
    assert entry.run_at <= utc_now()
