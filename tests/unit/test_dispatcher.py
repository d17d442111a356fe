"""Unit tests for the batch dispatcher."""

from datetime import datetime, timezone

import pytest

from index_queue.dispatcher import BatchDispatcher
from index_queue.errors import SearchHttpError
from index_queue.models import DispatchOutcome, Operation, QueueEntry

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_entry(id, record_id, operation=Operation.INDEX, record_type="Post"):
    return QueueEntry(
        id=id,
        record_type=record_type,
        record_id=record_id,
        operation=operation,
        run_at=NOW,
    )


@pytest.mark.asyncio
async def test_groups_into_one_call_per_operation(dispatcher, search_client, posts):
    """Test that a batch becomes one bulk index and one bulk delete call."""
    entries = [
        make_entry(1, "1"),
        make_entry(2, "2"),
        make_entry(3, "9", Operation.DELETE),
        make_entry(4, "10", Operation.DELETE),
    ]

    result = await dispatcher.dispatch(entries)

    assert result.outcome == DispatchOutcome.SUCCESS
    assert search_client.calls == [
        ("bulk_index", ["Post 1", "Post 2"]),
        ("bulk_delete", ["Post 10", "Post 9"]),
    ]
    assert search_client.documents["Post 1"] == {
        "title": "First",
        "record_type": "Post",
        "record_id": "1",
    }


@pytest.mark.asyncio
async def test_loader_receives_converted_ids(registry, search_client):
    """Test that queued text ids are converted back to the key type."""
    received = []

    @registry.loader("Post", id_type=int)
    async def load(ids):
        received.extend(ids)
        return {record_id: {"n": record_id} for record_id in ids}

    dispatcher = BatchDispatcher(search_client, registry=registry)
    await dispatcher.dispatch([make_entry(1, "5"), make_entry(2, "6")])

    assert received == [5, 6]


@pytest.mark.asyncio
async def test_missing_record_is_deleted(dispatcher, search_client, posts):
    """Test that an index entry for a destroyed record removes its document."""
    search_client.documents["Post 3"] = {"title": "Third"}
    del posts[3]

    result = await dispatcher.dispatch([make_entry(1, "3")])

    assert result.outcome == DispatchOutcome.SUCCESS
    assert "Post 3" not in search_client.documents
    assert search_client.calls == [("bulk_delete", ["Post 3"])]


@pytest.mark.asyncio
async def test_per_document_rejections(dispatcher, search_client, posts):
    """Test that only rejected entries are reported."""
    search_client.rejections["Post 2"] = "invalid field"
    search_client.rejections["Post 8"] = "locked"
    entries = [
        make_entry(1, "1"),
        make_entry(2, "2"),
        make_entry(3, "8", Operation.DELETE),
    ]

    result = await dispatcher.dispatch(entries)

    assert result.outcome == DispatchOutcome.PARTIAL
    assert set(result.rejected) == {2, 3}
    assert result.rejected[2]["message"] == "invalid field"
    assert [e.id for e in result.succeeded(entries)] == [1]


@pytest.mark.asyncio
async def test_missing_loader_rejects_entries(dispatcher, search_client):
    """Test that entries without a loader are rejected, not dropped."""
    result = await dispatcher.dispatch([make_entry(1, "1", record_type="Unknown")])

    assert result.outcome == DispatchOutcome.PARTIAL
    assert result.rejected[1]["type"] == "LoaderNotFoundError"
    assert search_client.calls == []


@pytest.mark.asyncio
async def test_failing_loader_rejects_its_group_only(registry, search_client, posts):
    """Test that a loader error affects only entries of that record type."""

    @registry.loader("Comment")
    async def load_comments(ids):
        raise RuntimeError("database timeout")

    dispatcher = BatchDispatcher(search_client, registry=registry)
    entries = [make_entry(1, "1"), make_entry(2, "c1", record_type="Comment")]

    result = await dispatcher.dispatch(entries)

    assert set(result.rejected) == {2}
    assert result.rejected[2]["message"] == "database timeout"
    assert "Traceback" in result.rejected[2]["trace"]
    assert "Post 1" in search_client.documents


@pytest.mark.asyncio
async def test_unconvertible_id_is_rejected(dispatcher, search_client, posts):
    """Test that an id the loader's key type cannot parse is rejected."""
    result = await dispatcher.dispatch([make_entry(1, "abc"), make_entry(2, "1")])

    assert set(result.rejected) == {1}
    assert result.rejected[1]["type"] == "ValueError"


@pytest.mark.asyncio
async def test_outage_is_reported_for_whole_batch(dispatcher, search_client, posts):
    """Test that an unreachable backend yields an outage result without details."""
    search_client.down = True

    result = await dispatcher.dispatch([make_entry(1, "1"), make_entry(2, "2")])

    assert result.is_outage
    assert result.rejected == {}
    assert "Connection refused" in result.message


@pytest.mark.asyncio
async def test_refused_bulk_request_falls_back_to_single_documents(
    dispatcher, search_client, posts
):
    """Test that a refused bulk request is retried per document to isolate errors."""
    original = search_client.bulk_index

    async def picky_bulk_index(documents):
        if len(documents) > 1:
            raise SearchHttpError(400, "request too large")
        if "Post 2" in documents:
            raise SearchHttpError(400, "bad document")
        return await original(documents)

    search_client.bulk_index = picky_bulk_index

    result = await dispatcher.dispatch([make_entry(1, "1"), make_entry(2, "2")])

    assert set(result.rejected) == {2}
    assert "bad document" in result.rejected[2]["message"]
    assert "Post 1" in search_client.documents


@pytest.mark.asyncio
async def test_dispatching_twice_is_idempotent(dispatcher, search_client, posts):
    """Test that a duplicate dispatch leaves the index in the same state."""
    entries = [make_entry(1, "1"), make_entry(2, "2", Operation.DELETE)]
    search_client.documents["Post 2"] = {"title": "stale"}

    await dispatcher.dispatch(entries)
    once = dict(search_client.documents)
    await dispatcher.dispatch(entries)

    assert search_client.documents == once


@pytest.mark.asyncio
@pytest.mark.parametrize("returned", [None, [{"name": "x"}]])
async def test_loader_returning_non_mapping_rejects_its_group(
    registry, search_client, posts, returned
):
    """Test that a loader returning the wrong shape rejects only its entries."""

    @registry.loader("Tag")
    async def load_tags(ids):
        return returned

    dispatcher = BatchDispatcher(search_client, registry=registry)
    entries = [make_entry(1, "1"), make_entry(2, "t1", record_type="Tag")]

    result = await dispatcher.dispatch(entries)

    assert set(result.rejected) == {2}
    assert result.rejected[2]["type"] == "TypeError"
    assert "expected a mapping" in result.rejected[2]["message"]
    assert "Post 1" in search_client.documents


@pytest.mark.asyncio
async def test_rejection_details_include_traceback(dispatcher, search_client, posts):
    """Test that a backend rejection records a traceback in last_error."""
    search_client.rejections["Post 1"] = "invalid field"

    result = await dispatcher.dispatch([make_entry(1, "1")])

    details = result.rejected[1]
    assert details["type"] == "DocumentRejectedError"
    assert details["trace"].startswith("Traceback")
    assert "Post 1 rejected: invalid field" in details["trace"]
