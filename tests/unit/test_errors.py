"""Unit tests for errors module."""


from index_queue.errors import (
    BackendUnreachableError,
    DocumentRejectedError,
    EntryNotFoundError,
    IndexQueueError,
    LoaderNotFoundError,
    SearchHttpError,
    StoreUnavailableError,
)
from index_queue.models import ProcessResult


def test_index_queue_error_base_class():
    """Test base exception class."""
    error = IndexQueueError("Test error")
    assert str(error) == "Test error"
    assert isinstance(error, Exception)


def test_backend_unreachable_error():
    """Test BackendUnreachableError default message and result."""
    error = BackendUnreachableError()
    assert str(error) == "Search backend is unreachable"
    assert error.result is None

    result = ProcessResult(skipped=5, outage=True)
    error = BackendUnreachableError("Connection refused", result=result)
    assert str(error) == "Connection refused"
    assert error.result.skipped == 5


def test_document_rejected_error():
    """Test DocumentRejectedError."""
    error = DocumentRejectedError("Post", "1", "invalid field")
    assert error.record_type == "Post"
    assert error.reason == "invalid field"
    assert str(error) == "Post 1 rejected: invalid field"


def test_entry_not_found_error():
    """Test EntryNotFoundError."""
    error = EntryNotFoundError("Post 1")
    assert str(error) == "Entry Post 1 not found"


def test_loader_not_found_error():
    """Test LoaderNotFoundError."""
    error = LoaderNotFoundError("Post")
    assert str(error) == "No loader registered for record type Post"


def test_search_http_error():
    """Test SearchHttpError."""
    error = SearchHttpError(400, "Bad Request", response_body="{}")
    assert error.status_code == 400
    assert str(error) == "HTTP 400: Bad Request"


def test_error_inheritance():
    """Test that all custom errors inherit from IndexQueueError."""
    for error_class in (
        BackendUnreachableError,
        DocumentRejectedError,
        EntryNotFoundError,
        LoaderNotFoundError,
        SearchHttpError,
        StoreUnavailableError,
    ):
        assert issubclass(error_class, IndexQueueError)
