"""Exception types for the index queue library."""


class IndexQueueError(Exception):
    """Base exception for all index queue errors."""

    pass


class BackendUnreachableError(IndexQueueError):
    """Raised when the search service itself cannot be reached.

    This is a batch-level condition, not a document-level one. When raised
    out of ``QueueEngine.process`` the claimed batch has already been
    released and ``result`` holds the summary for that batch.
    """

    def __init__(self, message: str = None, result=None):
        self.result = result
        if message is None:
            message = "Search backend is unreachable"
        super().__init__(message)


class DocumentRejectedError(IndexQueueError):
    """Raised when the search backend refuses a single document."""

    def __init__(self, record_type: str, record_id: str, message: str):
        self.record_type = record_type
        self.record_id = record_id
        self.reason = message
        super().__init__(f"{record_type} {record_id} rejected: {message}")


class StoreUnavailableError(IndexQueueError):
    """Raised when the entry store cannot be reached."""

    pass


class EntryNotFoundError(IndexQueueError):
    """Raised when a queue entry is not found."""

    def __init__(self, entry_id, message: str = None):
        self.entry_id = entry_id
        if message is None:
            message = f"Entry {entry_id} not found"
        super().__init__(message)


class LoaderNotFoundError(IndexQueueError):
    """Raised when no document loader is registered for a record type."""

    def __init__(self, record_type: str):
        self.record_type = record_type
        super().__init__(f"No loader registered for record type {record_type}")


class SearchHttpError(IndexQueueError):
    """Raised when the search backend answers with an unexpected HTTP error."""

    def __init__(self, status_code: int, message: str, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(f"HTTP {status_code}: {message}")
