"""Data models for queue entries and processing results."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse
from pydantic import BaseModel, Field

DEFAULT_PRIORITY = 0


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Operation(str, Enum):
    """What to do with a record in the search index."""

    INDEX = "index"
    DELETE = "delete"


class QueueEntry:
    """
    A pending or retrying index operation for one record.

    ``priority`` follows a higher-is-sooner convention: entries are claimed
    ordered by ``priority`` descending, then ``created_at`` ascending.
    The baseline is ``DEFAULT_PRIORITY``.
    """

    def __init__(
        self,
        id: Any,
        record_type: str,
        record_id: str,
        operation: Operation,
        run_at: datetime,
        priority: int = DEFAULT_PRIORITY,
        attempts: int = 0,
        last_error: Optional[Dict[str, Any]] = None,
        claim_token: Optional[int] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.record_type = record_type
        self.record_id = str(record_id)
        self.operation = Operation(operation) if isinstance(operation, str) else operation
        self.run_at = run_at
        self.priority = priority
        self.attempts = attempts
        self.last_error = last_error
        self.claim_token = claim_token
        self.created_at = created_at
        self.updated_at = updated_at

    @property
    def is_delete(self) -> bool:
        return self.operation == Operation.DELETE

    @property
    def failed(self) -> bool:
        """True once at least one attempt has failed."""
        return self.attempts > 0

    @property
    def key(self) -> tuple:
        return (self.record_type, self.record_id)

    def copy(self) -> "QueueEntry":
        return QueueEntry(**self.__dict__)

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "record_type": self.record_type,
            "record_id": self.record_id,
            "operation": self.operation.value,
            "run_at": self.run_at.isoformat() if self.run_at else None,
            "priority": self.priority,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueEntry":
        """Rebuild an entry from ``to_dict`` output."""
        timestamps = {}
        for name in ("run_at", "created_at", "updated_at"):
            value = data.get(name)
            if isinstance(value, str):
                value = isoparse(value)
            timestamps[name] = value

        return cls(
            id=data.get("id"),
            record_type=data["record_type"],
            record_id=data["record_id"],
            operation=data["operation"],
            priority=data.get("priority", DEFAULT_PRIORITY),
            attempts=data.get("attempts", 0),
            last_error=data.get("last_error"),
            **timestamps,
        )

    def __repr__(self) -> str:
        return (
            f"QueueEntry(id={self.id}, {self.record_type}:{self.record_id}, "
            f"operation={self.operation.value}, priority={self.priority}, "
            f"attempts={self.attempts})"
        )


class DispatchOutcome(str, Enum):
    """Discriminant for a dispatch result."""

    SUCCESS = "success"
    PARTIAL = "partial"
    OUTAGE = "outage"


class DispatchResult:
    """
    Outcome of submitting one batch to the search backend.

    ``rejected`` maps entry id to error details and is only populated for a
    ``PARTIAL`` outcome. An ``OUTAGE`` carries no per-entry information.
    """

    def __init__(
        self,
        outcome: DispatchOutcome,
        rejected: Optional[Dict[Any, Dict[str, Any]]] = None,
        message: Optional[str] = None,
    ):
        self.outcome = outcome
        self.rejected = rejected or {}
        self.message = message

    @classmethod
    def success(cls) -> "DispatchResult":
        return cls(DispatchOutcome.SUCCESS)

    @classmethod
    def partial(cls, rejected: Dict[Any, Dict[str, Any]]) -> "DispatchResult":
        if not rejected:
            return cls.success()
        return cls(DispatchOutcome.PARTIAL, rejected=rejected)

    @classmethod
    def outage(cls, message: str) -> "DispatchResult":
        return cls(DispatchOutcome.OUTAGE, message=message)

    @property
    def is_outage(self) -> bool:
        return self.outcome == DispatchOutcome.OUTAGE

    def succeeded(self, entries: List[QueueEntry]) -> List[QueueEntry]:
        """Entries from the batch that were not rejected."""
        if self.is_outage:
            return []
        return [entry for entry in entries if entry.id not in self.rejected]


class ProcessOptions(BaseModel):
    """Options for a single ``QueueEngine.process`` call."""

    batch_size: int = Field(default=100, ge=1)
    record_types: Optional[List[str]] = None
    min_priority: Optional[int] = None


class ProcessResult(BaseModel):
    """Summary of a single ``QueueEngine.process`` call."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    outage: bool = False

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped

    @property
    def empty(self) -> bool:
        return self.total == 0


class QueueStats(BaseModel):
    """Counts describing the current state of the queue."""

    total: int
    ready: int
    errors: int
