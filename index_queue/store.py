"""Entry store layer for the index queue.

``EntryStore`` is the contract the queue engine needs from a persistence
backend. Any object providing these coroutines can be used; two
implementations ship with the library:

* ``PostgresEntryStore`` -- asyncpg, shared by any number of worker processes.
* ``MemoryEntryStore`` -- single process, for tests and embedding.
"""

import asyncio
import json
import random
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import asyncpg

from index_queue.errors import StoreUnavailableError
from index_queue.models import Operation, QueueEntry, QueueStats, utc_now

ORDER_BY = "priority DESC, created_at ASC, id ASC"


def _new_claim_token() -> int:
    return random.getrandbits(62)


class EntryStore(Protocol):
    """Persistence contract for queue entries."""

    async def find_due(
        self,
        limit: int,
        now: datetime,
        record_types: Optional[List[str]] = None,
        min_priority: Optional[int] = None,
    ) -> List[QueueEntry]:
        ...

    async def claim(
        self,
        limit: int,
        now: datetime,
        claim_until: datetime,
        record_types: Optional[List[str]] = None,
        min_priority: Optional[int] = None,
    ) -> List[QueueEntry]:
        ...

    async def upsert(
        self,
        record_type: str,
        record_id: str,
        operation: Operation,
        priority: int,
        run_at: datetime,
    ) -> QueueEntry:
        ...

    async def record_failure(
        self,
        entry_id: Any,
        error: Dict[str, Any],
        run_at: datetime,
        claim_token: Optional[int] = None,
    ) -> bool:
        ...

    async def release(self, entries: List[QueueEntry]) -> None:
        ...

    async def delete(self, entry_id: Any, claim_token: Optional[int] = None) -> bool:
        ...

    async def get_entry(self, record_type: str, record_id: str) -> Optional[QueueEntry]:
        ...

    async def stats(
        self, now: datetime, record_types: Optional[List[str]] = None
    ) -> QueueStats:
        ...

    async def list_errors(self, limit: int = 50, offset: int = 0) -> List[QueueEntry]:
        ...

    async def reset_errors(self, now: datetime) -> int:
        ...

    async def clear(self, record_types: Optional[List[str]] = None) -> int:
        ...


class PostgresEntryStore:
    """
    PostgreSQL implementation of ``EntryStore``.

    Coalescing relies on ``INSERT ... ON CONFLICT`` against the unique
    ``(record_type, record_id)`` key. Claiming is a single conditional
    ``UPDATE`` that pushes ``run_at`` forward, so two workers do not pick
    the same due rows and a crashed worker's rows become due again on their own.
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    @asynccontextmanager
    async def _connection(self):
        try:
            async with self.db_pool.acquire() as conn:
                yield conn
        except (
            OSError,
            asyncio.TimeoutError,
            asyncpg.exceptions.PostgresConnectionError,
            asyncpg.exceptions.InterfaceError,
        ) as e:
            raise StoreUnavailableError(f"Entry store unavailable: {e}") from e

    @staticmethod
    def _filters(
        params: list,
        record_types: Optional[List[str]],
        min_priority: Optional[int],
    ) -> str:
        clause = ""
        if record_types:
            params.append(list(record_types))
            clause += f" AND record_type = ANY(${len(params)}::text[])"
        if min_priority is not None:
            params.append(min_priority)
            clause += f" AND priority >= ${len(params)}"
        return clause

    async def find_due(
        self,
        limit: int,
        now: datetime,
        record_types: Optional[List[str]] = None,
        min_priority: Optional[int] = None,
    ) -> List[QueueEntry]:
        """Select due entries in claim order without claiming them."""
        params: list = [now]
        query = "SELECT * FROM index_queue_entries WHERE run_at <= $1"
        query += self._filters(params, record_types, min_priority)
        params.append(limit)
        query += f" ORDER BY {ORDER_BY} LIMIT ${len(params)}"

        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)

        return [self._row_to_entry(row) for row in rows]

    async def claim(
        self,
        limit: int,
        now: datetime,
        claim_until: datetime,
        record_types: Optional[List[str]] = None,
        min_priority: Optional[int] = None,
    ) -> List[QueueEntry]:
        """
        Claim up to ``limit`` due entries.

        Claimed rows get ``run_at = claim_until`` and a fresh claim token.
        The returned entries carry their pre-claim ``run_at`` so that
        ``release`` can put them back exactly where they were. Rows locked by
        a concurrent claim are skipped rather than waited for.
        """
        token = _new_claim_token()
        params: list = [now, claim_until, token]
        due = "SELECT id, run_at FROM index_queue_entries WHERE run_at <= $1"
        due += self._filters(params, record_types, min_priority)
        params.append(limit)
        due += f" ORDER BY {ORDER_BY} LIMIT ${len(params)} FOR UPDATE SKIP LOCKED"

        query = f"""
            WITH due AS ({due}),
            claimed AS (
                UPDATE index_queue_entries AS e
                SET run_at = $2, claim_token = $3, updated_at = now()
                FROM due
                WHERE e.id = due.id AND e.run_at <= $1
                RETURNING e.*, due.run_at AS claimed_from
            )
            SELECT * FROM claimed ORDER BY {ORDER_BY}
        """

        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)

        entries = []
        for row in rows:
            entry = self._row_to_entry(row)
            entry.run_at = row["claimed_from"]
            entries.append(entry)
        return entries

    async def upsert(
        self,
        record_type: str,
        record_id: str,
        operation: Operation,
        priority: int,
        run_at: datetime,
    ) -> QueueEntry:
        """Insert an entry or coalesce into the existing one for the record."""
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO index_queue_entries (
                    record_type, record_id, operation, priority, run_at, attempts
                ) VALUES ($1, $2, $3, $4, $5, 0)
                ON CONFLICT (record_type, record_id) DO UPDATE
                SET operation = EXCLUDED.operation,
                    run_at = EXCLUDED.run_at,
                    priority = GREATEST(index_queue_entries.priority, EXCLUDED.priority),
                    claim_token = NULL,
                    updated_at = now()
                RETURNING *
                """,
                record_type,
                str(record_id),
                Operation(operation).value,
                priority,
                run_at,
            )

        return self._row_to_entry(row)

    async def record_failure(
        self,
        entry_id: Any,
        error: Dict[str, Any],
        run_at: datetime,
        claim_token: Optional[int] = None,
    ) -> bool:
        """Increment attempts, store the error and reschedule the entry."""
        async with self._connection() as conn:
            result = await conn.execute(
                """
                UPDATE index_queue_entries
                SET attempts = attempts + 1,
                    last_error = $2,
                    run_at = $3,
                    claim_token = NULL,
                    updated_at = now()
                WHERE id = $1
                  AND ($4::bigint IS NULL OR claim_token = $4)
                """,
                entry_id,
                json.dumps(error),
                run_at,
                claim_token,
            )

        return _affected(result) > 0

    async def release(self, entries: List[QueueEntry]) -> None:
        """Give claimed entries back with their pre-claim ``run_at``."""
        if not entries:
            return

        async with self._connection() as conn:
            await conn.executemany(
                """
                UPDATE index_queue_entries
                SET run_at = $2, claim_token = NULL, updated_at = now()
                WHERE id = $1 AND claim_token = $3
                """,
                [(entry.id, entry.run_at, entry.claim_token) for entry in entries],
            )

    async def delete(self, entry_id: Any, claim_token: Optional[int] = None) -> bool:
        """
        Delete an entry.

        With a ``claim_token`` the row is only removed if it is still held by
        that claim; a record mutated in the meantime keeps its entry.
        """
        async with self._connection() as conn:
            result = await conn.execute(
                """
                DELETE FROM index_queue_entries
                WHERE id = $1 AND ($2::bigint IS NULL OR claim_token = $2)
                """,
                entry_id,
                claim_token,
            )

        return _affected(result) > 0

    async def get_entry(self, record_type: str, record_id: str) -> Optional[QueueEntry]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM index_queue_entries
                WHERE record_type = $1 AND record_id = $2
                """,
                record_type,
                str(record_id),
            )

        return self._row_to_entry(row) if row else None

    async def stats(
        self, now: datetime, record_types: Optional[List[str]] = None
    ) -> QueueStats:
        params: list = [now]
        query = """
            SELECT COUNT(*) AS total,
                   COUNT(*) FILTER (WHERE run_at <= $1) AS ready,
                   COUNT(*) FILTER (WHERE attempts > 0) AS errors
            FROM index_queue_entries
            WHERE 1=1
        """
        query += self._filters(params, record_types, None)

        async with self._connection() as conn:
            row = await conn.fetchrow(query, *params)

        return QueueStats(total=row["total"], ready=row["ready"], errors=row["errors"])

    async def list_errors(self, limit: int = 50, offset: int = 0) -> List[QueueEntry]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT * FROM index_queue_entries
                WHERE attempts > 0
                ORDER BY {ORDER_BY}
                LIMIT $1 OFFSET $2
                """,
                limit,
                offset,
            )

        return [self._row_to_entry(row) for row in rows]

    async def reset_errors(self, now: datetime) -> int:
        """Make every failed entry due now with a fresh attempt counter."""
        async with self._connection() as conn:
            result = await conn.execute(
                """
                UPDATE index_queue_entries
                SET attempts = 0, run_at = $1, claim_token = NULL, updated_at = now()
                WHERE attempts > 0
                """,
                now,
            )

        return _affected(result)

    async def clear(self, record_types: Optional[List[str]] = None) -> int:
        params: list = []
        query = "DELETE FROM index_queue_entries WHERE 1=1"
        query += self._filters(params, record_types, None)

        async with self._connection() as conn:
            result = await conn.execute(query, *params)

        return _affected(result)

    def _row_to_entry(self, row: asyncpg.Record) -> QueueEntry:
        """Convert a database row to a QueueEntry."""
        return QueueEntry(
            id=row["id"],
            record_type=row["record_type"],
            record_id=row["record_id"],
            operation=Operation(row["operation"]),
            run_at=row["run_at"],
            priority=row["priority"],
            attempts=row["attempts"],
            last_error=json.loads(row["last_error"])
            if row["last_error"] and isinstance(row["last_error"], str)
            else row["last_error"],
            claim_token=row["claim_token"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


def _affected(status: str) -> int:
    # Command status strings look like "UPDATE 5" or "DELETE 0"
    return int(status.split()[-1]) if status else 0


class MemoryEntryStore:
    """
    In-process implementation of ``EntryStore``.

    Entries are held in a dict keyed by id. An ``asyncio.Lock`` makes each
    operation atomic with respect to other tasks on the same event loop.
    Returned entries are copies; mutate the store only through its methods.
    """

    def __init__(self):
        self._entries: Dict[int, QueueEntry] = {}
        self._keys: Dict[tuple, int] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _ordered(self, entries) -> List[QueueEntry]:
        return sorted(entries, key=lambda e: (-e.priority, e.created_at, e.id))

    def _due(
        self,
        now: datetime,
        record_types: Optional[List[str]],
        min_priority: Optional[int],
    ) -> List[QueueEntry]:
        due = [
            entry
            for entry in self._entries.values()
            if entry.run_at <= now
            and (not record_types or entry.record_type in record_types)
            and (min_priority is None or entry.priority >= min_priority)
        ]
        return self._ordered(due)

    async def find_due(
        self,
        limit: int,
        now: datetime,
        record_types: Optional[List[str]] = None,
        min_priority: Optional[int] = None,
    ) -> List[QueueEntry]:
        async with self._lock:
            return [e.copy() for e in self._due(now, record_types, min_priority)[:limit]]

    async def claim(
        self,
        limit: int,
        now: datetime,
        claim_until: datetime,
        record_types: Optional[List[str]] = None,
        min_priority: Optional[int] = None,
    ) -> List[QueueEntry]:
        token = _new_claim_token()
        claimed = []
        async with self._lock:
            for entry in self._due(now, record_types, min_priority)[:limit]:
                snapshot = entry.copy()
                snapshot.claim_token = token
                claimed.append(snapshot)
                entry.run_at = claim_until
                entry.claim_token = token
                entry.updated_at = utc_now()
        return claimed

    async def upsert(
        self,
        record_type: str,
        record_id: str,
        operation: Operation,
        priority: int,
        run_at: datetime,
    ) -> QueueEntry:
        key = (record_type, str(record_id))
        async with self._lock:
            entry_id = self._keys.get(key)
            if entry_id is not None:
                entry = self._entries[entry_id]
                entry.operation = Operation(operation)
                entry.run_at = run_at
                entry.priority = max(entry.priority, priority)
                entry.claim_token = None
                entry.updated_at = utc_now()
            else:
                now = utc_now()
                entry = QueueEntry(
                    id=self._next_id,
                    record_type=record_type,
                    record_id=str(record_id),
                    operation=Operation(operation),
                    run_at=run_at,
                    priority=priority,
                    created_at=now,
                    updated_at=now,
                )
                self._entries[entry.id] = entry
                self._keys[key] = entry.id
                self._next_id += 1
            return entry.copy()

    def _held(self, entry_id: Any, claim_token: Optional[int]) -> Optional[QueueEntry]:
        entry = self._entries.get(entry_id)
        if entry is None:
            return None
        if claim_token is not None and entry.claim_token != claim_token:
            return None
        return entry

    async def record_failure(
        self,
        entry_id: Any,
        error: Dict[str, Any],
        run_at: datetime,
        claim_token: Optional[int] = None,
    ) -> bool:
        async with self._lock:
            entry = self._held(entry_id, claim_token)
            if entry is None:
                return False
            entry.attempts += 1
            entry.last_error = dict(error)
            entry.run_at = run_at
            entry.claim_token = None
            entry.updated_at = utc_now()
            return True

    async def release(self, entries: List[QueueEntry]) -> None:
        async with self._lock:
            for claimed in entries:
                entry = self._held(claimed.id, claimed.claim_token)
                if entry is None:
                    continue
                entry.run_at = claimed.run_at
                entry.claim_token = None
                entry.updated_at = utc_now()

    async def delete(self, entry_id: Any, claim_token: Optional[int] = None) -> bool:
        async with self._lock:
            entry = self._held(entry_id, claim_token)
            if entry is None:
                return False
            del self._entries[entry.id]
            del self._keys[entry.key]
            return True

    async def get_entry(self, record_type: str, record_id: str) -> Optional[QueueEntry]:
        async with self._lock:
            entry_id = self._keys.get((record_type, str(record_id)))
            return self._entries[entry_id].copy() if entry_id is not None else None

    async def stats(
        self, now: datetime, record_types: Optional[List[str]] = None
    ) -> QueueStats:
        async with self._lock:
            entries = [
                e
                for e in self._entries.values()
                if not record_types or e.record_type in record_types
            ]
            return QueueStats(
                total=len(entries),
                ready=sum(1 for e in entries if e.run_at <= now),
                errors=sum(1 for e in entries if e.attempts > 0),
            )

    async def list_errors(self, limit: int = 50, offset: int = 0) -> List[QueueEntry]:
        async with self._lock:
            failed = self._ordered(e for e in self._entries.values() if e.attempts > 0)
            return [e.copy() for e in failed[offset : offset + limit]]

    async def reset_errors(self, now: datetime) -> int:
        count = 0
        async with self._lock:
            for entry in self._entries.values():
                if entry.attempts > 0:
                    entry.attempts = 0
                    entry.run_at = now
                    entry.claim_token = None
                    entry.updated_at = utc_now()
                    count += 1
        return count

    async def clear(self, record_types: Optional[List[str]] = None) -> int:
        async with self._lock:
            doomed = [
                e
                for e in self._entries.values()
                if not record_types or e.record_type in record_types
            ]
            for entry in doomed:
                del self._entries[entry.id]
                del self._keys[entry.key]
            return len(doomed)
