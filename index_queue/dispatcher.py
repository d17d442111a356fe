"""Batch dispatch of claimed entries to the search backend."""

import logging
from collections import defaultdict
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from index_queue.errors import (
    BackendUnreachableError,
    DocumentRejectedError,
    LoaderNotFoundError,
    SearchHttpError,
)
from index_queue.models import DispatchResult, QueueEntry
from index_queue.registry import LoaderRegistry, loader_registry
from index_queue.retry import error_details
from index_queue.search_client import SearchClient, document_id


class BatchDispatcher:
    """
    Submits a batch of entries to the search backend.

    All ``index`` entries go out in one bulk index request and all ``delete``
    entries in one bulk delete request. The result says whether the batch
    succeeded, which entries were rejected, or that the backend was down.
    Index requests carry explicit document ids, so dispatching the same
    entry twice leaves the index in the same state as dispatching it once.
    """

    def __init__(
        self,
        search_client: SearchClient,
        registry: Optional[LoaderRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.search_client = search_client
        self.registry = registry or loader_registry
        self.logger = logger or logging.getLogger(__name__)

    async def dispatch(self, entries: List[QueueEntry]) -> DispatchResult:
        rejected: Dict[Any, Dict[str, Any]] = {}
        documents: Dict[str, Dict[str, Any]] = {}
        deletes: Dict[str, QueueEntry] = {}
        indexed: Dict[str, QueueEntry] = {}

        by_type: Dict[str, List[QueueEntry]] = defaultdict(list)
        for entry in entries:
            if entry.is_delete:
                deletes[document_id(*entry.key)] = entry
            else:
                by_type[entry.record_type].append(entry)

        for record_type, group in by_type.items():
            loaded = await self._load(record_type, group, rejected)
            for entry, document in loaded:
                doc_id = document_id(*entry.key)
                if document is None:
                    # Record is gone; make sure the index forgets it too
                    deletes[doc_id] = entry
                    continue
                body = dict(document)
                body.setdefault("record_type", entry.record_type)
                body.setdefault("record_id", entry.record_id)
                documents[doc_id] = body
                indexed[doc_id] = entry

        try:
            index_errors = await self._submit_index(documents)
            delete_errors = await self._submit_delete(list(deletes))
        except BackendUnreachableError as e:
            self.logger.warning(f"Search backend unreachable during dispatch: {e}")
            return DispatchResult.outage(str(e))

        for doc_id, message in index_errors.items():
            self._reject(rejected, indexed.get(doc_id), message)
        for doc_id, message in delete_errors.items():
            self._reject(rejected, deletes.get(doc_id), message)

        return DispatchResult.partial(rejected)

    async def _load(
        self,
        record_type: str,
        group: List[QueueEntry],
        rejected: Dict[Any, Dict[str, Any]],
    ) -> List[tuple]:
        """Load documents for one record type, rejecting entries that cannot be loaded."""
        loader = self.registry.get_loader(record_type)
        if loader is None:
            error = LoaderNotFoundError(record_type)
            for entry in group:
                rejected[entry.id] = error_details(error)
            return []

        keyed = []
        for entry in group:
            try:
                keyed.append((entry, self.registry.convert_id(record_type, entry.record_id)))
            except (TypeError, ValueError) as e:
                rejected[entry.id] = error_details(e)

        if not keyed:
            return []

        try:
            found = await loader([record_id for _, record_id in keyed])
            if not isinstance(found, Mapping):
                raise TypeError(
                    f"Loader for {record_type} returned {type(found).__name__}, "
                    "expected a mapping of id to document"
                )
        except Exception as e:
            self.logger.warning(
                f"Loader for {record_type} failed for {len(keyed)} entries: {e}",
                exc_info=True,
            )
            for entry, _ in keyed:
                rejected[entry.id] = error_details(e)
            return []

        return [(entry, found.get(record_id)) for entry, record_id in keyed]

    async def _submit_index(self, documents: Dict[str, Dict[str, Any]]) -> Dict[str, str]:
        if not documents:
            return {}
        try:
            return await self.search_client.bulk_index(documents)
        except SearchHttpError as e:
            if len(documents) == 1:
                return {doc_id: str(e) for doc_id in documents}
            self.logger.warning(
                f"Bulk index of {len(documents)} documents refused ({e}); "
                "submitting one at a time"
            )
            errors: Dict[str, str] = {}
            for doc_id, document in documents.items():
                errors.update(await self._submit_index({doc_id: document}))
            return errors

    async def _submit_delete(self, ids: List[str]) -> Dict[str, str]:
        if not ids:
            return {}
        try:
            return await self.search_client.bulk_delete(ids)
        except SearchHttpError as e:
            if len(ids) == 1:
                return {ids[0]: str(e)}
            self.logger.warning(
                f"Bulk delete of {len(ids)} documents refused ({e}); "
                "submitting one at a time"
            )
            errors: Dict[str, str] = {}
            for doc_id in ids:
                errors.update(await self._submit_delete([doc_id]))
            return errors

    def _reject(
        self,
        rejected: Dict[Any, Dict[str, Any]],
        entry: Optional[QueueEntry],
        message: str,
    ) -> None:
        if entry is None:
            return
        try:
            raise DocumentRejectedError(entry.record_type, entry.record_id, message)
        except DocumentRejectedError as e:
            rejected[entry.id] = error_details(e, message=message)
