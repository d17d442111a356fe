"""HTTP client for the search backend."""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Protocol

import aiohttp

from index_queue.errors import BackendUnreachableError, SearchHttpError


def document_id(record_type: str, record_id: str) -> str:
    """Identifier of a record's document in the search index."""
    return f"{record_type} {record_id}"


class SearchClient(Protocol):
    """Search backend contract used by the dispatcher and session proxy.

    ``bulk_index`` and ``bulk_delete`` return a mapping of document id to
    error message for rejected documents only. They raise
    ``BackendUnreachableError`` when the service itself is down.
    """

    async def bulk_index(self, documents: Dict[str, Dict[str, Any]]) -> Dict[str, str]:
        ...

    async def bulk_delete(self, ids: List[str]) -> Dict[str, str]:
        ...

    async def search(self, query: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete_by_type(self, record_type: str) -> None:
        ...

    async def refresh(self) -> None:
        ...


class HttpSearchClient:
    """
    Elasticsearch/OpenSearch client built on aiohttp.

    Writes go through the ``_bulk`` API so that each batch is one round trip
    and per-document errors can be told apart from the service being down.
    Indexing uses explicit document ids, so replaying a batch is harmless.
    """

    def __init__(
        self,
        base_url: str,
        index: str = "documents",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Base URL of the search cluster (e.g., "http://localhost:9200")
            index: Name of the index documents are written to
            api_key: Optional API key sent as ``Authorization: ApiKey ...``
            timeout: Request timeout in seconds
            session: Optional shared aiohttp session; one is created per call otherwise
        """
        self.base_url = base_url.rstrip("/")
        self.index = index
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._shared_session = session

    @asynccontextmanager
    async def _session(self):
        if self._shared_session is not None:
            yield self._shared_session
        else:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                yield session

    def _headers(self, content_type: str = "application/json") -> Dict[str, str]:
        headers = {"Content-Type": content_type}
        if self.api_key:
            headers["Authorization"] = f"ApiKey {self.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        data: Optional[str] = None,
        content_type: str = "application/json",
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            async with self._session() as session:
                async with session.request(
                    method,
                    url,
                    json=json_body,
                    data=data,
                    headers=self._headers(content_type),
                ) as resp:
                    status = resp.status
                    response_body = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BackendUnreachableError(f"Search backend unreachable: {e}") from e

        if status == 429 or status >= 500:
            raise BackendUnreachableError(
                f"Search backend unavailable (HTTP {status}): {response_body[:200]}"
            )

        if status >= 400:
            raise SearchHttpError(
                status_code=status,
                message=f"{method} {path} failed: {response_body[:200]}",
                response_body=response_body,
            )

        return json.loads(response_body) if response_body else {}

    async def _bulk(self, lines: List[Dict[str, Any]]) -> Dict[str, str]:
        body = "".join(json.dumps(line) + "\n" for line in lines)
        response = await self._request(
            "POST", "_bulk", data=body, content_type="application/x-ndjson"
        )

        rejected: Dict[str, str] = {}
        if not response.get("errors"):
            return rejected

        for item in response.get("items", []):
            action, result = next(iter(item.items()))
            error = result.get("error")
            if not error:
                continue
            status = result.get("status") or 0
            if status == 429 or status >= 500:
                raise BackendUnreachableError(
                    f"Search backend unavailable (item status {status}): {error}"
                )
            # Deleting a document that is already gone counts as done
            if action == "delete" and result.get("status") == 404:
                continue
            if isinstance(error, dict):
                error = f"{error.get('type', 'error')}: {error.get('reason', '')}"
            rejected[result.get("_id")] = str(error)
        return rejected

    async def bulk_index(self, documents: Dict[str, Dict[str, Any]]) -> Dict[str, str]:
        """
        Index or replace documents.

        Args:
            documents: Mapping of document id to document body

        Returns:
            Mapping of document id to error message for rejected documents

        Raises:
            BackendUnreachableError: If the search service cannot be reached
        """
        if not documents:
            return {}

        lines: List[Dict[str, Any]] = []
        for doc_id, document in documents.items():
            lines.append({"index": {"_index": self.index, "_id": doc_id}})
            lines.append(document)
        return await self._bulk(lines)

    async def bulk_delete(self, ids: List[str]) -> Dict[str, str]:
        """Delete documents by id; missing documents are not an error."""
        if not ids:
            return {}

        lines = [{"delete": {"_index": self.index, "_id": doc_id}} for doc_id in ids]
        return await self._bulk(lines)

    async def search(self, query: Dict[str, Any]) -> Dict[str, Any]:
        """Run a search request against the index and return the raw response."""
        return await self._request("POST", f"{self.index}/_search", json_body=query)

    async def delete_by_type(self, record_type: str) -> None:
        """Remove every document of a record type from the index."""
        await self._request(
            "POST",
            f"{self.index}/_delete_by_query",
            json_body={"query": {"term": {"record_type": record_type}}},
        )

    async def refresh(self) -> None:
        """Make recent writes visible to searches."""
        await self._request("POST", f"{self.index}/_refresh")
