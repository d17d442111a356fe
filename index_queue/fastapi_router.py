"""FastAPI router exposing index queue administration."""

import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel

from index_queue.engine import QueueEngine
from index_queue.errors import EntryNotFoundError
from index_queue.models import Operation, QueueStats


logger = logging.getLogger(__name__)


class EnqueueRequest(BaseModel):
    """Request model for queueing a record."""

    record_type: str
    record_id: str
    operation: Operation = Operation.INDEX
    priority: Optional[int] = None


class EntryResponse(BaseModel):
    """Response model for a queue entry."""

    id: Any
    record_type: str
    record_id: str
    operation: str
    run_at: Optional[str] = None
    priority: int
    attempts: int
    last_error: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ResetResponse(BaseModel):
    """Response model for resetting failed entries."""

    reset: int


def create_queue_router(
    engine_factory: Callable[[], QueueEngine],
    auth_token: Optional[str] = None,
) -> APIRouter:
    """
    Create FastAPI router for index queue administration.

    Args:
        engine_factory: Callable that returns a QueueEngine instance
        auth_token: Optional auth token required on every endpoint

    Returns:
        APIRouter instance
    """
    router = APIRouter()

    async def get_engine() -> QueueEngine:
        """Dependency to get QueueEngine instance."""
        return engine_factory()

    async def verify_auth_token(
        x_index_queue_token: Optional[str] = Header(None, alias="X-Index-Queue-Token")
    ) -> None:
        """Verify auth token if configured."""
        if auth_token:
            if not x_index_queue_token or x_index_queue_token != auth_token:
                raise HTTPException(
                    status_code=401, detail="Invalid or missing auth token"
                )

    @router.get("/queue/stats", response_model=QueueStats)
    async def queue_stats(
        record_types: Optional[List[str]] = Query(None),
        engine: QueueEngine = Depends(get_engine),
        _: None = Depends(verify_auth_token),
    ):
        """Total, ready and failed entry counts."""
        try:
            return await engine.stats(record_types)
        except Exception as e:
            logger.exception("Error reading queue stats")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get("/queue/errors", response_model=List[EntryResponse])
    async def queue_errors(
        limit: int = Query(50, ge=1, le=1000),
        offset: int = Query(0, ge=0),
        engine: QueueEngine = Depends(get_engine),
        _: None = Depends(verify_auth_token),
    ):
        """List entries that have failed at least once."""
        try:
            entries = await engine.errors(limit=limit, offset=offset)
            return [EntryResponse(**entry.to_dict()) for entry in entries]
        except Exception as e:
            logger.exception("Error listing failed entries")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.post("/queue/reset", response_model=ResetResponse)
    async def reset_errors(
        engine: QueueEngine = Depends(get_engine),
        _: None = Depends(verify_auth_token),
    ):
        """Make every failed entry due again now."""
        try:
            return ResetResponse(reset=await engine.reset())
        except Exception as e:
            logger.exception("Error resetting failed entries")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.get("/queue/entries/{record_type}/{record_id}", response_model=EntryResponse)
    async def get_entry(
        record_type: str,
        record_id: str,
        engine: QueueEngine = Depends(get_engine),
        _: None = Depends(verify_auth_token),
    ):
        """Get the queued entry for a record."""
        try:
            entry = await engine.get_entry(record_type, record_id)
            return EntryResponse(**entry.to_dict())
        except EntryNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error getting entry")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    @router.post("/queue/enqueue", response_model=EntryResponse)
    async def enqueue(
        request: EnqueueRequest,
        engine: QueueEngine = Depends(get_engine),
        _: None = Depends(verify_auth_token),
    ):
        """Queue an index or delete operation for a record."""
        try:
            entry = await engine.enqueue(
                request.record_type,
                request.record_id,
                request.operation,
                priority=request.priority,
            )
            return EntryResponse(**entry.to_dict())
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except Exception as e:
            logger.exception("Error queueing entry")
            raise HTTPException(status_code=500, detail="Internal server error") from e

    return router
