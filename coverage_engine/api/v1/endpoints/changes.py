"""Record store change feed endpoint."""

from dataclasses import asdict
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from coverage_engine.api.dependencies import get_record_store
from coverage_engine.repositories.record_store import RecordStore
from coverage_engine.schemas.api import ApiResponse
from coverage_engine.utils.responses import create_api_response

router = APIRouter()


@router.get(
    "/",
    response_model=ApiResponse,
    summary="List store changes after a sequence number",
    operation_id="list_store_changes",
)
async def list_changes(
    request: Request,
    store: Annotated[RecordStore, Depends(get_record_store)],
    after: int = Query(0, ge=0, description="Return changes after this sequence number"),
    prefix: Optional[str] = Query(None, description="Only changes under this document path"),
    limit: int = Query(100, ge=1, le=1000),
) -> Dict[str, Any]:
    """Poll the change feed; pass the last ``sequence`` seen as ``after``."""
    changes = await store.changes(after_sequence=after, prefix=prefix, limit=limit)
    items = [
        {**asdict(change), "changed_at": change.changed_at.isoformat()} for change in changes
    ]
    return create_api_response(
        data={
            "items": items,
            "next_after": items[-1]["sequence"] if items else after,
        },
        request=request,
    )
