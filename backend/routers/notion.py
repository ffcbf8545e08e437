"""Notion sync route handlers."""

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, status

from backend.auth import get_current_user_id
from backend.errors import NotFoundError, PartialApplyError, ValidationError
from backend.schemas.notion import (
    DirectUpdateRequest,
    DirectUpdateResponse,
    EnqueueRequest,
    EnqueueResponse,
    QueueStatusResponse,
    SyncReportResponse,
)
from backend.services.notion_sync import (
    DirectUpdateResult,
    EnqueueResult,
    QueueStatus,
    SyncReport,
    enqueue,
    process_queue,
    queue_status,
    recover_stale_items,
    retry_item,
    update_highlight_in_notion,
)
from backend.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notion", tags=["notion"])


@router.post("/queue", response_model=EnqueueResponse)
async def enqueue_edit(
    body: EnqueueRequest,
    user_id: str = Depends(get_current_user_id),
) -> EnqueueResult:
    """Queue a highlight edit for the Notion page."""
    try:
        return enqueue(
            get_supabase_client(),
            user_id,
            body.operation_type,
            highlight_id=body.highlight_id,
            text=body.text,
            html_content=body.html_content,
            original_text=body.original_text,
            original_html_content=body.original_html_content,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("/sync", response_model=SyncReportResponse)
async def sync_queue(
    user_id: str = Depends(get_current_user_id),
) -> SyncReport:
    """Process the caller's due queue items."""
    client = get_supabase_client()
    recover_stale_items(client)
    return await process_queue(client, user_id)


@router.get("/sync", response_model=QueueStatusResponse)
async def get_sync_status(
    user_id: str = Depends(get_current_user_id),
) -> QueueStatus:
    """Return the caller's queue counts and permanently failed items."""
    return queue_status(get_supabase_client(), user_id)


@router.post("/sync/{item_id}/retry", status_code=204)
async def retry_sync_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
) -> None:
    """Give a failed item a fresh retry budget."""
    try:
        retry_item(get_supabase_client(), user_id, item_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/update", response_model=DirectUpdateResponse)
async def update_in_notion(
    body: DirectUpdateRequest,
    user_id: str = Depends(get_current_user_id),
) -> DirectUpdateResult:
    """Rewrite one highlight on the Notion page immediately."""
    try:
        return await update_highlight_in_notion(
            get_supabase_client(),
            user_id,
            html_content=body.html_content,
            text=body.text,
            original_html_content=body.original_html_content,
            original_text=body.original_text,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PartialApplyError as exc:
        logger.warning("Direct Notion update partially failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except httpx.HTTPError as exc:
        logger.error("Notion API request failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Notion API request failed"
        ) from exc
