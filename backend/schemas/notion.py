"""Notion sync queue schemas."""

from typing import Literal

from pydantic import BaseModel, Field


class EnqueueRequest(BaseModel):
    """One highlight edit to mirror on the Notion page."""

    operation_type: Literal["add", "update", "delete"]
    highlight_id: str | None = None
    text: str | None = None
    html_content: str | None = None
    original_text: str | None = None
    original_html_content: str | None = None


class EnqueueResponse(BaseModel):
    enqueued: bool
    message: str = ""
    item_id: str | None = None


class SyncReportResponse(BaseModel):
    processed: int = 0
    completed: int = 0
    not_found: int = 0
    retrying: int = 0
    failed: int = 0
    skipped: int = 0
    message: str = ""


class FailedItemResponse(BaseModel):
    id: str
    operation_type: str
    retry_count: int
    error_message: str | None = None


class QueueStatusResponse(BaseModel):
    """Open items of the caller's queue by state."""

    pending: int
    processing: int
    failed: int
    ready_to_retry: int
    permanently_failed: int
    failed_items: list[FailedItemResponse] = Field(default_factory=list)


class DirectUpdateRequest(BaseModel):
    text: str | None = None
    html_content: str | None = None
    original_text: str | None = None
    original_html_content: str | None = None


class DirectUpdateResponse(BaseModel):
    updated: bool
    message: str = ""
    updated_blocks: int = 0
    recreated_blocks: int = 0
    deleted_blocks: int = 0
    appended_blocks: int = 0
