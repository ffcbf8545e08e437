"""Queue of pending Notion edits and the worker that drains it.

Edits made to highlights are recorded as add/update/delete items. A worker
claims an item with a conditional status flip so two workers never run the
same item, applies it to the owner's Notion page, and on failure schedules a
retry from :data:`BACKOFF_MINUTES` until the item runs out of retries.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, TypedDict

import httpx
from supabase import Client

from backend.config import get_settings
from backend.errors import NotFoundError, PartialApplyError, ValidationError
from backend.services.blocks import (
    MatchResult,
    apply_block_update,
    build_normalized_block_groups,
    build_search_strings,
    find_matching_blocks,
    flatten_blocks_for_sync,
    html_to_blocks,
)
from backend.services.notion import NotionClient
from backend.services.store import Row, execute
from backend.text_utils import sanitize_html

logger = logging.getLogger(__name__)

QUEUE_TABLE = "notion_sync_queue"
SETTINGS_TABLE = "user_notion_settings"

OPERATIONS = ("add", "update", "delete")

# Minutes to wait before retry N (1-based); doubles past the table, capped.
BACKOFF_MINUTES = (5, 15, 45, 120, 360)
MAX_BACKOFF_MINUTES = 7 * 24 * 60

NOT_FOUND_NOTE = "Highlight not found in Notion page"

Outcome = Literal["completed", "not_found", "retrying", "failed"]


class NotionSettings(TypedDict):
    api_key: str
    page_id: str


class EnqueueResult(TypedDict):
    enqueued: bool
    message: str
    item_id: str | None


class SyncReport(TypedDict):
    """Counts from one pass over an owner's queue."""

    processed: int
    completed: int
    not_found: int
    retrying: int
    failed: int
    skipped: int
    message: str


class FailedItem(TypedDict):
    id: str
    operation_type: str
    retry_count: int
    error_message: str | None


class QueueStatus(TypedDict):
    pending: int
    processing: int
    failed: int
    ready_to_retry: int
    permanently_failed: int
    failed_items: list[FailedItem]


class DirectUpdateResult(TypedDict):
    updated: bool
    message: str
    updated_blocks: int
    recreated_blocks: int
    deleted_blocks: int
    appended_blocks: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backoff_minutes(attempt: int) -> int:
    """Delay before the given retry attempt (1-based)."""
    if attempt <= 1:
        return BACKOFF_MINUTES[0]
    if attempt <= len(BACKOFF_MINUTES):
        return BACKOFF_MINUTES[attempt - 1]
    doublings = attempt - len(BACKOFF_MINUTES)
    # Bounded exponent; the cap is reached long before.
    return min(BACKOFF_MINUTES[-1] * 2 ** min(doublings, 16), MAX_BACKOFF_MINUTES)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def get_notion_settings(client: Client, owner: str) -> NotionSettings | None:
    """Return the owner's enabled Notion settings, or None when not configured."""
    rows = execute(
        client.table(SETTINGS_TABLE)
        .select("notion_api_key, notion_page_id, enabled")
        .eq("user_id", owner)
        .eq("enabled", True)
        .limit(1),
        "fetch Notion settings",
    )
    if not rows or not rows[0].get("notion_api_key") or not rows[0].get("notion_page_id"):
        return None
    return NotionSettings(api_key=rows[0]["notion_api_key"], page_id=rows[0]["notion_page_id"])


def list_enabled_owners(client: Client) -> list[str]:
    rows = execute(
        client.table(SETTINGS_TABLE).select("user_id").eq("enabled", True),
        "fetch Notion-enabled owners",
    )
    return sorted({str(row["user_id"]) for row in rows})


# ---------------------------------------------------------------------------
# Enqueue, claim, recovery
# ---------------------------------------------------------------------------


def enqueue(
    client: Client,
    owner: str,
    operation: str,
    highlight_id: str | None = None,
    text: str | None = None,
    html_content: str | None = None,
    original_text: str | None = None,
    original_html_content: str | None = None,
) -> EnqueueResult:
    """Record an edit for the Notion page.

    A pending add/update for the same highlight absorbs the new content so
    the latest edit wins. An item already being processed does not; a new
    row is queued so the later edit is not lost.

    Raises:
        ValidationError: If the owner or operation is invalid.
    """
    if not owner:
        raise ValidationError("Owner is required")
    if operation not in OPERATIONS:
        raise ValidationError("Invalid operation_type")

    html_content = sanitize_html(html_content) if html_content else None
    original_html_content = sanitize_html(original_html_content) if original_html_content else None

    if get_notion_settings(client, owner) is None:
        return EnqueueResult(enqueued=False, message="Notion integration not configured", item_id=None)

    now = _utcnow().isoformat()
    if operation != "delete" and highlight_id:
        existing = execute(
            client.table(QUEUE_TABLE)
            .select("id, status")
            .eq("user_id", owner)
            .eq("highlight_id", highlight_id)
            .eq("operation_type", operation)
            .in_("status", ["pending", "processing"])
            .order("created_at", desc=True)
            .limit(1),
            "fetch queued Notion edits",
        )
        if existing and existing[0]["status"] == "pending":
            item_id = str(existing[0]["id"])
            execute(
                client.table(QUEUE_TABLE)
                .update({"text": text, "html_content": html_content, "updated_at": now})
                .eq("id", item_id),
                "update queued Notion edit",
            )
            return EnqueueResult(enqueued=True, message="Updated existing pending entry", item_id=item_id)

    row: dict[str, Any] = {
        "user_id": owner,
        "highlight_id": None if operation == "delete" else highlight_id,
        "operation_type": operation,
        "text": text,
        "html_content": html_content,
        "status": "pending",
        "retry_count": 0,
        "max_retries": get_settings().sync.max_retries,
    }
    if operation == "update" and (original_text or original_html_content):
        row["original_text"] = original_text
        row["original_html_content"] = original_html_content

    inserted = execute(client.table(QUEUE_TABLE).insert(row), "queue Notion edit")
    item_id = str(inserted[0]["id"]) if inserted else None
    logger.info("Queued Notion %s for highlight %s", operation, highlight_id)
    return EnqueueResult(enqueued=True, message="Queued", item_id=item_id)


def claim_item(client: Client, item_id: str) -> bool:
    """Flip an item to processing if it is still pending or failed.

    Returns True only for the worker whose update matched the row.
    """
    rows = execute(
        client.table(QUEUE_TABLE)
        .update({"status": "processing", "updated_at": _utcnow().isoformat()})
        .eq("id", item_id)
        .in_("status", ["pending", "failed"]),
        "claim Notion sync item",
    )
    return bool(rows)


def recover_stale_items(client: Client, stale_after: timedelta | None = None) -> int:
    """Return processing items untouched for too long to pending."""
    if stale_after is None:
        stale_after = timedelta(minutes=get_settings().sync.stale_after_minutes)
    now = _utcnow()
    rows = execute(
        client.table(QUEUE_TABLE)
        .update({"status": "pending", "updated_at": now.isoformat()})
        .eq("status", "processing")
        .lt("updated_at", (now - stale_after).isoformat()),
        "recover stale Notion sync items",
    )
    if rows:
        logger.warning("Recovered %d stale Notion sync item(s)", len(rows))
    return len(rows)


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


def _separator_block() -> dict[str, Any]:
    return {"type": "paragraph", "paragraph": {"rich_text": []}}


def _is_separator(block: dict[str, Any] | None) -> bool:
    return (
        block is not None
        and block.get("type") == "paragraph"
        and not (block.get("paragraph") or {}).get("rich_text")
    )


def _log_unmatched(blocks: list[dict[str, Any]], search: tuple[str, str]) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "No block group matched %r; last groups: %r",
            search[0][:80],
            build_normalized_block_groups(blocks)[-8:],
        )


async def _apply_add(notion: NotionClient, page_id: str, item: Row) -> str | None:
    blocks = html_to_blocks(item.get("html_content") or item.get("text") or "")
    await notion.append_blocks(page_id, [*blocks, _separator_block()])
    return None


async def _apply_update(notion: NotionClient, page_id: str, item: Row) -> str | None:
    original_html = item.get("original_html_content")
    original_text = item.get("original_text")
    if not original_html and not original_text:
        return "Original text missing; nothing to match"

    search = build_search_strings(original_html, original_text)
    blocks = await notion.list_blocks(page_id)
    match = find_matching_blocks(blocks, search)
    if not match.found:
        _log_unmatched(blocks, search)
        return NOT_FOUND_NOTE

    new_blocks = flatten_blocks_for_sync(
        html_to_blocks(item.get("html_content") or item.get("text") or "")
    )
    outcome = await apply_block_update(notion, page_id, match, new_blocks)
    if outcome.failed:
        raise PartialApplyError(outcome.failed, outcome.attempted)
    return None


async def _delete_match(
    notion: NotionClient, blocks: list[dict[str, Any]], match: MatchResult
) -> int:
    """Delete the matched blocks and one adjacent separator; return failures."""
    failed = 0
    deleted_ids: set[str] = set()
    for block in match.blocks:
        parent = block.get("parent") or {}
        if parent.get("block_id") in deleted_ids:
            deleted_ids.add(block["id"])
            continue
        try:
            await notion.delete_block(block["id"])
            deleted_ids.add(block["id"])
        except httpx.HTTPError as exc:
            logger.warning("Failed to delete block %s: %s", block["id"], exc)
            failed += 1

    after = blocks[match.end + 1] if match.end + 1 < len(blocks) else None
    before = blocks[match.start - 1] if match.start > 0 else None
    separator = after if _is_separator(after) else before if _is_separator(before) else None
    if separator is not None:
        try:
            await notion.delete_block(separator["id"])
        except httpx.HTTPError as exc:
            logger.warning("Failed to delete separator %s: %s", separator["id"], exc)
    return failed


async def _apply_delete(notion: NotionClient, page_id: str, item: Row) -> str | None:
    search = build_search_strings(item.get("html_content"), item.get("text"))
    blocks = await notion.list_blocks(page_id)
    match = find_matching_blocks(blocks, search)
    if not match.found:
        _log_unmatched(blocks, search)
        return NOT_FOUND_NOTE

    failed = await _delete_match(notion, blocks, match)
    if failed:
        raise PartialApplyError(failed, len(match.blocks))
    return None


_HANDLERS = {"add": _apply_add, "update": _apply_update, "delete": _apply_delete}


def _mark_completed(client: Client, item: Row, note: str | None) -> None:
    now = _utcnow().isoformat()
    execute(
        client.table(QUEUE_TABLE)
        .update(
            {
                "status": "completed",
                "error_message": note,
                "processed_at": now,
                "updated_at": now,
            }
        )
        .eq("id", item["id"]),
        "complete Notion sync item",
    )


def _record_failure(client: Client, item: Row, exc: Exception) -> bool:
    """Store the failure; return True when another attempt is scheduled."""
    now = _utcnow()
    retry_count = int(item.get("retry_count") or 0) + 1
    max_retries = int(item.get("max_retries") or get_settings().sync.max_retries)
    will_retry = retry_count < max_retries

    next_retry_at = None
    if will_retry:
        next_retry_at = (now + timedelta(minutes=backoff_minutes(retry_count))).isoformat()

    execute(
        client.table(QUEUE_TABLE)
        .update(
            {
                "status": "failed",
                "retry_count": retry_count,
                "error_message": str(exc)[:1000],
                "last_retry_at": now.isoformat(),
                "next_retry_at": next_retry_at,
                "updated_at": now.isoformat(),
            }
        )
        .eq("id", item["id"]),
        "record Notion sync failure",
    )
    if will_retry:
        logger.warning(
            "Notion sync item %s failed (attempt %d/%d), retry at %s: %s",
            item["id"],
            retry_count,
            max_retries,
            next_retry_at,
            exc,
        )
    else:
        logger.error("Notion sync item %s failed permanently: %s", item["id"], exc)
    return will_retry


async def process_item(
    client: Client, notion: NotionClient, settings: NotionSettings, item: Row
) -> Outcome:
    """Apply one claimed item and record its outcome.

    Returns one of ``completed``, ``not_found``, ``retrying`` or ``failed``.
    """
    handler = _HANDLERS.get(item.get("operation_type", ""))
    try:
        if handler is None:
            raise ValidationError(f"Unknown operation_type {item.get('operation_type')!r}")
        note = await handler(notion, settings["page_id"], item)
    except (PartialApplyError, ValidationError, httpx.HTTPError) as exc:
        return "retrying" if _record_failure(client, item, exc) else "failed"

    _mark_completed(client, item, note)
    if note == NOT_FOUND_NOTE:
        logger.info("Notion sync item %s: %s", item["id"], note)
        return "not_found"
    return "completed"


def _due_items(client: Client, owner: str, limit: int) -> list[Row]:
    now = _utcnow().isoformat()
    return execute(
        client.table(QUEUE_TABLE)
        .select("*")
        .eq("user_id", owner)
        .or_(f"status.eq.pending,and(status.eq.failed,next_retry_at.lte.{now})")
        .order("created_at")
        .limit(limit),
        "fetch due Notion sync items",
    )


async def process_queue(
    client: Client,
    owner: str,
    settings: NotionSettings | None = None,
    batch_size: int | None = None,
) -> SyncReport:
    """Drain up to ``batch_size`` due items of one owner's queue, oldest first."""
    report = SyncReport(
        processed=0, completed=0, not_found=0, retrying=0, failed=0, skipped=0, message=""
    )
    settings = settings or get_notion_settings(client, owner)
    if settings is None:
        report["message"] = "Notion integration not configured"
        return report

    items = _due_items(client, owner, batch_size or get_settings().sync.batch_size)
    if not items:
        report["message"] = "No items to process"
        return report

    async with NotionClient(settings["api_key"]) as notion:
        for item in items:
            if not claim_item(client, str(item["id"])):
                report["skipped"] += 1
                continue
            outcome = await process_item(client, notion, settings, item)
            report["processed"] += 1
            report[outcome] += 1

    report["message"] = f"Processed {report['processed']} item(s)"
    logger.info("Notion sync for %s: %s", owner, report)
    return report


# ---------------------------------------------------------------------------
# Status and manual retry
# ---------------------------------------------------------------------------


def queue_status(client: Client, owner: str) -> QueueStatus:
    rows = execute(
        client.table(QUEUE_TABLE)
        .select("id, operation_type, status, retry_count, error_message, next_retry_at")
        .eq("user_id", owner)
        .in_("status", ["pending", "processing", "failed"]),
        "fetch Notion sync status",
    )
    now = _utcnow()
    status = QueueStatus(
        pending=0,
        processing=0,
        failed=0,
        ready_to_retry=0,
        permanently_failed=0,
        failed_items=[],
    )
    for row in rows:
        if row["status"] == "pending":
            status["pending"] += 1
        elif row["status"] == "processing":
            status["processing"] += 1
            continue
        else:
            status["failed"] += 1
            next_retry_at = row.get("next_retry_at")
            if next_retry_at is None:
                status["permanently_failed"] += 1
                status["failed_items"].append(
                    FailedItem(
                        id=str(row["id"]),
                        operation_type=row["operation_type"],
                        retry_count=int(row.get("retry_count") or 0),
                        error_message=row.get("error_message"),
                    )
                )
            elif datetime.fromisoformat(next_retry_at) <= now:
                status["ready_to_retry"] += 1
    return status


def retry_item(client: Client, owner: str, item_id: str) -> None:
    """Put a failed item back in the queue with a fresh retry budget.

    Raises:
        NotFoundError: If the owner has no failed item with that id.
    """
    rows = execute(
        client.table(QUEUE_TABLE)
        .update(
            {
                "status": "pending",
                "retry_count": 0,
                "next_retry_at": None,
                "error_message": None,
                "updated_at": _utcnow().isoformat(),
            }
        )
        .eq("id", item_id)
        .eq("user_id", owner)
        .eq("status", "failed"),
        "retry Notion sync item",
    )
    if not rows:
        raise NotFoundError(f"No failed sync item {item_id}")
    logger.info("Manual retry queued for Notion sync item %s", item_id)


# ---------------------------------------------------------------------------
# Direct update
# ---------------------------------------------------------------------------


async def update_highlight_in_notion(
    client: Client,
    owner: str,
    html_content: str | None,
    text: str | None,
    original_html_content: str | None,
    original_text: str | None,
) -> DirectUpdateResult:
    """Update one highlight on the Notion page right away, bypassing the queue.

    Raises:
        ValidationError: If no original text is given to locate the highlight.
        PartialApplyError: If some blocks could not be written.
    """
    result = DirectUpdateResult(
        updated=False,
        message="",
        updated_blocks=0,
        recreated_blocks=0,
        deleted_blocks=0,
        appended_blocks=0,
    )
    if not original_html_content and not original_text:
        raise ValidationError("Original text is required to locate the highlight")

    settings = get_notion_settings(client, owner)
    if settings is None:
        result["message"] = "Notion integration not configured"
        return result

    html_content = sanitize_html(html_content) if html_content else None
    original_html_content = sanitize_html(original_html_content) if original_html_content else None
    search = build_search_strings(original_html_content, original_text)

    async with NotionClient(settings["api_key"]) as notion:
        blocks = await notion.list_blocks(settings["page_id"])
        match = find_matching_blocks(blocks, search)
        if not match.found:
            _log_unmatched(blocks, search)
            result["message"] = NOT_FOUND_NOTE
            return result

        new_blocks = flatten_blocks_for_sync(html_to_blocks(html_content or text or ""))
        outcome = await apply_block_update(notion, settings["page_id"], match, new_blocks)

    if outcome.failed:
        raise PartialApplyError(outcome.failed, outcome.attempted)

    result.update(
        updated=True,
        message="Highlight updated in Notion",
        updated_blocks=outcome.updated,
        recreated_blocks=outcome.recreated,
        deleted_blocks=outcome.deleted,
        appended_blocks=outcome.appended,
    )
    return result
