"""Thin async client for the Notion blocks API."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import httpx

from backend.config import get_settings

logger = logging.getLogger(__name__)

_NOTION_API_BASE_URL = "https://api.notion.com/v1"
_PAGE_SIZE = 100


class NotionClient:
    """Block-level operations against one Notion integration token.

    Every method raises ``httpx.HTTPError`` on transport or status failure.
    Use as an async context manager so the connection pool is closed.
    """

    def __init__(
        self,
        api_key: str,
        *,
        notion_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        sync_config = get_settings().sync
        self._client = httpx.AsyncClient(
            base_url=_NOTION_API_BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Notion-Version": notion_version or sync_config.notion_version,
                "Content-Type": "application/json",
            },
            timeout=timeout or sync_config.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> NotionClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json() if response.content else {}

    async def list_children(self, block_id: str) -> list[dict[str, Any]]:
        """Return the direct children of a block or page, following cursors."""
        results: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"page_size": _PAGE_SIZE}
            if cursor:
                params["start_cursor"] = cursor
            payload = await self._request("GET", f"/blocks/{block_id}/children", params=params)
            results.extend(payload.get("results", []))
            if not payload.get("has_more"):
                return results
            cursor = payload.get("next_cursor")

    async def list_blocks(self, page_id: str) -> list[dict[str, Any]]:
        """Return every block of a page, nested children flattened depth-first."""
        flat: list[dict[str, Any]] = []
        for block in await self.list_children(page_id):
            flat.append(block)
            if block.get("has_children"):
                flat.extend(await self.list_blocks(block["id"]))
        return flat

    async def update_block(self, block_id: str, block: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PATCH", f"/blocks/{block_id}", json=block)

    async def delete_block(self, block_id: str) -> None:
        await self._request("DELETE", f"/blocks/{block_id}")

    async def append_blocks(
        self,
        parent_id: str,
        blocks: list[dict[str, Any]],
        after: str | None = None,
    ) -> list[dict[str, Any]]:
        """Append blocks under a page or block, optionally right after a sibling."""
        body: dict[str, Any] = {"children": blocks}
        if after:
            body["after"] = after
        payload = await self._request("PATCH", f"/blocks/{parent_id}/children", json=body)
        logger.debug("Appended %d block(s) to %s", len(blocks), parent_id)
        return payload.get("results", [])
