"""Supabase persistence for highlights, day buckets, assignments and marks.

Every read is paginated and every ``in`` filter is chunked so large
collections stay under PostgREST's row and URL limits. Failures from the
client surface as :class:`PersistenceError`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from typing import Any, cast

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from backend.errors import PersistenceError

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
CHUNK_SIZE = 200

Row = dict[str, Any]


def is_completed(assignments: Iterable[Row]) -> bool:
    """A bucket is completed when it has assignments and all are rated."""
    rows = list(assignments)
    return bool(rows) and all(row.get("rating") is not None for row in rows)


def execute(query: Any, action: str) -> list[Row]:
    """Run a PostgREST query, wrapping client failures in PersistenceError."""
    try:
        result = query.execute()
    except (APIError, httpx.HTTPError) as exc:
        logger.error("Supabase call failed (%s): %s", action, exc)
        raise PersistenceError(action, str(exc)) from exc
    return cast(list[Row], result.data or [])


def _chunks(values: list[Any], size: int = CHUNK_SIZE) -> Iterator[list[Any]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class DailyStore:
    """Table access used by the reconciler and the statistics endpoints."""

    def __init__(self, client: Client) -> None:
        self._client = client

    # -- plumbing ----------------------------------------------------------

    def _paginate(self, build: Callable[[], Any], action: str) -> list[Row]:
        rows: list[Row] = []
        start = 0
        while True:
            page = execute(build().range(start, start + PAGE_SIZE - 1), action)
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            start += PAGE_SIZE

    # -- highlights --------------------------------------------------------

    def list_highlights(self, owner: str, include_archived: bool = False) -> list[Row]:
        def build() -> Any:
            query = (
                self._client.table("highlights")
                .select("id, text, html_content, archived")
                .eq("user_id", owner)
            )
            if not include_archived:
                query = query.eq("archived", False)
            return query.order("id")

        return self._paginate(build, "fetch highlights")

    def list_owner_ids(self) -> list[str]:
        """Distinct owners that have at least one non-archived highlight."""
        rows = self._paginate(
            lambda: self._client.table("highlights")
            .select("user_id")
            .eq("archived", False)
            .order("user_id"),
            "fetch highlight owners",
        )
        return sorted({str(row["user_id"]) for row in rows})

    # -- reviewed marks ----------------------------------------------------

    def list_mark_rows(self, month_token: str, highlight_ids: list[str]) -> list[Row]:
        rows: list[Row] = []
        for chunk in _chunks(highlight_ids):
            rows.extend(
                execute(
                    self._client.table("highlight_months_reviewed")
                    .select("id, highlight_id")
                    .eq("month_year", month_token)
                    .in_("highlight_id", chunk),
                    "fetch reviewed marks",
                )
            )
        return rows

    def list_marked(self, month_token: str, highlight_ids: list[str]) -> set[str]:
        """Ids among ``highlight_ids`` that carry a mark for the month."""
        return {str(row["highlight_id"]) for row in self.list_mark_rows(month_token, highlight_ids)}

    def upsert_marks(self, month_token: str, highlight_ids: list[str]) -> None:
        for chunk in _chunks(highlight_ids):
            rows = [{"highlight_id": hid, "month_year": month_token} for hid in chunk]
            execute(
                self._client.table("highlight_months_reviewed").upsert(
                    rows, on_conflict="highlight_id,month_year", ignore_duplicates=True
                ),
                "backfill reviewed marks",
            )

    def delete_marks(self, month_token: str, highlight_ids: list[str]) -> None:
        for chunk in _chunks(highlight_ids):
            execute(
                self._client.table("highlight_months_reviewed")
                .delete()
                .eq("month_year", month_token)
                .in_("highlight_id", chunk),
                "delete reviewed marks",
            )

    def delete_mark_rows(self, ids: list[str]) -> None:
        for chunk in _chunks(ids):
            execute(
                self._client.table("highlight_months_reviewed").delete().in_("id", chunk),
                "delete reviewed marks",
            )

    # -- buckets -----------------------------------------------------------

    def list_buckets(self, owner: str, start: str, end: str) -> list[Row]:
        """Buckets dated within [start, end], oldest first."""
        return self._paginate(
            lambda: self._client.table("daily_summaries")
            .select("id, date")
            .eq("user_id", owner)
            .gte("date", start)
            .lte("date", end)
            .order("date"),
            "fetch daily summaries",
        )

    def list_buckets_after(self, owner: str, day: str) -> list[Row]:
        """Buckets dated strictly after ``day``, oldest first."""
        return self._paginate(
            lambda: self._client.table("daily_summaries")
            .select("id, date")
            .eq("user_id", owner)
            .gt("date", day)
            .order("date"),
            "fetch future daily summaries",
        )

    def create_bucket(self, owner: str, day: str) -> Row:
        """Return the owner's bucket for ``day``, creating it when missing."""
        existing = execute(
            self._client.table("daily_summaries")
            .select("id, date")
            .eq("user_id", owner)
            .eq("date", day)
            .limit(1),
            "fetch daily summary",
        )
        if existing:
            return existing[0]
        created = execute(
            self._client.table("daily_summaries").insert({"user_id": owner, "date": day}),
            "create daily summary",
        )
        if not created:
            raise PersistenceError("create daily summary", f"no row returned for {day}")
        return created[0]

    def delete_buckets(self, ids: list[str]) -> None:
        for chunk in _chunks(ids):
            execute(
                self._client.table("daily_summaries").delete().in_("id", chunk),
                "delete daily summaries",
            )

    # -- assignments -------------------------------------------------------

    def list_assignments(self, bucket_ids: list[str]) -> list[Row]:
        rows: list[Row] = []
        for chunk in _chunks(bucket_ids):
            rows.extend(
                self._paginate(
                    lambda chunk=chunk: self._client.table("daily_summary_highlights")
                    .select("id, daily_summary_id, highlight_id, rating")
                    .in_("daily_summary_id", chunk)
                    .order("id"),
                    "fetch daily summary highlights",
                )
            )
        return rows

    def upsert_assignments(self, bucket_id: str, highlight_ids: list[str]) -> None:
        """Link highlights to a bucket; existing links are left untouched."""
        for chunk in _chunks(highlight_ids):
            rows = [{"daily_summary_id": bucket_id, "highlight_id": hid} for hid in chunk]
            execute(
                self._client.table("daily_summary_highlights").upsert(
                    rows,
                    on_conflict="daily_summary_id,highlight_id",
                    ignore_duplicates=True,
                ),
                "assign highlights",
            )

    def delete_assignments(self, ids: list[str]) -> None:
        for chunk in _chunks(ids):
            execute(
                self._client.table("daily_summary_highlights").delete().in_("id", chunk),
                "delete daily summary highlights",
            )
