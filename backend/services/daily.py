"""Daily review assignment: spreading highlights over the days of a month.

Every operation follows the same recipe. Load the owner's buckets and
assignments for the month, classify highlights as locked (on a completed
day), already placed, or still to place, run the balancer over the ones
still to place against the mutable days only, and write the difference.
A completed day is never touched, and neither is a rating.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from typing import TypedDict

from backend.errors import PersistenceError, ValidationError
from backend.services.balancer import (
    DayBin,
    ScoredHighlight,
    balance,
    make_bins,
    month_seed,
    score,
    shuffle_within_bins,
)
from backend.services.store import DailyStore, Row, is_completed
from backend.time_utils import (
    ClockContext,
    day_iso,
    days_in_month,
    month_bounds,
    month_token,
    next_month,
    parse_iso_date,
    parse_month_token,
    validate_month,
)

logger = logging.getLogger(__name__)


class BucketSummary(TypedDict):
    """A day touched by an operation."""

    date: str
    highlight_count: int
    total_weight: int


class ReconcileResult(TypedDict):
    """Outcome of one reconciliation operation.

    ``assigned_count`` counts every link written; ``redistributed_count`` is
    the subset that moved from another day of the same month.
    """

    year: int
    month: int
    preserved_count: int
    redistributed_count: int
    assigned_count: int
    removed_count: int
    unplaced_count: int
    completed_days_count: int
    buckets: list[BucketSummary]
    message: str
    error: str | None


class OwnerError(TypedDict):
    owner: str
    error: str


class BatchResult(TypedDict):
    """Outcome of preparing a month for every owner."""

    month_token: str
    total_owners: int
    successful: int
    skipped: int
    failed: int
    errors: list[OwnerError]


class ReviewedCount(TypedDict):
    month: str
    count: int


class RepairResult(TypedDict):
    month: str
    repaired: int
    removed: int
    message: str


def _new_result(year: int, month: int) -> ReconcileResult:
    return ReconcileResult(
        year=year,
        month=month,
        preserved_count=0,
        redistributed_count=0,
        assigned_count=0,
        removed_count=0,
        unplaced_count=0,
        completed_days_count=0,
        buckets=[],
        message="",
        error=None,
    )


def _require_owner(owner: str | None) -> str:
    if not owner:
        raise ValidationError("Owner is required")
    return owner


# ---------------------------------------------------------------------------
# Month snapshot
# ---------------------------------------------------------------------------


@dataclass
class _MonthState:
    """Buckets and assignments of one owner's month, keyed by bucket id."""

    year: int
    month: int
    bucket_days: dict[str, int] = field(default_factory=dict)
    rows_by_bucket: dict[str, list[Row]] = field(default_factory=dict)

    @property
    def days(self) -> int:
        return days_in_month(self.year, self.month)

    def add_bucket(self, bucket_id: str, day: int) -> None:
        self.bucket_days[bucket_id] = day
        self.rows_by_bucket.setdefault(bucket_id, [])

    def drop_bucket(self, bucket_id: str) -> None:
        self.bucket_days.pop(bucket_id, None)
        self.rows_by_bucket.pop(bucket_id, None)

    def bucket_for(self, day: int) -> str | None:
        for bucket_id, bucket_day in self.bucket_days.items():
            if bucket_day == day:
                return bucket_id
        return None

    def rows_for_day(self, day: int) -> list[Row]:
        return [
            row
            for bucket_id, bucket_day in self.bucket_days.items()
            if bucket_day == day
            for row in self.rows_by_bucket[bucket_id]
        ]

    def all_rows(self) -> list[Row]:
        return [row for rows in self.rows_by_bucket.values() for row in rows]

    def completed_days(self) -> set[int]:
        return {
            day
            for day in set(self.bucket_days.values())
            if is_completed(self.rows_for_day(day))
        }

    def assigned_ids(self) -> set[str]:
        return {str(row["highlight_id"]) for row in self.all_rows()}

    def rated_ids(self) -> set[str]:
        return {
            str(row["highlight_id"])
            for row in self.all_rows()
            if row.get("rating") is not None
        }

    def day_weights(self, scores: dict[str, int]) -> dict[int, int]:
        weights: dict[int, int] = {}
        for bucket_id, day in self.bucket_days.items():
            for row in self.rows_by_bucket[bucket_id]:
                weights[day] = weights.get(day, 0) + scores.get(str(row["highlight_id"]), 0)
        return weights


def _load_month(store: DailyStore, owner: str, year: int, month: int) -> _MonthState:
    start, end = month_bounds(year, month)
    state = _MonthState(year=year, month=month)
    for bucket in store.list_buckets(owner, start, end):
        state.add_bucket(str(bucket["id"]), date.fromisoformat(bucket["date"]).day)
    for row in store.list_assignments(list(state.bucket_days)):
        bucket_id = str(row["daily_summary_id"])
        if bucket_id in state.rows_by_bucket:
            state.rows_by_bucket[bucket_id].append(row)
    return state


@dataclass
class _Highlights:
    """The owner's highlights, archived included, with their weights."""

    rows: list[Row]
    scores: dict[str, int]

    @classmethod
    def load(cls, store: DailyStore, owner: str) -> _Highlights:
        rows = store.list_highlights(owner, include_archived=True)
        return cls(rows=rows, scores={str(h["id"]): score(h) for h in rows})

    def active_ids(self) -> list[str]:
        return [str(h["id"]) for h in self.rows if not h.get("archived")]


def _eligible_ids(
    store: DailyStore, highlights: _Highlights, state: _MonthState
) -> list[str]:
    """Active highlights with no mark and no rating in the month, in stable order."""
    active = highlights.active_ids()
    marked = store.list_marked(month_token(state.year, state.month), active)
    rated = state.rated_ids()
    return [hid for hid in active if hid not in marked and hid not in rated]


def _scored(ids: Iterable[str], scores: dict[str, int]) -> list[ScoredHighlight]:
    return [ScoredHighlight(id=hid, score=scores.get(hid, 0)) for hid in ids]


def _persist_bins(
    store: DailyStore,
    owner: str,
    state: _MonthState,
    bins: list[DayBin],
    result: ReconcileResult,
) -> list[str]:
    """Write the bins' contents and return the ids that were linked."""
    linked: list[str] = []
    for day_bin in bins:
        if not day_bin["highlights"]:
            continue
        day = day_bin["day"]
        iso = day_iso(state.year, state.month, day)
        bucket_id = state.bucket_for(day)
        if bucket_id is None:
            bucket_id = str(store.create_bucket(owner, iso)["id"])
            state.add_bucket(bucket_id, day)

        ids = [h["id"] for h in day_bin["highlights"]]
        store.upsert_assignments(bucket_id, ids)
        state.rows_by_bucket[bucket_id].extend(
            {"daily_summary_id": bucket_id, "highlight_id": hid, "rating": None} for hid in ids
        )
        linked.extend(ids)
        result["assigned_count"] += len(ids)
        result["buckets"].append(
            BucketSummary(
                date=iso,
                highlight_count=len(state.rows_for_day(day)),
                total_weight=day_bin["total_score"],
            )
        )
    return linked


def _place(
    store: DailyStore,
    owner: str,
    state: _MonthState,
    highlights: _Highlights,
    ids: list[str],
    candidate_days: list[int],
    result: ReconcileResult,
    *,
    dump_to_last_day: bool,
) -> list[str]:
    """Balance ``ids`` over the candidate days on top of their current load.

    With no candidate day the ids go to the month's last day when
    ``dump_to_last_day`` is set and are reported as unplaced otherwise.
    """
    if not ids:
        return []
    seed = month_seed(state.year, state.month)
    items = _scored(ids, highlights.scores)

    if candidate_days:
        weights = state.day_weights(highlights.scores)
        bins = balance(items, make_bins(candidate_days, weights), seed)
    elif dump_to_last_day:
        last_day = state.days
        bins = make_bins([last_day], state.day_weights(highlights.scores))
        for item in items:
            bins[0]["highlights"].append(item)
            bins[0]["total_score"] += item["score"]
    else:
        result["unplaced_count"] += len(ids)
        return []

    return _persist_bins(store, owner, state, shuffle_within_bins(bins, seed), result)


def _fail(result: ReconcileResult, operation: str, exc: PersistenceError) -> ReconcileResult:
    logger.error("%s failed for %04d-%02d: %s", operation, result["year"], result["month"], exc)
    result["error"] = str(exc)
    result["message"] = f"{operation} aborted"
    return result


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def assign_month(
    store: DailyStore, owner: str, year: int, month: int
) -> ReconcileResult:
    """Lay out a whole month, keeping completed days and every rating.

    Unrated assignments on days that are not completed are cleared and their
    highlights balanced again together with every eligible highlight not
    yet placed. A coverage pass then places anything a concurrent writer or
    partial failure left out.

    Raises:
        ValidationError: If the owner is missing or the month out of range.
    """
    _require_owner(owner)
    validate_month(year, month)
    result = _new_result(year, month)

    try:
        highlights = _Highlights.load(store, owner)
        state = _load_month(store, owner, year, month)
        completed = state.completed_days()
        result["completed_days_count"] = len(completed)

        cleared: list[Row] = []
        for bucket_id, day in list(state.bucket_days.items()):
            rows = state.rows_by_bucket[bucket_id]
            if day in completed:
                result["preserved_count"] += len(rows)
                continue
            kept = [r for r in rows if r.get("rating") is not None]
            cleared.extend(r for r in rows if r.get("rating") is None)
            result["preserved_count"] += len(kept)
            state.rows_by_bucket[bucket_id] = kept

        store.delete_assignments([str(r["id"]) for r in cleared])
        result["removed_count"] = len(cleared)

        empty = [bid for bid, rows in state.rows_by_bucket.items() if not rows]
        store.delete_buckets(empty)
        for bucket_id in empty:
            state.drop_bucket(bucket_id)

        placed = state.assigned_ids()
        to_place = [hid for hid in _eligible_ids(store, highlights, state) if hid not in placed]
        mutable_days = [d for d in range(1, state.days + 1) if d not in completed]
        seed = month_seed(year, month)
        bins = balance(
            _scored(to_place, highlights.scores),
            make_bins(mutable_days, state.day_weights(highlights.scores)),
            seed,
        )
        linked = _persist_bins(store, owner, state, shuffle_within_bins(bins, seed), result)
        previously = {str(r["highlight_id"]) for r in cleared}
        result["redistributed_count"] = len(previously.intersection(linked))

        # Coverage: re-read and place anything still missing.
        state = _load_month(store, owner, year, month)
        assigned = state.assigned_ids()
        missing = [hid for hid in _eligible_ids(store, highlights, state) if hid not in assigned]
        if missing:
            logger.warning(
                "Coverage pass placing %d unassigned highlight(s) for %04d-%02d",
                len(missing),
                year,
                month,
            )
            completed = state.completed_days()
            _place(
                store,
                owner,
                state,
                highlights,
                missing,
                [d for d in range(1, state.days + 1) if d not in completed],
                result,
                dump_to_last_day=False,
            )
    except PersistenceError as exc:
        return _fail(result, "Assignment", exc)

    result["message"] = (
        f"Assigned {result['assigned_count']} highlight(s) across "
        f"{len(result['buckets'])} day(s); preserved {result['preserved_count']}"
    )
    logger.info("assign_month %04d-%02d: %s", year, month, result["message"])
    return result


async def redistribute(
    store: DailyStore,
    owner: str,
    clock: ClockContext,
    new_highlight_ids: list[str] | None = None,
) -> ReconcileResult:
    """Add new highlights to the rest of the month without moving anything.

    Only days after today that are not completed receive highlights, on top
    of their current load. Without ids this is a no-op, except on the last
    day of the month where every eligible highlight with no assignment this
    month is swept in. Later months that already have buckets receive the
    same ids.

    Raises:
        ValidationError: If the owner is missing.
    """
    _require_owner(owner)
    requested = list(dict.fromkeys(str(hid) for hid in new_highlight_ids or []))
    result = _new_result(clock.year, clock.month)

    if not requested and not clock.is_last_day_of_month:
        result["message"] = "No highlights to redistribute"
        return result

    try:
        highlights = _Highlights.load(store, owner)
        state = _load_month(store, owner, clock.year, clock.month)
        completed = state.completed_days()
        result["completed_days_count"] = len(completed)
        result["preserved_count"] = len(state.all_rows())

        assigned = state.assigned_ids()
        eligible = [hid for hid in _eligible_ids(store, highlights, state) if hid not in assigned]
        eligible_set = set(eligible)
        to_place = [hid for hid in requested if hid in eligible_set]
        if clock.is_last_day_of_month:
            chosen = set(to_place)
            orphans = [hid for hid in eligible if hid not in chosen]
            if orphans:
                logger.info("Sweeping %d orphan highlight(s) on the last day", len(orphans))
            to_place.extend(orphans)

        candidates = [
            d for d in range(clock.day_of_month + 1, state.days + 1) if d not in completed
        ]
        _place(
            store,
            owner,
            state,
            highlights,
            to_place,
            candidates,
            result,
            dump_to_last_day=True,
        )

        if requested:
            _, last_day = month_bounds(clock.year, clock.month)
            later_months = sorted(
                {
                    (d.year, d.month)
                    for d in (
                        date.fromisoformat(b["date"])
                        for b in store.list_buckets_after(owner, last_day)
                    )
                }
            )
            for year, month in later_months:
                later = _load_month(store, owner, year, month)
                later_assigned = later.assigned_ids()
                later_eligible = set(_eligible_ids(store, highlights, later))
                ids = [
                    hid for hid in requested if hid in later_eligible and hid not in later_assigned
                ]
                later_completed = later.completed_days()
                linked = _place(
                    store,
                    owner,
                    later,
                    highlights,
                    ids,
                    [d for d in range(1, later.days + 1) if d not in later_completed],
                    result,
                    dump_to_last_day=True,
                )
                if linked:
                    logger.info(
                        "Cascaded %d highlight(s) into %04d-%02d", len(linked), year, month
                    )
    except PersistenceError as exc:
        return _fail(result, "Redistribution", exc)

    result["message"] = f"Added {result['assigned_count']} assignment(s)"
    return result


async def cleanup_day(
    store: DailyStore, owner: str, day: str, clock: ClockContext
) -> ReconcileResult:
    """Clear the unrated remainder of a day and re-place it later in the month.

    Rated assignments stay where they are. Removed highlights go to days after
    today that are not completed (the cleaned day excluded); those with
    nowhere to go are counted as unplaced.

    Raises:
        ValidationError: If the owner is missing or the date is malformed.
    """
    _require_owner(owner)
    target = parse_iso_date(day)
    result = _new_result(target.year, target.month)

    try:
        state = _load_month(store, owner, target.year, target.month)
        bucket_id = state.bucket_for(target.day)
        if bucket_id is None:
            result["message"] = f"No daily summary for {target.isoformat()}"
            return result

        rows = state.rows_by_bucket[bucket_id]
        rated = [r for r in rows if r.get("rating") is not None]
        unrated = [r for r in rows if r.get("rating") is None]
        result["preserved_count"] = len(rated)
        if not unrated:
            result["message"] = "Nothing to clean up"
            return result

        store.delete_assignments([str(r["id"]) for r in unrated])
        result["removed_count"] = len(unrated)
        state.rows_by_bucket[bucket_id] = rated
        if not rated:
            store.delete_buckets([bucket_id])
            state.drop_bucket(bucket_id)

        highlights = _Highlights.load(store, owner)
        assigned = state.assigned_ids()
        eligible = set(_eligible_ids(store, highlights, state))
        removed_ids = list(dict.fromkeys(str(r["highlight_id"]) for r in unrated))
        to_place = [hid for hid in removed_ids if hid in eligible and hid not in assigned]

        first_day = _first_mutable_day(target, clock)
        completed = state.completed_days()
        result["completed_days_count"] = len(completed)
        candidates = [
            d
            for d in range(first_day, state.days + 1)
            if d != target.day and d not in completed
        ]
        linked = _place(
            store,
            owner,
            state,
            highlights,
            to_place,
            candidates,
            result,
            dump_to_last_day=False,
        )
        result["redistributed_count"] = len(linked)
    except PersistenceError as exc:
        return _fail(result, "Cleanup", exc)

    result["message"] = (
        f"Removed {result['removed_count']} unrated highlight(s); "
        f"re-placed {result['redistributed_count']}, unplaced {result['unplaced_count']}"
    )
    return result


def _first_mutable_day(target: date, clock: ClockContext) -> int:
    """First day of the target's month that may still receive highlights."""
    if (target.year, target.month) == (clock.year, clock.month):
        return clock.day_of_month + 1
    if (target.year, target.month) > (clock.year, clock.month):
        return 1
    return days_in_month(target.year, target.month) + 1


async def reset_month(
    store: DailyStore, owner: str, year: int, month: int
) -> ReconcileResult:
    """Delete every assignment, bucket and reviewed mark of the month.

    Raises:
        ValidationError: If the owner is missing or the month out of range.
    """
    _require_owner(owner)
    validate_month(year, month)
    result = _new_result(year, month)

    try:
        state = _load_month(store, owner, year, month)
        rows = state.all_rows()
        store.delete_assignments([str(r["id"]) for r in rows])
        result["removed_count"] = len(rows)
        store.delete_buckets(list(state.bucket_days))

        highlight_ids = [str(h["id"]) for h in store.list_highlights(owner, include_archived=True)]
        store.delete_marks(month_token(year, month), highlight_ids)
    except PersistenceError as exc:
        return _fail(result, "Reset", exc)

    result["message"] = (
        f"Reset {month_token(year, month)}: removed {len(rows)} assignment(s) "
        f"from {len(state.bucket_days)} day(s)"
    )
    logger.info("reset_month %s for %s", month_token(year, month), owner)
    return result


async def prepare_next_month(
    store: DailyStore,
    clock: ClockContext,
    owner_ids: list[str] | None = None,
) -> BatchResult:
    """Assign the month after the clock's month for every owner.

    Owners that already have a bucket in that month are skipped, so running
    twice is harmless. One owner's failure is recorded and the batch goes on.
    """
    year, month = next_month(clock.year, clock.month)
    batch = BatchResult(
        month_token=month_token(year, month),
        total_owners=0,
        successful=0,
        skipped=0,
        failed=0,
        errors=[],
    )

    try:
        owners = owner_ids if owner_ids is not None else store.list_owner_ids()
    except PersistenceError as exc:
        logger.error("Could not list owners for %s: %s", batch["month_token"], exc)
        batch["errors"].append(OwnerError(owner="*", error=str(exc)))
        return batch

    batch["total_owners"] = len(owners)
    start, end = month_bounds(year, month)

    for owner in owners:
        try:
            if store.list_buckets(owner, start, end):
                batch["skipped"] += 1
                continue
            result = await assign_month(store, owner, year, month)
        except Exception as exc:
            logger.exception("Preparing %s failed for owner %s", batch["month_token"], owner)
            batch["failed"] += 1
            batch["errors"].append(OwnerError(owner=owner, error=str(exc)))
            continue

        if result["error"]:
            batch["failed"] += 1
            batch["errors"].append(OwnerError(owner=owner, error=result["error"]))
        else:
            batch["successful"] += 1

    logger.info(
        "Prepared %s: %d ok, %d skipped, %d failed",
        batch["month_token"],
        batch["successful"],
        batch["skipped"],
        batch["failed"],
    )
    return batch


# ---------------------------------------------------------------------------
# Reviewed-mark statistics
# ---------------------------------------------------------------------------


async def reviewed_count(store: DailyStore, owner: str, token: str) -> ReviewedCount:
    """Count the owner's highlights marked reviewed for a month.

    Raises:
        ValidationError: If the owner is missing or the token malformed.
    """
    _require_owner(owner)
    parse_month_token(token)
    highlight_ids = [str(h["id"]) for h in store.list_highlights(owner, include_archived=True)]
    return ReviewedCount(month=token, count=len(store.list_marked(token, highlight_ids)))


async def repair_reviewed_marks(
    store: DailyStore, owner: str, token: str, clock: ClockContext
) -> RepairResult:
    """Bring reviewed marks back in line with ratings.

    Backfills a mark for every highlight rated during ``token``'s month, then
    removes current-month marks of highlights with no rating this month.

    Raises:
        ValidationError: If the owner is missing or the token malformed.
    """
    _require_owner(owner)
    year, month = parse_month_token(token)

    highlight_ids = [str(h["id"]) for h in store.list_highlights(owner, include_archived=True)]
    rated = sorted(_load_month(store, owner, year, month).rated_ids())
    existing = store.list_marked(token, rated)
    to_insert = [hid for hid in rated if hid not in existing]
    store.upsert_marks(token, to_insert)

    rated_now = _load_month(store, owner, clock.year, clock.month).rated_ids()
    spurious = [
        row
        for row in store.list_mark_rows(clock.month_token, highlight_ids)
        if str(row["highlight_id"]) not in rated_now
    ]
    store.delete_mark_rows([str(row["id"]) for row in spurious])

    logger.info(
        "Repaired reviewed marks for %s: %d added, %d removed", token, len(to_insert), len(spurious)
    )
    return RepairResult(
        month=token,
        repaired=len(to_insert),
        removed=len(spurious),
        message="No missing reviewed rows to backfill." if not to_insert else "",
    )

