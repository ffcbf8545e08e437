"""Daily assignment tests against the in-memory store."""

from datetime import date

import pytest

from backend.errors import PersistenceError, ValidationError
from backend.services.daily import (
    assign_month,
    cleanup_day,
    prepare_next_month,
    redistribute,
    repair_reviewed_marks,
    reset_month,
    reviewed_count,
)
from backend.time_utils import ClockContext
from tests.fakes import MOCK_USER_ID, FakeStore

OWNER = MOCK_USER_ID


# --- Helpers ---


def _clock(year: int, month: int, day: int) -> ClockContext:
    return ClockContext.from_date(date(year, month, day))


def _seed_highlights(store: FakeStore, count: int, owner: str = OWNER) -> list[str]:
    ids = [f"{owner}-h{i}" for i in range(count)]
    for i, hid in enumerate(ids):
        store.add_highlight(hid, text="word " * (i + 1), owner=owner)
    return ids


def _layout(store: FakeStore, ids: list[str]) -> dict[str, list[str]]:
    return {hid: store.days_of(OWNER, hid) for hid in ids}


# --- assign_month ---


@pytest.mark.asyncio
async def test_assign_places_every_active_highlight_exactly_once(store: FakeStore) -> None:
    ids = _seed_highlights(store, 12)
    store.add_highlight("archived", archived=True)
    store.add_highlight("marked")
    store.add_mark("marked", "2024-02")

    result = await assign_month(store, OWNER, 2024, 2)

    assert result["error"] is None
    assert result["assigned_count"] == 12
    for hid in ids:
        days = store.days_of(OWNER, hid)
        assert len(days) == 1
        assert days[0].startswith("2024-02-")
    assert store.days_of(OWNER, "archived") == []
    assert store.days_of(OWNER, "marked") == []


@pytest.mark.asyncio
async def test_assign_spreads_across_days(store: FakeStore) -> None:
    _seed_highlights(store, 29)

    result = await assign_month(store, OWNER, 2024, 2)

    assert len(result["buckets"]) == 29
    assert all(bucket["highlight_count"] == 1 for bucket in result["buckets"])


@pytest.mark.asyncio
async def test_assign_preserves_completed_days(store: FakeStore) -> None:
    ids = _seed_highlights(store, 6)
    store.add_assignment(OWNER, "2024-02-01", ids[0], rating="great")

    result = await assign_month(store, OWNER, 2024, 2)

    assert result["completed_days_count"] == 1
    assert result["preserved_count"] == 1
    assert store.ids_on(OWNER, "2024-02-01") == [ids[0]]
    assert store.days_of(OWNER, ids[0]) == ["2024-02-01"]


@pytest.mark.asyncio
async def test_assign_keeps_ratings_on_open_days(store: FakeStore) -> None:
    ids = _seed_highlights(store, 4)
    store.add_assignment(OWNER, "2024-02-02", ids[0], rating="good")
    store.add_assignment(OWNER, "2024-02-02", ids[1])

    result = await assign_month(store, OWNER, 2024, 2)

    assert result["completed_days_count"] == 0
    assert result["removed_count"] == 1
    assert store.days_of(OWNER, ids[0]) == ["2024-02-02"]
    assert len(store.days_of(OWNER, ids[1])) == 1
    rated = [a for a in store.assignments if a["rating"] is not None]
    assert [a["highlight_id"] for a in rated] == [ids[0]]


@pytest.mark.asyncio
async def test_assign_is_reproducible(store: FakeStore) -> None:
    ids = _seed_highlights(store, 15)

    await assign_month(store, OWNER, 2024, 3)
    first = _layout(store, ids)
    await assign_month(store, OWNER, 2024, 3)

    assert _layout(store, ids) == first


@pytest.mark.asyncio
async def test_assign_rejects_bad_input(store: FakeStore) -> None:
    with pytest.raises(ValidationError):
        await assign_month(store, OWNER, 2024, 13)
    with pytest.raises(ValidationError):
        await assign_month(store, "", 2024, 1)


@pytest.mark.asyncio
async def test_assign_reports_persistence_failure() -> None:
    class BrokenStore(FakeStore):
        def list_highlights(self, owner, include_archived=False):  # noqa: ANN001, ANN202
            raise PersistenceError("fetch highlights", "connection reset")

    result = await assign_month(BrokenStore(), OWNER, 2024, 2)

    assert result["error"] == "Failed to fetch highlights: connection reset"
    assert result["message"] == "Assignment aborted"


# --- redistribute ---


@pytest.mark.asyncio
async def test_redistribute_without_ids_is_a_no_op(store: FakeStore) -> None:
    _seed_highlights(store, 3)

    result = await redistribute(store, OWNER, _clock(2024, 2, 10))

    assert result["assigned_count"] == 0
    assert store.assignments == []


@pytest.mark.asyncio
async def test_redistribute_places_new_highlight_after_today(store: FakeStore) -> None:
    ids = _seed_highlights(store, 3)
    store.add_assignment(OWNER, "2024-02-05", ids[0])
    store.add_highlight("new")

    result = await redistribute(store, OWNER, _clock(2024, 2, 10), ["new"])

    assert result["assigned_count"] == 1
    days = store.days_of(OWNER, "new")
    assert len(days) == 1
    assert "2024-02-11" <= days[0] <= "2024-02-29"
    assert store.days_of(OWNER, ids[0]) == ["2024-02-05"]


@pytest.mark.asyncio
async def test_redistribute_skips_completed_days(store: FakeStore) -> None:
    store.add_highlight("done")
    store.add_highlight("new")
    for day in range(11, 29):
        store.add_assignment(OWNER, f"2024-02-{day:02d}", "done", rating="good")

    await redistribute(store, OWNER, _clock(2024, 2, 10), ["new"])

    assert store.days_of(OWNER, "new") == ["2024-02-29"]


@pytest.mark.asyncio
async def test_redistribute_on_last_day_dumps_and_sweeps_orphans(store: FakeStore) -> None:
    store.add_highlight("new")
    store.add_highlight("orphan")

    result = await redistribute(store, OWNER, _clock(2024, 2, 29), ["new"])

    assert result["assigned_count"] == 2
    assert store.days_of(OWNER, "new") == ["2024-02-29"]
    assert store.days_of(OWNER, "orphan") == ["2024-02-29"]


@pytest.mark.asyncio
async def test_redistribute_cascades_into_prepared_months(store: FakeStore) -> None:
    store.add_highlight("existing")
    store.add_highlight("new")
    store.add_assignment(OWNER, "2024-03-05", "existing")

    await redistribute(store, OWNER, _clock(2024, 2, 10), ["new"])

    days = store.days_of(OWNER, "new")
    assert len(days) == 2
    assert days[0].startswith("2024-02-")
    assert days[1].startswith("2024-03-")


# --- cleanup_day ---


@pytest.mark.asyncio
async def test_cleanup_moves_unrated_and_keeps_rated(store: FakeStore) -> None:
    for hid in ("kept", "a", "b"):
        store.add_highlight(hid)
    store.add_assignment(OWNER, "2024-02-10", "kept", rating="good")
    store.add_assignment(OWNER, "2024-02-10", "a")
    store.add_assignment(OWNER, "2024-02-10", "b")

    result = await cleanup_day(store, OWNER, "2024-02-10", _clock(2024, 2, 10))

    assert result["preserved_count"] == 1
    assert result["removed_count"] == 2
    assert result["redistributed_count"] == 2
    assert store.ids_on(OWNER, "2024-02-10") == ["kept"]
    for hid in ("a", "b"):
        (day,) = store.days_of(OWNER, hid)
        assert "2024-02-11" <= day <= "2024-02-29"


@pytest.mark.asyncio
async def test_cleanup_of_past_month_leaves_highlights_unplaced(store: FakeStore) -> None:
    store.add_highlight("a")
    store.add_highlight("b")
    store.add_assignment(OWNER, "2024-02-10", "a")
    store.add_assignment(OWNER, "2024-02-10", "b")

    result = await cleanup_day(store, OWNER, "2024-02-10", _clock(2024, 3, 5))

    assert result["removed_count"] == 2
    assert result["unplaced_count"] == 2
    assert store.assignments == []
    assert store.buckets == []


@pytest.mark.asyncio
async def test_cleanup_without_bucket_reports_message(store: FakeStore) -> None:
    result = await cleanup_day(store, OWNER, "2024-02-10", _clock(2024, 2, 10))
    assert result["message"] == "No daily summary for 2024-02-10"


@pytest.mark.asyncio
async def test_cleanup_rejects_malformed_date(store: FakeStore) -> None:
    with pytest.raises(ValidationError):
        await cleanup_day(store, OWNER, "02/10/2024", _clock(2024, 2, 10))


def _rows_on(store: FakeStore, day: str) -> list[tuple[str, str, str | None]]:
    bucket_ids = {b["id"] for b in store.buckets if b["user_id"] == OWNER and b["date"] == day}
    return sorted(
        (a["id"], a["highlight_id"], a["rating"])
        for a in store.assignments
        if a["daily_summary_id"] in bucket_ids
    )


def _seed_today(store: FakeStore, day: str) -> list[tuple[str, str, str | None]]:
    for hid in ("today-rated", "today-open"):
        store.add_highlight(hid)
    store.add_assignment(OWNER, day, "today-rated", rating="good")
    store.add_assignment(OWNER, day, "today-open")
    return _rows_on(store, day)


@pytest.mark.asyncio
async def test_redistribute_leaves_today_untouched(store: FakeStore) -> None:
    before = _seed_today(store, "2024-02-10")
    for i in range(6):
        store.add_highlight(f"new{i}")

    result = await redistribute(
        store, OWNER, _clock(2024, 2, 10), [f"new{i}" for i in range(6)]
    )

    assert result["error"] is None
    assert _rows_on(store, "2024-02-10") == before
    for i in range(6):
        (day,) = store.days_of(OWNER, f"new{i}")
        assert day > "2024-02-10"


@pytest.mark.asyncio
async def test_cleanup_of_later_day_leaves_today_untouched(store: FakeStore) -> None:
    before = _seed_today(store, "2024-02-10")
    for hid in ("a", "b", "c"):
        store.add_highlight(hid)
        store.add_assignment(OWNER, "2024-02-15", hid)

    result = await cleanup_day(store, OWNER, "2024-02-15", _clock(2024, 2, 10))

    assert result["removed_count"] == 3
    assert _rows_on(store, "2024-02-10") == before
    for hid in ("a", "b", "c"):
        (day,) = store.days_of(OWNER, hid)
        assert day > "2024-02-10"


# --- reset_month ---


@pytest.mark.asyncio
async def test_reset_month_clears_only_that_month(store: FakeStore) -> None:
    store.add_highlight("h")
    store.add_assignment(OWNER, "2024-02-03", "h", rating="good")
    store.add_assignment(OWNER, "2024-03-03", "h")
    store.add_mark("h", "2024-02")
    store.add_mark("h", "2024-01")

    result = await reset_month(store, OWNER, 2024, 2)

    assert result["removed_count"] == 1
    assert store.days_of(OWNER, "h") == ["2024-03-03"]
    assert [m["month_year"] for m in store.marks] == ["2024-01"]


# --- prepare_next_month ---


@pytest.mark.asyncio
async def test_prepare_next_month_skips_prepared_owners(store: FakeStore) -> None:
    _seed_highlights(store, 3, owner="user-1")
    _seed_highlights(store, 3, owner="user-2")
    store.add_assignment("user-2", "2024-02-03", "user-2-h0")

    batch = await prepare_next_month(store, _clock(2024, 1, 25))

    assert batch["month_token"] == "2024-02"
    assert batch["total_owners"] == 2
    assert batch["successful"] == 1
    assert batch["skipped"] == 1
    assert store.days_of("user-1", "user-1-h0")[0].startswith("2024-02-")

    again = await prepare_next_month(store, _clock(2024, 1, 25))
    assert again["skipped"] == 2
    assert again["successful"] == 0


@pytest.mark.asyncio
async def test_prepare_next_month_isolates_owner_failures() -> None:
    class FlakyStore(FakeStore):
        def list_buckets(self, owner, start, end):  # noqa: ANN001, ANN202
            if owner == "bad":
                raise PersistenceError("fetch daily summaries", "timeout")
            return super().list_buckets(owner, start, end)

    store = FlakyStore()
    store.add_highlight("g1", owner="good")
    store.add_highlight("b1", owner="bad")

    batch = await prepare_next_month(store, _clock(2024, 12, 24))

    assert batch["month_token"] == "2025-01"
    assert batch["successful"] == 1
    assert batch["failed"] == 1
    assert batch["errors"][0]["owner"] == "bad"


@pytest.mark.asyncio
async def test_prepare_next_month_survives_malformed_rows() -> None:
    class MalformedStore(FakeStore):
        def list_highlights(self, owner, include_archived=False):  # noqa: ANN001, ANN202
            if owner == "bad":
                raise KeyError("date")
            return super().list_highlights(owner, include_archived)

    store = MalformedStore()
    store.add_highlight("b1", owner="bad")
    store.add_highlight("g1", owner="good")

    batch = await prepare_next_month(store, _clock(2024, 12, 24))

    assert batch["successful"] == 1
    assert batch["failed"] == 1
    assert batch["errors"][0]["owner"] == "bad"
    assert store.days_of("good", "g1")[0].startswith("2025-01-")


# --- statistics ---


@pytest.mark.asyncio
async def test_reviewed_count_is_scoped_to_owner(store: FakeStore) -> None:
    store.add_highlight("h1")
    store.add_highlight("h2")
    store.add_highlight("other", owner="someone-else")
    for hid in ("h1", "h2", "other"):
        store.add_mark(hid, "2024-01")

    result = await reviewed_count(store, OWNER, "2024-01")

    assert result == {"month": "2024-01", "count": 2}


@pytest.mark.asyncio
async def test_reviewed_count_rejects_bad_token(store: FakeStore) -> None:
    with pytest.raises(ValidationError):
        await reviewed_count(store, OWNER, "2024-1")


@pytest.mark.asyncio
async def test_repair_backfills_and_removes_spurious_marks(store: FakeStore) -> None:
    for hid in ("h1", "h2", "h3", "h4"):
        store.add_highlight(hid)
    store.add_assignment(OWNER, "2024-01-05", "h1", rating="good")
    store.add_assignment(OWNER, "2024-01-05", "h2", rating="good")
    store.add_mark("h2", "2024-01")
    store.add_assignment(OWNER, "2024-02-03", "h4", rating="good")
    store.add_mark("h3", "2024-02")
    store.add_mark("h4", "2024-02")

    result = await repair_reviewed_marks(store, OWNER, "2024-01", _clock(2024, 2, 10))

    assert result["repaired"] == 1
    assert result["removed"] == 1
    assert sorted(store.list_marked("2024-01", ["h1", "h2"])) == ["h1", "h2"]
    assert store.list_marked("2024-02", ["h3", "h4"]) == {"h4"}


@pytest.mark.asyncio
async def test_repair_with_nothing_missing_reports_message(store: FakeStore) -> None:
    result = await repair_reviewed_marks(store, OWNER, "2024-01", _clock(2024, 2, 10))

    assert result["repaired"] == 0
    assert result["message"] == "No missing reviewed rows to backfill."
