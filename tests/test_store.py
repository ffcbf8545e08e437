"""DailyStore query tests with a mocked Supabase client."""

from unittest.mock import MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from backend.errors import PersistenceError
from backend.services.store import PAGE_SIZE, DailyStore, execute, is_completed


# --- Helpers ---


def _result(data: list[dict] | None) -> MagicMock:
    return MagicMock(data=data)


def _chain(*pages: list[dict]) -> MagicMock:
    """A query builder whose every chained call returns itself."""
    query = MagicMock()
    for name in ("select", "eq", "gt", "gte", "lte", "in_", "order", "range", "limit", "delete"):
        getattr(query, name).return_value = query
    query.execute.side_effect = [_result(page) for page in pages]
    return query


def _client_for(query: MagicMock) -> MagicMock:
    client = MagicMock()
    client.table.return_value = query
    return client


# --- is_completed ---


def test_is_completed_requires_rows_and_all_rated() -> None:
    assert is_completed([]) is False
    assert is_completed([{"rating": "good"}, {"rating": None}]) is False
    assert is_completed([{"rating": "good"}, {"rating": "great"}]) is True


# --- execute ---


def test_execute_wraps_api_errors() -> None:
    query = MagicMock()
    query.execute.side_effect = APIError({"message": "permission denied", "code": "42501"})

    with pytest.raises(PersistenceError) as exc_info:
        execute(query, "fetch highlights")

    assert exc_info.value.action == "fetch highlights"
    assert str(exc_info.value).startswith("Failed to fetch highlights")


def test_execute_wraps_transport_errors() -> None:
    query = MagicMock()
    query.execute.side_effect = httpx.ConnectError("refused")

    with pytest.raises(PersistenceError):
        execute(query, "fetch daily summaries")


def test_execute_returns_empty_list_for_none() -> None:
    query = MagicMock()
    query.execute.return_value = _result(None)
    assert execute(query, "anything") == []


# --- reads ---


def test_list_highlights_paginates_until_short_page() -> None:
    full_page = [{"id": f"h{i}"} for i in range(PAGE_SIZE)]
    query = _chain(full_page, [{"id": "last"}])
    store = DailyStore(_client_for(query))

    rows = store.list_highlights("user-1")

    assert len(rows) == PAGE_SIZE + 1
    query.range.assert_any_call(0, PAGE_SIZE - 1)
    query.range.assert_any_call(PAGE_SIZE, 2 * PAGE_SIZE - 1)
    query.eq.assert_any_call("archived", False)


def test_list_highlights_can_include_archived() -> None:
    query = _chain([{"id": "h1", "archived": True}])
    store = DailyStore(_client_for(query))

    store.list_highlights("user-1", include_archived=True)

    assert ("archived", False) not in [c.args for c in query.eq.call_args_list]


def test_list_owner_ids_is_distinct_and_sorted() -> None:
    query = _chain([{"user_id": "b"}, {"user_id": "a"}, {"user_id": "b"}])
    assert DailyStore(_client_for(query)).list_owner_ids() == ["a", "b"]


def test_list_marked_chunks_large_id_lists() -> None:
    query = _chain([{"id": 1, "highlight_id": "h1"}], [{"id": 2, "highlight_id": "h300"}])
    store = DailyStore(_client_for(query))

    marked = store.list_marked("2024-01", [f"h{i}" for i in range(350)])

    assert marked == {"h1", "h300"}
    assert query.in_.call_count == 2


# --- writes ---


def test_create_bucket_returns_existing_row() -> None:
    query = _chain([{"id": "ds-1", "date": "2024-02-01"}])
    client = _client_for(query)

    row = DailyStore(client).create_bucket("user-1", "2024-02-01")

    assert row["id"] == "ds-1"
    query.insert.assert_not_called()


def test_create_bucket_inserts_when_missing() -> None:
    query = _chain([])
    query.insert.return_value.execute.return_value = _result([{"id": "ds-9", "date": "2024-02-01"}])

    row = DailyStore(_client_for(query)).create_bucket("user-1", "2024-02-01")

    assert row["id"] == "ds-9"
    query.insert.assert_called_once_with({"user_id": "user-1", "date": "2024-02-01"})


def test_create_bucket_without_returned_row_raises() -> None:
    query = _chain([])
    query.insert.return_value.execute.return_value = _result([])

    with pytest.raises(PersistenceError):
        DailyStore(_client_for(query)).create_bucket("user-1", "2024-02-01")


def test_upsert_assignments_ignores_duplicates() -> None:
    query = MagicMock()
    query.upsert.return_value.execute.return_value = _result([])

    DailyStore(_client_for(query)).upsert_assignments("ds-1", ["h1", "h2"])

    rows = query.upsert.call_args.args[0]
    assert rows == [
        {"daily_summary_id": "ds-1", "highlight_id": "h1"},
        {"daily_summary_id": "ds-1", "highlight_id": "h2"},
    ]
    assert query.upsert.call_args.kwargs == {
        "on_conflict": "daily_summary_id,highlight_id",
        "ignore_duplicates": True,
    }


def test_delete_with_no_ids_issues_no_query() -> None:
    client = MagicMock()
    store = DailyStore(client)

    store.delete_assignments([])
    store.delete_buckets([])
    store.delete_mark_rows([])

    client.table.assert_not_called()
