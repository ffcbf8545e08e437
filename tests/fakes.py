"""In-memory stand-in for DailyStore used by reconciliation tests."""

from typing import Any

MOCK_USER_ID = "user-1"


class FakeStore:
    """Dict-backed implementation of the DailyStore interface."""

    def __init__(self) -> None:
        self.highlights: list[dict[str, Any]] = []
        self.buckets: list[dict[str, Any]] = []
        self.assignments: list[dict[str, Any]] = []
        self.marks: list[dict[str, Any]] = []
        self._next_id = 0

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    # -- seeding helpers ---------------------------------------------------

    def add_highlight(
        self,
        hid: str,
        text: str = "x",
        owner: str = MOCK_USER_ID,
        archived: bool = False,
    ) -> None:
        self.highlights.append(
            {"id": hid, "text": text, "html_content": None, "archived": archived, "user_id": owner}
        )

    def add_assignment(
        self, owner: str, day: str, hid: str, rating: str | None = None
    ) -> dict[str, Any]:
        bucket = self.create_bucket(owner, day)
        row = {
            "id": self._new_id("dsh"),
            "daily_summary_id": bucket["id"],
            "highlight_id": hid,
            "rating": rating,
        }
        self.assignments.append(row)
        return row

    def add_mark(self, hid: str, token: str) -> None:
        self.marks.append({"id": self._new_id("mark"), "highlight_id": hid, "month_year": token})

    def ids_on(self, owner: str, day: str) -> list[str]:
        bucket_ids = {b["id"] for b in self.buckets if b["user_id"] == owner and b["date"] == day}
        return [a["highlight_id"] for a in self.assignments if a["daily_summary_id"] in bucket_ids]

    def days_of(self, owner: str, hid: str) -> list[str]:
        by_id = {b["id"]: b["date"] for b in self.buckets if b["user_id"] == owner}
        return sorted(
            by_id[a["daily_summary_id"]]
            for a in self.assignments
            if a["highlight_id"] == hid and a["daily_summary_id"] in by_id
        )

    # -- DailyStore interface ----------------------------------------------

    def list_highlights(self, owner: str, include_archived: bool = False) -> list[dict[str, Any]]:
        return [
            dict(h)
            for h in self.highlights
            if h["user_id"] == owner and (include_archived or not h["archived"])
        ]

    def list_owner_ids(self) -> list[str]:
        return sorted({h["user_id"] for h in self.highlights if not h["archived"]})

    def list_mark_rows(self, month_token: str, highlight_ids: list[str]) -> list[dict[str, Any]]:
        wanted = set(highlight_ids)
        return [
            dict(m)
            for m in self.marks
            if m["month_year"] == month_token and m["highlight_id"] in wanted
        ]

    def list_marked(self, month_token: str, highlight_ids: list[str]) -> set[str]:
        return {m["highlight_id"] for m in self.list_mark_rows(month_token, highlight_ids)}

    def upsert_marks(self, month_token: str, highlight_ids: list[str]) -> None:
        existing = self.list_marked(month_token, highlight_ids)
        for hid in highlight_ids:
            if hid not in existing:
                self.add_mark(hid, month_token)

    def delete_marks(self, month_token: str, highlight_ids: list[str]) -> None:
        wanted = set(highlight_ids)
        self.marks = [
            m
            for m in self.marks
            if not (m["month_year"] == month_token and m["highlight_id"] in wanted)
        ]

    def delete_mark_rows(self, ids: list[str]) -> None:
        wanted = set(ids)
        self.marks = [m for m in self.marks if m["id"] not in wanted]

    def list_buckets(self, owner: str, start: str, end: str) -> list[dict[str, Any]]:
        rows = [
            {"id": b["id"], "date": b["date"]}
            for b in self.buckets
            if b["user_id"] == owner and start <= b["date"] <= end
        ]
        return sorted(rows, key=lambda b: b["date"])

    def list_buckets_after(self, owner: str, day: str) -> list[dict[str, Any]]:
        rows = [
            {"id": b["id"], "date": b["date"]}
            for b in self.buckets
            if b["user_id"] == owner and b["date"] > day
        ]
        return sorted(rows, key=lambda b: b["date"])

    def create_bucket(self, owner: str, day: str) -> dict[str, Any]:
        for bucket in self.buckets:
            if bucket["user_id"] == owner and bucket["date"] == day:
                return {"id": bucket["id"], "date": bucket["date"]}
        bucket = {"id": self._new_id("ds"), "user_id": owner, "date": day}
        self.buckets.append(bucket)
        return {"id": bucket["id"], "date": day}

    def delete_buckets(self, ids: list[str]) -> None:
        wanted = set(ids)
        self.buckets = [b for b in self.buckets if b["id"] not in wanted]
        self.assignments = [a for a in self.assignments if a["daily_summary_id"] not in wanted]

    def list_assignments(self, bucket_ids: list[str]) -> list[dict[str, Any]]:
        wanted = set(bucket_ids)
        return [dict(a) for a in self.assignments if a["daily_summary_id"] in wanted]

    def upsert_assignments(self, bucket_id: str, highlight_ids: list[str]) -> None:
        existing = {
            a["highlight_id"] for a in self.assignments if a["daily_summary_id"] == bucket_id
        }
        for hid in highlight_ids:
            if hid not in existing:
                self.assignments.append(
                    {
                        "id": self._new_id("dsh"),
                        "daily_summary_id": bucket_id,
                        "highlight_id": hid,
                        "rating": None,
                    }
                )

    def delete_assignments(self, ids: list[str]) -> None:
        wanted = set(ids)
        self.assignments = [a for a in self.assignments if a["id"] not in wanted]
