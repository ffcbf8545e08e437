"""Daily assignment and reviewed-mark statistics schemas."""

from pydantic import BaseModel, Field


class AssignRequest(BaseModel):
    """Month to lay out."""

    year: int
    month: int


class ResetMonthRequest(BaseModel):
    """Month to reset; defaults to the current month."""

    year: int | None = None
    month: int | None = None


class RedistributeRequest(BaseModel):
    highlight_ids: list[str] = Field(default_factory=list)


class CleanupRequest(BaseModel):
    date: str


class BucketSummaryResponse(BaseModel):
    date: str
    highlight_count: int
    total_weight: int


class ReconcileResponse(BaseModel):
    """Counts and touched days of one reconciliation."""

    year: int
    month: int
    preserved_count: int = 0
    redistributed_count: int = 0
    assigned_count: int = 0
    removed_count: int = 0
    unplaced_count: int = 0
    completed_days_count: int = 0
    buckets: list[BucketSummaryResponse] = Field(default_factory=list)
    message: str = ""
    error: str | None = None


class OwnerErrorResponse(BaseModel):
    owner: str
    error: str


class BatchResponse(BaseModel):
    """Per-owner tally of a prepare-next-month run."""

    month_token: str
    total_owners: int
    successful: int
    skipped: int
    failed: int
    errors: list[OwnerErrorResponse] = Field(default_factory=list)


class ReviewedCountResponse(BaseModel):
    month: str
    count: int


class RepairRequest(BaseModel):
    """Month to repair as YYYY-MM; defaults to the previous month."""

    month: str | None = None


class RepairResponse(BaseModel):
    month: str
    repaired: int
    removed: int
    message: str = ""
