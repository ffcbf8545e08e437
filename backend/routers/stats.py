"""Reviewed-mark statistics route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from backend.auth import get_current_user_id
from backend.errors import ValidationError
from backend.routers.daily import get_clock
from backend.schemas.daily import RepairRequest, RepairResponse, ReviewedCountResponse
from backend.services.daily import (
    RepairResult,
    ReviewedCount,
    repair_reviewed_marks,
    reviewed_count,
)
from backend.services.store import DailyStore
from backend.supabase_client import get_daily_store
from backend.time_utils import ClockContext, month_token, previous_month

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stats", tags=["stats"])


def _default_month(clock: ClockContext) -> str:
    return month_token(*previous_month(clock.year, clock.month))


@router.get("/reviewed-count", response_model=ReviewedCountResponse)
async def get_reviewed_count(
    month: str | None = Query(default=None, description="YYYY-MM; defaults to last month"),
    user_id: str = Depends(get_current_user_id),
    store: DailyStore = Depends(get_daily_store),
    clock: ClockContext = Depends(get_clock),
) -> ReviewedCount:
    """Return how many highlights were reviewed in a month."""
    try:
        return await reviewed_count(store, user_id, month or _default_month(clock))
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("/reviewed-count/repair", response_model=RepairResponse)
async def repair(
    body: RepairRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    store: DailyStore = Depends(get_daily_store),
    clock: ClockContext = Depends(get_clock),
) -> RepairResult:
    """Backfill reviewed marks from ratings and drop spurious ones."""
    token = body.month if body and body.month else _default_month(clock)
    try:
        return await repair_reviewed_marks(store, user_id, token, clock)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
