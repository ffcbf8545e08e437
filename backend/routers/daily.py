"""Daily assignment route handlers."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse

from backend.auth import get_current_user_id
from backend.config import get_settings
from backend.errors import ValidationError
from backend.schemas.daily import (
    AssignRequest,
    BatchResponse,
    CleanupRequest,
    ReconcileResponse,
    RedistributeRequest,
    ResetMonthRequest,
)
from backend.services.daily import (
    BatchResult,
    ReconcileResult,
    assign_month,
    cleanup_day,
    prepare_next_month,
    redistribute,
    reset_month,
)
from backend.services.store import DailyStore
from backend.supabase_client import get_daily_store
from backend.time_utils import ClockContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/daily", tags=["daily"])


def get_clock() -> ClockContext:
    """Today in the application timezone."""
    return ClockContext.now()


def _respond(result: ReconcileResult) -> Any:
    """Return the result, as a 500 when the operation was aborted."""
    if result["error"]:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=dict(result),
        )
    return result


def _bad_request(exc: ValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


@router.post("/assign", response_model=ReconcileResponse)
async def assign(
    body: AssignRequest,
    user_id: str = Depends(get_current_user_id),
    store: DailyStore = Depends(get_daily_store),
) -> Any:
    """Lay out a month, keeping completed days and ratings."""
    try:
        result = await assign_month(store, user_id, body.year, body.month)
    except ValidationError as exc:
        raise _bad_request(exc) from exc
    return _respond(result)


@router.post("/redistribute", response_model=ReconcileResponse)
async def redistribute_highlights(
    body: RedistributeRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    store: DailyStore = Depends(get_daily_store),
    clock: ClockContext = Depends(get_clock),
) -> Any:
    """Place newly added highlights on the remaining days of the month."""
    ids = body.highlight_ids if body else []
    try:
        result = await redistribute(store, user_id, clock, ids)
    except ValidationError as exc:
        raise _bad_request(exc) from exc
    return _respond(result)


@router.post("/cleanup", response_model=ReconcileResponse)
async def cleanup(
    body: CleanupRequest,
    user_id: str = Depends(get_current_user_id),
    store: DailyStore = Depends(get_daily_store),
    clock: ClockContext = Depends(get_clock),
) -> Any:
    """Move a day's unrated highlights to later days."""
    try:
        result = await cleanup_day(store, user_id, body.date, clock)
    except ValidationError as exc:
        raise _bad_request(exc) from exc
    return _respond(result)


@router.post("/reset-month", response_model=ReconcileResponse)
async def reset(
    body: ResetMonthRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    store: DailyStore = Depends(get_daily_store),
    clock: ClockContext = Depends(get_clock),
) -> Any:
    """Delete every assignment and reviewed mark of a month."""
    year = body.year if body and body.year is not None else clock.year
    month = body.month if body and body.month is not None else clock.month
    try:
        result = await reset_month(store, user_id, year, month)
    except ValidationError as exc:
        raise _bad_request(exc) from exc
    return _respond(result)


@router.post("/prepare-next-month", response_model=BatchResponse)
async def prepare(
    x_cron_token: str | None = Header(default=None, alias="X-Cron-Token"),
    store: DailyStore = Depends(get_daily_store),
    clock: ClockContext = Depends(get_clock),
) -> BatchResult:
    """Assign next month for every owner that has none yet."""
    expected_token = get_settings().cron_token
    if expected_token and x_cron_token != expected_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron token",
        )

    logger.info("Prepare-next-month triggered over HTTP")
    return await prepare_next_month(store, clock)
