"""Pydantic request/response schemas for the HTTP API."""

from backend.schemas.daily import (
    AssignRequest,
    BatchResponse,
    CleanupRequest,
    RedistributeRequest,
    ReconcileResponse,
    RepairRequest,
    RepairResponse,
    ResetMonthRequest,
    ReviewedCountResponse,
)
from backend.schemas.notion import (
    DirectUpdateRequest,
    DirectUpdateResponse,
    EnqueueRequest,
    EnqueueResponse,
    QueueStatusResponse,
    SyncReportResponse,
)

__all__ = [
    "AssignRequest",
    "BatchResponse",
    "CleanupRequest",
    "DirectUpdateRequest",
    "DirectUpdateResponse",
    "EnqueueRequest",
    "EnqueueResponse",
    "QueueStatusResponse",
    "ReconcileResponse",
    "RedistributeRequest",
    "RepairRequest",
    "RepairResponse",
    "ResetMonthRequest",
    "ReviewedCountResponse",
    "SyncReportResponse",
]
