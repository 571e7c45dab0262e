"""GET /api/home/log — recent access actions, newest first."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from kidsnet.access.engine import AccessEngine
from kidsnet.api.auth import require_api_key
from kidsnet.api.dependencies import get_engine
from kidsnet.api.schemas import AuditEntryResponse, AuditLogResponse

router = APIRouter()


@router.get("/api/home/log", response_model=AuditLogResponse)
async def list_audit_log(
    request: Request,
    limit: int = Query(default=100, ge=1, le=500),
    _api_key: str = Depends(require_api_key),
    engine: AccessEngine = Depends(get_engine),
) -> AuditLogResponse:
    records = await engine.list_audit(limit=limit)
    return AuditLogResponse(entries=[
        AuditEntryResponse(
            timestamp=r.timestamp,
            tracker=r.tracker,
            subject_name=r.subject_name,
            action=r.action,
            detail=r.detail,
        )
        for r in records
    ])
