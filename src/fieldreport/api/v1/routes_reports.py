from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from src.fieldreport.domain.models.report import Report
from src.fieldreport.services.session.service import SessionService, get_session_service

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/fallback")
async def list_fallback_reports(service: SessionService = Depends(get_session_service)) -> List[Dict[str, Any]]:
    """Reports kept locally because the primary store was unreachable."""

    return [
        {
            "reportId": record.get("reportId"),
            "savedToCloud": record.get("savedToCloud", False),
            "savedAt": record.get("savedAt"),
            "hasAudio": bool(record.get("audioFile")),
        }
        for record in service.fallback.pending()
    ]


@router.get("/{report_id}", response_model=Report)
async def get_report(report_id: str, service: SessionService = Depends(get_session_service)) -> Report:
    if service.store is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    report = await service.store.fetch_report(report_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    return report
