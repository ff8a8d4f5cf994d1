"""
Router for scheduled analysis reports.
"""

from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.report_store import get_scheduled_report_service, list_scheduled_reports_service

router = APIRouter()


class ScheduledReportResponse(BaseModel):
    id: int
    keyword_id: Optional[int] = None
    keyword: str
    platform: str
    analysis_result: Optional[Dict[str, Any]] = None
    feishu_pushed: bool
    feishu_push_at: Optional[str] = None
    feishu_response: Optional[Any] = None
    error: Optional[str] = None
    created_at: Optional[str] = None


class ListScheduledReportsResponse(BaseModel):
    reports: List[ScheduledReportResponse]
    total: int
    limit: int
    offset: int


@router.get("", response_model=ListScheduledReportsResponse)
async def list_scheduled_reports(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    keyword_id: Optional[int] = Query(default=None),
    platform: Optional[Literal["wechat", "xiaohongshu"]] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """List reports, newest first."""
    return await list_scheduled_reports_service(
        limit=limit,
        offset=offset,
        keyword_id=keyword_id,
        platform=platform,
        db=db,
    )


@router.get("/{report_id}", response_model=ScheduledReportResponse)
async def get_scheduled_report(report_id: int, db: AsyncSession = Depends(get_db)):
    return await get_scheduled_report_service(report_id=report_id, db=db)
