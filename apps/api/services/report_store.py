"""Report persistence and report query services."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.monitored_keyword import MonitoredKeyword
from models.scheduled_report import ScheduledReport
from models.system_setting import SystemSetting

logger = logging.getLogger(__name__)

MAX_REPORT_PAGE_SIZE = 100


class ReportStore:
    """Storage handle used by the run orchestrator. Every write commits."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def insert_report(
        self,
        *,
        keyword_id: Optional[int],
        keyword: str,
        platform: str,
        analysis_result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> int:
        values = {
            "keyword": keyword,
            "platform": platform,
            "analysis_result": analysis_result,
            "feishu_pushed": False,
            "error": error,
            "created_at": created_at or datetime.now(timezone.utc),
        }
        try:
            return await self._add_report(keyword_id=keyword_id, **values)
        except IntegrityError:
            await self.db.rollback()
            if keyword_id is None or await self._keyword_exists(keyword_id):
                raise
        # Keyword was deleted mid-run; keep the report like any other orphaned history
        logger.info("Keyword id=%s was deleted during the run, storing %r report without it", keyword_id, keyword)
        return await self._add_report(keyword_id=None, **values)

    async def _add_report(self, **values: Any) -> int:
        row = ScheduledReport(**values)
        self.db.add(row)
        await self.db.commit()
        return int(row.id)

    async def _keyword_exists(self, keyword_id: int) -> bool:
        result = await self.db.execute(select(MonitoredKeyword.id).where(MonitoredKeyword.id == keyword_id))
        return result.first() is not None

    async def update_delivery(
        self,
        report_id: int,
        *,
        pushed: bool,
        pushed_at: Optional[datetime] = None,
        response: Optional[Any] = None,
        error: Optional[str] = None,
    ) -> None:
        await self.db.execute(
            update(ScheduledReport)
            .where(ScheduledReport.id == report_id)
            .values(
                feishu_pushed=bool(pushed),
                feishu_push_at=pushed_at,
                feishu_response=response,
                error=error,
            )
        )
        await self.db.commit()

    async def list_enabled_keywords(self) -> List[MonitoredKeyword]:
        result = await self.db.execute(
            select(MonitoredKeyword)
            .where(MonitoredKeyword.enabled.is_(True))
            .order_by(MonitoredKeyword.id.asc())
        )
        return list(result.scalars().all())

    async def touch_last_run(self, keyword_id: int, at: datetime) -> None:
        await self.db.execute(
            update(MonitoredKeyword)
            .where(MonitoredKeyword.id == keyword_id)
            .values(last_run_at=at, updated_at=at)
        )
        await self.db.commit()

    async def get_setting(self, key: str) -> Optional[str]:
        result = await self.db.execute(select(SystemSetting.value).where(SystemSetting.key == key))
        value = result.scalar_one_or_none()
        if value is None:
            return None
        value = str(value).strip()
        return value or None


def _serialize_report(row: ScheduledReport) -> Dict[str, Any]:
    return {
        "id": row.id,
        "keyword_id": row.keyword_id,
        "keyword": row.keyword,
        "platform": row.platform,
        "analysis_result": row.analysis_result if isinstance(row.analysis_result, dict) else None,
        "feishu_pushed": bool(row.feishu_pushed),
        "feishu_push_at": row.feishu_push_at.isoformat() if row.feishu_push_at else None,
        "feishu_response": row.feishu_response,
        "error": row.error,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


async def list_scheduled_reports_service(
    *,
    limit: int,
    offset: int,
    keyword_id: Optional[int],
    platform: Optional[str],
    db: AsyncSession,
) -> Dict[str, Any]:
    page_size = max(1, min(int(limit), MAX_REPORT_PAGE_SIZE))
    start = max(0, int(offset))

    query = select(ScheduledReport)
    count_query = select(func.count()).select_from(ScheduledReport)
    if keyword_id is not None:
        query = query.where(ScheduledReport.keyword_id == keyword_id)
        count_query = count_query.where(ScheduledReport.keyword_id == keyword_id)
    if platform:
        query = query.where(ScheduledReport.platform == platform)
        count_query = count_query.where(ScheduledReport.platform == platform)

    total = (await db.execute(count_query)).scalar_one()
    result = await db.execute(
        query.order_by(ScheduledReport.created_at.desc(), ScheduledReport.id.desc())
        .offset(start)
        .limit(page_size)
    )
    return {
        "reports": [_serialize_report(row) for row in result.scalars().all()],
        "total": int(total or 0),
        "limit": page_size,
        "offset": start,
    }


async def get_scheduled_report_service(*, report_id: int, db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(select(ScheduledReport).where(ScheduledReport.id == report_id))
    row = result.scalar_one_or_none()
    if row is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return _serialize_report(row)
