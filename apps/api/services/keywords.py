"""Monitored keyword registry services."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from analysis.models import Platform
from models.monitored_keyword import MonitoredKeyword
from models.scheduled_report import ScheduledReport

logger = logging.getLogger(__name__)

ALLOWED_PLATFORMS = {platform.value for platform in Platform}
MAX_KEYWORD_LENGTH = 100


def _normalize_text(value: Any) -> str:
    return str(value or "").strip()


def _normalized_keyword(value: Any) -> str:
    keyword = _normalize_text(value)
    if not keyword:
        raise HTTPException(status_code=422, detail="keyword is required.")
    if len(keyword) > MAX_KEYWORD_LENGTH:
        raise HTTPException(status_code=422, detail=f"keyword must be at most {MAX_KEYWORD_LENGTH} characters.")
    return keyword


def _normalized_platform(value: Any) -> str:
    platform = _normalize_text(value).lower()
    if platform not in ALLOWED_PLATFORMS:
        raise HTTPException(status_code=422, detail="platform must be one of wechat, xiaohongshu.")
    return platform


def _serialize_keyword(row: MonitoredKeyword) -> Dict[str, Any]:
    return {
        "id": row.id,
        "keyword": row.keyword,
        "platform": row.platform,
        "enabled": bool(row.enabled),
        "last_run_at": row.last_run_at.isoformat() if row.last_run_at else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def _get_keyword_or_404(db: AsyncSession, keyword_id: int) -> MonitoredKeyword:
    result = await db.execute(select(MonitoredKeyword).where(MonitoredKeyword.id == keyword_id))
    row = result.scalar_one_or_none()
    if row is None:
        raise HTTPException(status_code=404, detail="Keyword not found")
    return row


async def _assert_unique(
    db: AsyncSession,
    *,
    keyword: str,
    platform: str,
    exclude_id: Optional[int] = None,
) -> None:
    query = select(MonitoredKeyword.id).where(
        MonitoredKeyword.keyword == keyword,
        MonitoredKeyword.platform == platform,
    )
    if exclude_id is not None:
        query = query.where(MonitoredKeyword.id != exclude_id)
    existing = (await db.execute(query)).first()
    if existing is not None:
        raise HTTPException(
            status_code=409,
            detail=f"Keyword '{keyword}' is already monitored on {platform}.",
        )


async def _commit_unique(db: AsyncSession, *, keyword: str, platform: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent create/update of the same pair
        await db.rollback()
        raise HTTPException(
            status_code=409,
            detail=f"Keyword '{keyword}' is already monitored on {platform}.",
        ) from exc


async def create_keyword_service(*, payload: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    keyword = _normalized_keyword(payload.get("keyword"))
    platform = _normalized_platform(payload.get("platform"))
    await _assert_unique(db, keyword=keyword, platform=platform)

    now = datetime.now(timezone.utc)
    row = MonitoredKeyword(
        keyword=keyword,
        platform=platform,
        enabled=bool(payload.get("enabled", True)),
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    await _commit_unique(db, keyword=keyword, platform=platform)
    logger.info("Monitoring keyword %r on %s (id=%s)", keyword, platform, row.id)
    return _serialize_keyword(row)


async def list_keywords_service(
    *,
    platform: Optional[str],
    enabled: Optional[bool],
    db: AsyncSession,
) -> Dict[str, Any]:
    query = select(MonitoredKeyword)
    if platform:
        query = query.where(MonitoredKeyword.platform == _normalized_platform(platform))
    if enabled is not None:
        query = query.where(MonitoredKeyword.enabled.is_(bool(enabled)))
    result = await db.execute(query.order_by(MonitoredKeyword.created_at.desc(), MonitoredKeyword.id.desc()))
    keywords = [_serialize_keyword(row) for row in result.scalars().all()]
    return {"count": len(keywords), "keywords": keywords}


async def get_keyword_service(*, keyword_id: int, db: AsyncSession) -> Dict[str, Any]:
    return _serialize_keyword(await _get_keyword_or_404(db, keyword_id))


async def update_keyword_service(
    *,
    keyword_id: int,
    payload: Dict[str, Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    row = await _get_keyword_or_404(db, keyword_id)
    keyword = _normalized_keyword(payload["keyword"]) if "keyword" in payload else row.keyword
    platform = _normalized_platform(payload["platform"]) if "platform" in payload else row.platform
    if keyword != row.keyword or platform != row.platform:
        await _assert_unique(db, keyword=keyword, platform=platform, exclude_id=row.id)

    row.keyword = keyword
    row.platform = platform
    if "enabled" in payload:
        row.enabled = bool(payload["enabled"])
    row.updated_at = datetime.now(timezone.utc)
    await _commit_unique(db, keyword=keyword, platform=platform)
    return _serialize_keyword(row)


async def delete_keyword_service(*, keyword_id: int, db: AsyncSession) -> Dict[str, Any]:
    row = await _get_keyword_or_404(db, keyword_id)
    # Reports outlive their keyword; keep them with a null back-reference
    await db.execute(
        update(ScheduledReport)
        .where(ScheduledReport.keyword_id == keyword_id)
        .values(keyword_id=None)
    )
    await db.delete(row)
    await db.commit()
    logger.info("Stopped monitoring keyword %r on %s (id=%s)", row.keyword, row.platform, keyword_id)
    return {"deleted": True, "keyword_id": keyword_id}
