"""Runtime-editable system settings (notification webhook and run schedule)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from apscheduler.triggers.cron import CronTrigger
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.system_setting import SystemSetting
from services.feishu import check_feishu_webhook

logger = logging.getLogger(__name__)

FEISHU_WEBHOOK_KEY = "feishu_webhook"
CRON_TIME_KEY = "cron_time"
SETTING_KEYS = (FEISHU_WEBHOOK_KEY, CRON_TIME_KEY)


def _setting_defaults() -> Dict[str, str]:
    return {
        FEISHU_WEBHOOK_KEY: (settings.FEISHU_WEBHOOK_URL or "").strip(),
        CRON_TIME_KEY: (settings.DEFAULT_CRON_TIME or "0 8 * * *").strip(),
    }


def validate_cron_expression(value: str) -> str:
    expression = " ".join(str(value or "").split())
    if len(expression.split(" ")) != 5:
        raise HTTPException(status_code=422, detail="cron_time must be a 5-field crontab expression.")
    try:
        CronTrigger.from_crontab(expression, timezone=settings.SCHEDULER_TIMEZONE)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"cron_time is invalid: {exc}") from exc
    return expression


def validate_webhook_url(value: str) -> str:
    url = str(value or "").strip()
    if not url:
        # Empty clears the webhook, which disables scheduled runs
        return ""
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise HTTPException(status_code=422, detail="feishu_webhook must be an http(s) URL.")
    return url


_VALIDATORS = {
    FEISHU_WEBHOOK_KEY: validate_webhook_url,
    CRON_TIME_KEY: validate_cron_expression,
}


def _serialize_setting(row: SystemSetting) -> Dict[str, Any]:
    return {
        "key": row.key,
        "value": row.value or "",
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def seed_default_settings(db: AsyncSession) -> None:
    """Insert any missing setting rows from configuration."""
    result = await db.execute(select(SystemSetting.key))
    existing = set(result.scalars().all())
    now = datetime.now(timezone.utc)
    added = []
    for key, value in _setting_defaults().items():
        if key in existing:
            continue
        db.add(SystemSetting(key=key, value=value, updated_at=now))
        added.append(key)
    if added:
        await db.commit()
        logger.info("Seeded default settings: %s", ", ".join(added))


async def _get_setting_row(db: AsyncSession, key: str) -> Optional[SystemSetting]:
    result = await db.execute(select(SystemSetting).where(SystemSetting.key == key))
    return result.scalar_one_or_none()


async def get_settings_service(*, db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(select(SystemSetting).order_by(SystemSetting.key.asc()))
    rows = result.scalars().all()
    return {"settings": {row.key: row.value or "" for row in rows}}


async def get_setting_service(*, key: str, db: AsyncSession) -> Dict[str, Any]:
    row = await _get_setting_row(db, key)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Setting '{key}' not found")
    return _serialize_setting(row)


async def update_setting_service(*, key: str, value: Any, db: AsyncSession) -> Dict[str, Any]:
    validator = _VALIDATORS.get(key)
    if validator is None:
        raise HTTPException(status_code=400, detail=f"Unknown setting '{key}'.")
    normalized = validator(value)

    now = datetime.now(timezone.utc)
    row = await _get_setting_row(db, key)
    if row is None:
        row = SystemSetting(key=key, value=normalized, updated_at=now)
        db.add(row)
    else:
        row.value = normalized
        row.updated_at = now
    await db.commit()
    logger.info("Updated setting %s", key)
    return _serialize_setting(row)


async def get_cron_time(db: AsyncSession) -> str:
    row = await _get_setting_row(db, CRON_TIME_KEY)
    value = (row.value or "").strip() if row is not None else ""
    return value or _setting_defaults()[CRON_TIME_KEY]


async def send_test_webhook_service(*, webhook_url: Optional[str], db: AsyncSession) -> Dict[str, Any]:
    url = validate_webhook_url(webhook_url) if webhook_url else ""
    if not url:
        row = await _get_setting_row(db, FEISHU_WEBHOOK_KEY)
        url = (row.value or "").strip() if row is not None else ""
    if not url:
        raise HTTPException(status_code=400, detail="Feishu webhook is not configured.")

    result = await check_feishu_webhook(url)
    return {"success": result.success, "error": result.error, "response": result.response}
