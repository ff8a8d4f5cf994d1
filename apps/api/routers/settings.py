"""
Router for runtime-editable system settings.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.rate_limit import rate_limit
from services.scheduler import reschedule_daily_analysis
from services.system_settings import (
    CRON_TIME_KEY,
    get_setting_service,
    get_settings_service,
    send_test_webhook_service,
    update_setting_service,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class SettingsResponse(BaseModel):
    settings: Dict[str, str]


class SettingResponse(BaseModel):
    key: str
    value: str
    updated_at: Optional[str] = None


class UpdateSettingRequest(BaseModel):
    value: str


class TestWebhookRequest(BaseModel):
    webhook_url: Optional[str] = None


class TestWebhookResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    response: Optional[Any] = None


@router.get("", response_model=SettingsResponse)
async def list_settings(db: AsyncSession = Depends(get_db)):
    return await get_settings_service(db=db)


@router.post("/test-webhook", response_model=TestWebhookResponse)
async def send_test_webhook(
    request: TestWebhookRequest,
    _rate_limit: None = Depends(rate_limit("settings_test_webhook", limit=30, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    """Send a plain-text message to the given (or saved) Feishu webhook."""
    return await send_test_webhook_service(webhook_url=request.webhook_url, db=db)


@router.get("/{key}", response_model=SettingResponse)
async def get_setting(key: str, db: AsyncSession = Depends(get_db)):
    return await get_setting_service(key=key, db=db)


@router.put("/{key}", response_model=SettingResponse)
async def update_setting(
    key: str,
    payload: UpdateSettingRequest,
    request: Request,
    _rate_limit: None = Depends(rate_limit("settings_update", limit=120, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    result = await update_setting_service(key=key, value=payload.value, db=db)
    if key == CRON_TIME_KEY:
        reschedule_daily_analysis(getattr(request.app.state, "scheduler", None), result["value"])
    return result
