"""
Health and readiness probes.
"""

from typing import Tuple

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.future import select

from config import settings
from database import async_session_maker
from models.system_setting import SystemSetting
from services.system_settings import FEISHU_WEBHOOK_KEY

router = APIRouter()


async def _probe_database() -> Tuple[str, bool]:
    """Return (database status, whether a Feishu webhook is saved)."""
    try:
        async with async_session_maker() as db:
            await db.execute(text("SELECT 1"))
            result = await db.execute(select(SystemSetting.value).where(SystemSetting.key == FEISHU_WEBHOOK_KEY))
            webhook = result.scalar_one_or_none()
    except Exception as exc:
        return f"down: {exc}", False
    return "up", bool((webhook or "").strip())


async def _probe_redis() -> str:
    client = redis.from_url(settings.REDIS_URL)
    try:
        await client.ping()
    except Exception as exc:
        return f"down: {exc}"
    finally:
        await client.aclose()
    return "up"


@router.get("/health")
async def health_check(request: Request):
    """Dependency status. Redis being down only degrades to in-process locks and counters."""
    database, webhook_configured = await _probe_database()
    scheduler = getattr(request.app.state, "scheduler", None)
    return {
        "status": "healthy" if database == "up" else "degraded",
        "api": "up",
        "database": database,
        "redis": await _probe_redis(),
        "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
        "feishu_webhook": "configured" if webhook_configured else "missing",
        "search_api_key": "configured" if settings.SEARCH_API_KEY else "missing",
        "openai_api_key": "configured" if settings.OPENAI_API_KEY else "missing",
    }


@router.get("/health/ready")
async def readiness_check():
    """Ready when the database answers and the pipeline's external credentials are set."""
    database, webhook_configured = await _probe_database()
    missing = [name for name in ("SEARCH_API_KEY", "OPENAI_API_KEY") if not getattr(settings, name)]
    if database != "up":
        missing.append("database")
    elif not webhook_configured:
        missing.append("feishu_webhook")

    if missing:
        return JSONResponse(status_code=503, content={"ready": False, "missing": missing})
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    return {"alive": True}
