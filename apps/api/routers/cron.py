"""
Manual trigger and status for the daily analysis run.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.rate_limit import rate_limit
from services.scheduler import get_scheduler_status, run_daily_analysis_service
from services.system_settings import get_cron_time

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/daily-analysis")
async def trigger_daily_analysis(
    _rate_limit: None = Depends(rate_limit("cron_daily_analysis", limit=10, window_seconds=3600)),
):
    """Run the daily analysis now, across every enabled keyword."""
    try:
        summary = await run_daily_analysis_service()
    except HTTPException:
        raise
    except Exception:
        logger.exception("Daily analysis run crashed")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Daily analysis run failed.", "results": []},
        )

    results = summary.get("results", [])
    if not summary.get("success"):
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": summary.get("error") or "Daily analysis run failed.",
                "results": results,
            },
        )

    succeeded = sum(1 for row in results if row.get("success"))
    return {
        "success": True,
        "message": f"completed, {succeeded}/{len(results)} succeeded",
        "results": results,
    }


@router.get("/daily-analysis")
async def daily_analysis_status(request: Request, db: AsyncSession = Depends(get_db)):
    cron_time = await get_cron_time(db)
    return get_scheduler_status(getattr(request.app.state, "scheduler", None), cron_time)
