"""
Topic Radar - FastAPI Backend
Scheduled keyword analysis for WeChat and Xiaohongshu content, pushed to Feishu.
"""

import asyncio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings
from database import async_session_maker, engine, Base
import models  # noqa: F401
from routers import (
    health,
    keywords,
    reports,
    settings as settings_router,
    cron,
)
from services.scheduler import create_analysis_scheduler, run_daily_analysis_service
from services.system_settings import get_cron_time, seed_default_settings


async def _run_startup_analysis() -> None:
    try:
        summary = await run_daily_analysis_service()
        results = summary.get("results", [])
        succeeded = sum(1 for row in results if row.get("success"))
        if summary.get("success"):
            print(f"📊 Startup analysis completed, {succeeded}/{len(results)} succeeded")
        else:
            print(f"⚠️ Startup analysis skipped: {summary.get('error')}")
    except Exception as exc:
        print(f"⚠️ Startup analysis failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Topic Radar API...")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")

    cron_time = settings.DEFAULT_CRON_TIME
    try:
        async with async_session_maker() as db:
            await seed_default_settings(db)
            cron_time = await get_cron_time(db)
    except Exception as exc:
        print(f"⚠️ Settings bootstrap skipped: {exc}")

    app.state.scheduler = None
    startup_task = None
    if settings.SCHEDULER_ENABLED:
        try:
            scheduler = create_analysis_scheduler(cron_time)
            scheduler.start()
            app.state.scheduler = scheduler
            print(f"📅 Daily analysis scheduled: {cron_time} ({settings.SCHEDULER_TIMEZONE})")
        except ValueError as exc:
            print(f"⚠️ Scheduler disabled, invalid cron_time {cron_time!r}: {exc}")
        if settings.RUN_IMMEDIATELY:
            startup_task = asyncio.create_task(_run_startup_analysis())
            print("⚡ Running daily analysis once at startup.")
    yield
    # Shutdown
    if startup_task is not None and not startup_task.done():
        startup_task.cancel()
        try:
            await startup_task
        except asyncio.CancelledError:
            pass
    if app.state.scheduler is not None:
        app.state.scheduler.shutdown(wait=False)
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Topic Radar API",
    description="Monitor keywords, analyze trending content and push topic reports to Feishu",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(keywords.router, prefix="/monitored-keywords", tags=["Keywords"])
app.include_router(reports.router, prefix="/scheduled-reports", tags=["Reports"])
app.include_router(settings_router.router, prefix="/settings", tags=["Settings"])
app.include_router(cron.router, prefix="/cron", tags=["Cron"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Topic Radar API",
        "version": "0.1.0",
        "status": "running"
    }
