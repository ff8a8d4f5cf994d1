"""
Daily analysis run orchestration and cron scheduling.

One run walks every enabled keyword in id order, strictly one at a time:
fetch -> aggregate -> insights (optional) -> persist -> notify -> record
delivery -> touch last_run_at. A failure inside a keyword is recorded on that
keyword's report and never reaches the next keyword; storage errors propagate.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from analysis.metrics import get_platform_analyzer
from analysis.models import AnalysisSnapshot, InsightBundle
from config import settings
from database import async_session_maker
from services.connectors import ContentFetcher, DeliveryResult, get_content_fetcher
from services.feishu import FeishuReport, push_report_to_feishu
from services.insights import MAX_SHORTLIST_ITEMS, InsightRequester, get_insight_requester
from services.report_store import ReportStore
from services.run_lock import RunLock
from services.system_settings import FEISHU_WEBHOOK_KEY

logger = logging.getLogger(__name__)

DAILY_ANALYSIS_JOB_ID = "daily-analysis"
RUN_IN_PROGRESS_ERROR = "analysis run already in progress"
WEBHOOK_MISSING_ERROR = "Feishu webhook is not configured"
RUN_LOCK_LOST_ERROR = "analysis run lock was lost"

Notifier = Callable[[str, FeishuReport], Awaitable[DeliveryResult]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _describe_error(exc: BaseException, *, timeout: Optional[float] = None, stage: str = "") -> str:
    if isinstance(exc, asyncio.TimeoutError):
        suffix = f" after {timeout:g}s" if timeout else ""
        return f"{stage} timed out{suffix}".strip()
    message = str(exc).strip()
    return message or exc.__class__.__name__


class DailyAnalysisRunner:
    """Drives one complete run across all enabled keywords."""

    def __init__(
        self,
        store: ReportStore,
        fetcher: ContentFetcher,
        insight_requester: InsightRequester,
        notifier: Notifier,
        *,
        app_url: str = "",
        clock: Callable[[], datetime] = _utc_now,
        fetch_timeout: float = 30.0,
        insight_timeout: float = 180.0,
        run_lock: Optional[RunLock] = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.insight_requester = insight_requester
        self.notifier = notifier
        self.app_url = (app_url or "").rstrip("/")
        self.clock = clock
        self.fetch_timeout = fetch_timeout
        self.insight_timeout = insight_timeout
        self.run_lock = run_lock or RunLock()

    def _report_url(self, report_id: int) -> Optional[str]:
        if not self.app_url:
            return None
        return f"{self.app_url}/reports/{report_id}"

    async def run(self) -> Dict[str, Any]:
        if not await self.run_lock.acquire():
            logger.warning("Skipping daily analysis: %s", RUN_IN_PROGRESS_ERROR)
            return {"success": False, "results": [], "error": RUN_IN_PROGRESS_ERROR}
        try:
            return await self._run_locked()
        finally:
            await self.run_lock.release()

    async def _run_locked(self) -> Dict[str, Any]:
        logger.info("========== Daily analysis run started ==========")
        webhook_url = await self.store.get_setting(FEISHU_WEBHOOK_KEY)
        if not webhook_url:
            logger.error("Daily analysis aborted: %s", WEBHOOK_MISSING_ERROR)
            return {"success": False, "results": [], "error": WEBHOOK_MISSING_ERROR}

        # Plain values: a rollback inside the loop expires loaded rows
        keywords = [(row.id, row.keyword, row.platform) for row in await self.store.list_enabled_keywords()]
        logger.info("Found %s enabled keywords", len(keywords))

        results: List[Dict[str, Any]] = []
        for index, (keyword_id, text, platform) in enumerate(keywords, start=1):
            logger.info("[%s/%s] Analyzing %r on %s", index, len(keywords), text, platform)
            results.append(await self._run_keyword(keyword_id, text, platform, webhook_url))
            if not await self.run_lock.refresh():
                logger.error("Daily analysis stopped after %s/%s keywords: %s", index, len(keywords), RUN_LOCK_LOST_ERROR)
                return {"success": False, "results": results, "error": RUN_LOCK_LOST_ERROR}

        succeeded = sum(1 for row in results if row["success"])
        logger.info("========== Daily analysis run finished: %s/%s succeeded ==========", succeeded, len(results))
        return {"success": True, "results": results}

    async def _run_keyword(self, keyword_id: int, text: str, platform: str, webhook_url: str) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"keyword": text, "platform": platform, "success": False, "pushed": False}

        try:
            items = await asyncio.wait_for(self.fetcher.search(text, platform), timeout=self.fetch_timeout)
            analyzer = get_platform_analyzer(platform)
            aggregate = analyzer.aggregate(items)
            shortlist = analyzer.build_shortlist(items)
        except Exception as exc:
            error = _describe_error(exc, timeout=self.fetch_timeout, stage="content fetch")
            logger.warning("Content fetch for %r (%s) failed: %s", text, platform, error)
            report_id = await self.store.insert_report(
                keyword_id=keyword_id,
                keyword=text,
                platform=platform,
                analysis_result=None,
                error=error,
                created_at=self.clock(),
            )
            await self.store.touch_last_run(keyword_id, self.clock())
            entry.update(error=error, report_id=report_id)
            return entry

        insights = await self._request_insights(text, platform, shortlist)
        snapshot = AnalysisSnapshot(
            stats=aggregate.stats,
            top_by_count=aggregate.top_by_count,
            top_by_ratio=aggregate.top_by_ratio,
            insights=insights,
        )
        report_id = await self.store.insert_report(
            keyword_id=keyword_id,
            keyword=text,
            platform=platform,
            analysis_result=snapshot.model_dump(mode="json"),
            created_at=self.clock(),
        )
        entry.update(success=True, report_id=report_id)

        delivery = await self._notify(
            webhook_url,
            FeishuReport(
                keyword=text,
                platform=platform,
                report_id=report_id,
                report_url=self._report_url(report_id),
                stats=aggregate.stats,
                top_by_count=aggregate.top_by_count,
                top_by_ratio=aggregate.top_by_ratio,
                insights=insights,
            ),
        )
        await self.store.update_delivery(
            report_id,
            pushed=delivery.success,
            pushed_at=self.clock() if delivery.success else None,
            response=delivery.response,
            error=None if delivery.success else delivery.error,
        )
        entry["pushed"] = delivery.success
        if not delivery.success:
            entry["error"] = delivery.error

        await self.store.touch_last_run(keyword_id, self.clock())
        return entry

    async def _request_insights(self, keyword: str, platform: str, shortlist) -> Optional[InsightBundle]:
        if not shortlist:
            return None
        try:
            bundle = await asyncio.wait_for(
                self.insight_requester.analyze(keyword, platform, shortlist[:MAX_SHORTLIST_ITEMS]),
                timeout=self.insight_timeout,
            )
            if not isinstance(bundle, InsightBundle):
                bundle = InsightBundle.model_validate(bundle)
            return bundle
        except Exception as exc:
            logger.warning(
                "Insight generation for %r (%s) failed, keeping report without insights: %s",
                keyword,
                platform,
                _describe_error(exc, timeout=self.insight_timeout, stage="insight request"),
            )
            return None

    async def _notify(self, webhook_url: str, report: FeishuReport) -> DeliveryResult:
        try:
            return await self.notifier(webhook_url, report)
        except Exception as exc:
            logger.exception("Notifier raised for %r", report.keyword)
            return DeliveryResult(success=False, error=_describe_error(exc))


async def run_daily_analysis_service(
    *,
    fetcher: Optional[ContentFetcher] = None,
    insight_requester: Optional[InsightRequester] = None,
    notifier: Optional[Notifier] = None,
    run_lock: Optional[RunLock] = None,
) -> Dict[str, Any]:
    """Run entry point shared by the HTTP trigger, the in-app cron job and the worker."""
    async with async_session_maker() as db:
        runner = DailyAnalysisRunner(
            ReportStore(db),
            fetcher or get_content_fetcher(),
            insight_requester or get_insight_requester(),
            notifier or push_report_to_feishu,
            app_url=settings.APP_URL,
            fetch_timeout=settings.FETCH_TIMEOUT_SECONDS,
            insight_timeout=settings.INSIGHT_TIMEOUT_SECONDS,
            run_lock=run_lock or RunLock(async_session_maker),
        )
        return await runner.run()


async def _scheduled_daily_analysis() -> None:
    try:
        summary = await run_daily_analysis_service()
    except Exception:
        logger.exception("Scheduled daily analysis crashed")
        return
    results = summary.get("results", [])
    succeeded = sum(1 for row in results if row.get("success"))
    if summary.get("success"):
        logger.info("Scheduled daily analysis completed, %s/%s succeeded", succeeded, len(results))
    else:
        logger.error("Scheduled daily analysis failed: %s", summary.get("error"))


def build_cron_trigger(cron_time: str) -> CronTrigger:
    return CronTrigger.from_crontab(cron_time, timezone=settings.SCHEDULER_TIMEZONE)


def create_analysis_scheduler(cron_time: str) -> AsyncIOScheduler:
    """Build a scheduler with the daily analysis job registered (not started)."""
    scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
    scheduler.add_job(
        _scheduled_daily_analysis,
        trigger=build_cron_trigger(cron_time),
        id=DAILY_ANALYSIS_JOB_ID,
        name="Daily keyword analysis",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    return scheduler


def reschedule_daily_analysis(scheduler: Optional[AsyncIOScheduler], cron_time: str) -> bool:
    if scheduler is None or scheduler.get_job(DAILY_ANALYSIS_JOB_ID) is None:
        return False
    scheduler.reschedule_job(DAILY_ANALYSIS_JOB_ID, trigger=build_cron_trigger(cron_time))
    logger.info("Daily analysis rescheduled to %r (%s)", cron_time, settings.SCHEDULER_TIMEZONE)
    return True


def get_scheduler_status(scheduler: Optional[AsyncIOScheduler], cron_time: Optional[str]) -> Dict[str, Any]:
    job = scheduler.get_job(DAILY_ANALYSIS_JOB_ID) if scheduler is not None else None
    next_run = getattr(job, "next_run_time", None) if job is not None else None
    return {
        "enabled": bool(settings.SCHEDULER_ENABLED),
        "running": bool(scheduler is not None and scheduler.running),
        "cron_time": cron_time,
        "timezone": settings.SCHEDULER_TIMEZONE,
        "next_run_at": next_run.isoformat() if next_run else None,
    }
