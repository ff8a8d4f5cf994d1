"""Feishu webhook delivery for scheduled analysis reports."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx
from pydantic import BaseModel

from analysis.models import ContentStats, InsightBundle, Platform, RankedArticle, TrendDirection
from config import settings
from services.connectors.types import DeliveryResult

logger = logging.getLogger(__name__)

MAX_CARD_ENTRIES = 5
PLATFORM_DISPLAY = {
    Platform.WECHAT.value: {"name": "WeChat", "emoji": "📱", "template": "blue", "unit": "articles", "reach": "reads"},
    Platform.XIAOHONGSHU.value: {"name": "Xiaohongshu", "emoji": "📕", "template": "red", "unit": "notes", "reach": "collects"},
}
TREND_EMOJI = {
    TrendDirection.RISING: "📈",
    TrendDirection.DECLINING: "📉",
}
FOOTER_NOTE = "💡 Generated by AI topic analysis from the last 7 days of popular content"


class FeishuReport(BaseModel):
    """Report data rendered into the chat card."""
    keyword: str
    platform: str
    report_id: Optional[int] = None
    report_url: Optional[str] = None
    stats: ContentStats
    top_by_count: List[RankedArticle] = []
    top_by_ratio: List[RankedArticle] = []
    insights: Optional[InsightBundle] = None


def _markdown_block(content: str) -> Dict[str, Any]:
    return {"tag": "div", "text": {"tag": "lark_md", "content": content}}


def _top_articles_markdown(articles: List[RankedArticle]) -> str:
    lines = []
    for index, article in enumerate(articles[:MAX_CARD_ENTRIES], start=1):
        title = f"[{article.title}]({article.url})" if article.url else article.title
        lines.append(
            f"**{index}. {title}**\n"
            f"   👍 {article.likes:,} | 👀 {article.reads:,} | 📊 {article.engagement}"
        )
    return "\n\n".join(lines)


def _insights_markdown(bundle: Optional[InsightBundle]) -> str:
    if bundle is None or not bundle.insights:
        return ""
    lines = []
    for index, insight in enumerate(bundle.insights[:MAX_CARD_ENTRIES], start=1):
        emoji = TREND_EMOJI.get(insight.trend, "➡️")
        lines.append(f"**{index}. {emoji} {insight.title}**\n{insight.description}")
    return "\n\n".join(lines)


def _recommended_topics_markdown(bundle: Optional[InsightBundle]) -> str:
    if bundle is None or not bundle.recommended_topics:
        return ""
    return "\n".join(
        f"{index}. {topic}" for index, topic in enumerate(bundle.recommended_topics[:MAX_CARD_ENTRIES], start=1)
    )


def build_feishu_card(report: FeishuReport, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Build the interactive message card for one report."""
    display = PLATFORM_DISPLAY.get(report.platform, PLATFORM_DISPLAY[Platform.WECHAT.value])
    current = now or datetime.now(ZoneInfo(settings.SCHEDULER_TIMEZONE))
    stats = report.stats

    elements: List[Dict[str, Any]] = [
        {"tag": "div", "text": {"tag": "plain_text", "content": f"📅 {current.strftime('%Y/%m/%d')}"}},
        {"tag": "hr"},
        _markdown_block(
            "**📊 Overview**\n\n"
            f"{display['unit'].capitalize()} analyzed: **{stats.total_items}**\n"
            f"Average {display['reach']}: **{stats.avg_reads:,}**\n"
            f"Average likes: **{stats.avg_likes:,}**\n"
            f"Average engagement: **{stats.avg_engagement}**"
        ),
        {"tag": "hr"},
        _markdown_block(f"**🏆 Top {MAX_CARD_ENTRIES} by likes**\n\n{_top_articles_markdown(report.top_by_count)}"),
        {"tag": "hr"},
    ]

    insights_content = _insights_markdown(report.insights)
    if insights_content:
        elements.append(_markdown_block(f"**✨ AI topic insights**\n\n{insights_content}"))
        elements.append({"tag": "hr"})

    topics_content = _recommended_topics_markdown(report.insights)
    if topics_content:
        elements.append(_markdown_block(f"**🎯 Recommended topics**\n\n{topics_content}"))
        elements.append({"tag": "hr"})

    elements.append({"tag": "note", "elements": [{"tag": "plain_text", "content": FOOTER_NOTE}]})

    if report.report_url:
        elements.append({"tag": "hr"})
        elements.append(
            {
                "tag": "action",
                "actions": [
                    {
                        "tag": "button",
                        "text": {"tag": "plain_text", "content": "📊 View full report"},
                        "type": "primary",
                        "url": report.report_url,
                    }
                ],
            }
        )

    return {
        "msg_type": "interactive",
        "card": {
            "header": {
                "title": {
                    "tag": "plain_text",
                    "content": f"{display['emoji']} {display['name']} topic report - {report.keyword}",
                },
                "template": display["template"],
            },
            "elements": elements,
        },
    }


async def _post_to_webhook(
    webhook_url: str,
    payload: Dict[str, Any],
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryResult:
    """POST a payload and interpret Feishu's status code. Never raises."""
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS) as owned_client:
                response = await owned_client.post(webhook_url, json=payload)
        else:
            response = await client.post(webhook_url, json=payload)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.warning("Feishu webhook request failed: %s", exc)
        return DeliveryResult(success=False, error=f"Feishu webhook request failed: {exc}")

    try:
        body = response.json()
    except ValueError:
        body = None

    if not response.is_success:
        message = body.get("msg") if isinstance(body, dict) else None
        return DeliveryResult(
            success=False,
            error=message or f"Feishu push failed: HTTP {response.status_code}",
            response=body,
        )
    if not isinstance(body, dict):
        return DeliveryResult(success=False, error="Feishu push failed: response body is not JSON")
    if body.get("code") != 0:
        return DeliveryResult(
            success=False,
            error=body.get("msg") or f"Feishu push failed: code={body.get('code')}",
            response=body,
        )
    return DeliveryResult(success=True, response=body)


async def push_report_to_feishu(
    webhook_url: str,
    report: FeishuReport,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryResult:
    """Send the report card to the webhook."""
    try:
        card = build_feishu_card(report)
    except Exception as exc:
        logger.exception("Failed to build Feishu card for %r", report.keyword)
        return DeliveryResult(success=False, error=f"Failed to build Feishu card: {exc}")
    result = await _post_to_webhook(webhook_url, card, client=client)
    if result.success:
        logger.info("Pushed report %s for %r to Feishu", report.report_id, report.keyword)
    else:
        logger.warning("Feishu push for %r failed: %s", report.keyword, result.error)
    return result


async def check_feishu_webhook(
    webhook_url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> DeliveryResult:
    """Send a plain-text connectivity check to the webhook."""
    payload = {"msg_type": "text", "content": {"text": "✅ Feishu webhook connection test succeeded!"}}
    return await _post_to_webhook(webhook_url, payload, client=client)

