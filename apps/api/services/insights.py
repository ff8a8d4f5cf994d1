"""
LLM-backed topic insight generation.

Two calls per keyword: first a structured summary for every shortlisted item,
then thematic insights over those summaries. Output is validated against
InsightBundle; anything that does not parse or validate surfaces as
InsightError so the caller can keep the report without insights.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from analysis.metrics import format_percent
from analysis.models import ArticleSummary, InsightBundle, Platform, ShortlistItem
from config import settings
from services.connectors.types import InsightError

logger = logging.getLogger(__name__)

MAX_SHORTLIST_ITEMS = 10
MAX_PROMPT_CONTENT_CHARS = 3000

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_CURLY_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})

SUMMARY_SYSTEM_PROMPT = (
    "You are a professional content analyst who extracts the core information and value of articles. "
    "Always answer with structured JSON only."
)
INSIGHT_SYSTEM_PROMPT = (
    "You are a senior content strategist who distills topic opportunities and creative advice from "
    "large amounts of content. Always answer with structured JSON only."
)


def _platform_noun(platform: str) -> str:
    return "WeChat official-account articles" if platform == Platform.WECHAT.value else "Xiaohongshu notes"


def extract_json_payload(text: str) -> Any:
    """Parse JSON from a model reply, tolerating code fences and curly quotes."""
    raw = (text or "").strip()
    match = _FENCED_JSON_RE.search(raw)
    if match:
        raw = match.group(1).strip()
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return json.loads(raw.translate(_CURLY_QUOTES))


def _engagement_label(likes: int, reads: int) -> str:
    return format_percent(likes / reads, places=1) if reads > 0 else "0%"


def build_summary_prompt(keyword: str, platform: str, items: List[ShortlistItem]) -> str:
    blocks = []
    for index, item in enumerate(items, start=1):
        content = item.content[:MAX_PROMPT_CONTENT_CHARS]
        if len(item.content) > MAX_PROMPT_CONTENT_CHARS:
            content += "..."
        blocks.append(
            f"[Article {index}]\nTitle: {item.title}\nContent: {content}\n"
            f"Reads: {item.reads}\nLikes: {item.likes}"
        )
    articles_text = "\n---\n".join(blocks)
    return f"""Analyze the following {len(items)} {_platform_noun(platform)} about "{keyword}".

{articles_text}

Return a JSON array with one object per article, in the same order, each shaped as:
{{
  "articleTitle": "article title",
  "summary": "200-300 character synopsis of the core content and viewpoints",
  "keywords": ["5-10 keywords"],
  "highlights": ["3-5 key points or novel ideas"],
  "targetAudience": "who the article is written for",
  "contentType": "tutorial, case study, opinion, tool review, industry report, ..."
}}

Write the values in the language of the articles. Return only the JSON array."""


def build_insight_prompt(keyword: str, platform: str, summaries: List[ArticleSummary]) -> str:
    blocks = []
    for index, summary in enumerate(summaries, start=1):
        blocks.append(
            f"[Article {index}] {summary.article_title}\n"
            f"Summary: {summary.summary}\n"
            f"Keywords: {', '.join(summary.keywords)}\n"
            f"Highlights: {'; '.join(summary.highlights)}\n"
            f"Audience: {summary.target_audience}\n"
            f"Content type: {summary.content_type}\n"
            f"Performance: reads {summary.metrics.reads}, likes {summary.metrics.likes}, "
            f"engagement {summary.metrics.engagement}"
        )
    summaries_text = "\n---\n".join(blocks)
    return f"""Based on these {len(summaries)} summaries of {_platform_noun(platform)} about "{keyword}", produce topic insights.

{summaries_text}

Cover content trends and hot topics, reader concerns and pain points, differentiation opportunities,
and concrete creative advice. Return at least 5 insights as JSON:
{{
  "insights": [
    {{
      "title": "short punchy insight title",
      "description": "100-200 character analysis of why this matters",
      "supportingArticles": ["titles taken from the article list above"],
      "creativeAdvice": "specific, actionable advice",
      "relatedKeywords": ["keyword"],
      "trend": "rising | stable | declining"
    }}
  ],
  "overallTrends": ["3-5 overall trends"],
  "recommendedTopics": ["3-5 concrete topic directions"]
}}

Write the values in the language of the articles. Return only the JSON object."""


class InsightRequester(ABC):
    """Curated items -> structured summaries + thematic insights."""

    @abstractmethod
    async def analyze(self, keyword: str, platform: str, items: List[ShortlistItem]) -> InsightBundle:
        raise NotImplementedError


def get_openai_client(api_key: str) -> Optional[AsyncOpenAI]:
    """Get OpenAI-compatible client, handling placeholders."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return AsyncOpenAI(
        api_key=api_key,
        base_url=settings.OPENAI_API_BASE,
        timeout=settings.INSIGHT_TIMEOUT_SECONDS,
    )


class OpenAIInsightRequester(InsightRequester):
    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        *,
        model: str,
        max_tokens: int = 2500,
    ) -> None:
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def _complete(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        if self.client is None:
            raise InsightError("OPENAI_API_KEY is not configured")
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as exc:
            raise InsightError(f"LLM request failed: {exc}") from exc
        if not response.choices:
            raise InsightError("LLM returned no choices")
        return response.choices[0].message.content or ""

    async def summarize(self, keyword: str, platform: str, items: List[ShortlistItem]) -> List[Dict[str, Any]]:
        reply = await self._complete(SUMMARY_SYSTEM_PROMPT, build_summary_prompt(keyword, platform, items), 0.5)
        try:
            parsed = extract_json_payload(reply)
        except json.JSONDecodeError as exc:
            raise InsightError(f"Summary reply is not valid JSON: {exc}") from exc
        if isinstance(parsed, dict) and isinstance(parsed.get("summaries"), list):
            parsed = parsed["summaries"]
        if not isinstance(parsed, list):
            raise InsightError("Summary reply is not a JSON array")

        summaries: List[Dict[str, Any]] = []
        for index, entry in enumerate(parsed):
            if not isinstance(entry, dict):
                raise InsightError(f"Summary #{index + 1} is not an object")
            source = items[index] if index < len(items) else None
            if source is not None:
                entry = {
                    **entry,
                    "articleUrl": source.url,
                    "metrics": {
                        "likes": source.likes,
                        "reads": source.reads,
                        "engagement": _engagement_label(source.likes, source.reads),
                    },
                }
            summaries.append(entry)
        return summaries

    async def analyze(self, keyword: str, platform: str, items: List[ShortlistItem]) -> InsightBundle:
        if not items:
            raise InsightError("No items to analyze")
        items = items[:MAX_SHORTLIST_ITEMS]
        logger.info("Generating insights for %r (%s) over %s items", keyword, platform, len(items))

        raw_summaries = await self.summarize(keyword, platform, items)
        try:
            summaries = [ArticleSummary.model_validate(entry) for entry in raw_summaries]
        except ValidationError as exc:
            raise InsightError(f"Summary reply failed validation: {exc.error_count()} errors") from exc

        reply = await self._complete(INSIGHT_SYSTEM_PROMPT, build_insight_prompt(keyword, platform, summaries), 0.7)
        try:
            parsed = extract_json_payload(reply)
        except json.JSONDecodeError as exc:
            raise InsightError(f"Insight reply is not valid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise InsightError("Insight reply is not a JSON object")

        try:
            bundle = InsightBundle.model_validate(
                {
                    "summaries": [summary.model_dump() for summary in summaries],
                    "insights": parsed.get("insights", []),
                    "overall_trends": parsed.get("overallTrends", parsed.get("overall_trends", [])),
                    "recommended_topics": parsed.get("recommendedTopics", parsed.get("recommended_topics", [])),
                }
            )
        except ValidationError as exc:
            raise InsightError(f"Insight reply failed validation: {exc.error_count()} errors") from exc

        logger.info("Generated %s insights for %r", len(bundle.insights), keyword)
        return bundle


def get_insight_requester() -> OpenAIInsightRequester:
    return OpenAIInsightRequester(
        get_openai_client(settings.OPENAI_API_KEY),
        model=settings.OPENAI_MODEL,
        max_tokens=settings.OPENAI_MAX_TOKENS,
    )
