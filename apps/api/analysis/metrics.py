"""
Core metrics aggregation logic.

Each platform gets its own analyzer because the two platforms measure
engagement differently: wechat has a reach denominator (reads) so engagement
is a likes/reads percentage, xiaohongshu has none so engagement is the raw
interaction total (likes + collects + comments).
"""

import html
import re
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, List, Optional

import numpy as np

from .models import (
    ContentAggregate,
    ContentItem,
    ContentStats,
    Platform,
    RankedArticle,
    ShortlistItem,
)

TOP_N = 5
MAX_CLEAN_CONTENT_CHARS = 8000
XIAOHONGSHU_EXPLORE_URL = "https://www.xiaohongshu.com/explore/{note_id}"

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (2.5 -> 3), unlike builtin round()."""
    return int(Decimal(str(float(value))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_percent(ratio: float, places: int = 0) -> str:
    exponent = Decimal("1") if places == 0 else Decimal(1).scaleb(-places)
    percent = Decimal(str(float(ratio) * 100)).quantize(exponent, rounding=ROUND_HALF_UP)
    return f"{percent}%"


def clean_html_content(raw: str) -> str:
    """Strip markup from article HTML and collapse whitespace."""
    if not raw:
        return ""
    text = _SCRIPT_STYLE_RE.sub("", raw)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if len(text) > MAX_CLEAN_CONTENT_CHARS:
        text = text[:MAX_CLEAN_CONTENT_CHARS] + "..."
    return text


def _rank(items: List[ContentItem], key: Callable[[ContentItem], float]) -> List[ContentItem]:
    # sorted() is stable, so ties keep their input order
    return sorted(items, key=key, reverse=True)[:TOP_N]


class PlatformAnalyzer(ABC):
    """Aggregates a platform's search results into stats and TOP-5 rankings."""

    platform: Platform

    def aggregate(self, items: List[ContentItem]) -> ContentAggregate:
        if not items:
            return ContentAggregate(stats=self.empty_stats(), top_by_count=[], top_by_ratio=[])
        return ContentAggregate(
            stats=self.compute_stats(items),
            top_by_count=[self.to_ranked(item) for item in self.rank_by_count(items)],
            top_by_ratio=[self.to_ranked(item) for item in self.rank_by_ratio(items)],
        )

    def rank_by_count(self, items: List[ContentItem]) -> List[ContentItem]:
        return _rank(items, key=lambda item: item.likes)

    def build_shortlist(self, items: List[ContentItem]) -> List[ShortlistItem]:
        """Union of both rankings, deduplicated, first occurrence wins."""
        if not items:
            return []
        shortlist: Dict[str, ShortlistItem] = {}
        for item in [*self.rank_by_count(items), *self.rank_by_ratio(items)]:
            key = self.dedupe_key(item)
            if key in shortlist:
                continue
            shortlist[key] = self.to_shortlist(item)
        return list(shortlist.values())

    @abstractmethod
    def empty_stats(self) -> ContentStats:
        raise NotImplementedError

    @abstractmethod
    def compute_stats(self, items: List[ContentItem]) -> ContentStats:
        raise NotImplementedError

    @abstractmethod
    def rank_by_ratio(self, items: List[ContentItem]) -> List[ContentItem]:
        raise NotImplementedError

    @abstractmethod
    def to_ranked(self, item: ContentItem) -> RankedArticle:
        raise NotImplementedError

    @abstractmethod
    def to_shortlist(self, item: ContentItem) -> ShortlistItem:
        raise NotImplementedError

    @abstractmethod
    def dedupe_key(self, item: ContentItem) -> str:
        raise NotImplementedError


class WeChatAnalyzer(PlatformAnalyzer):
    platform = Platform.WECHAT

    def empty_stats(self) -> ContentStats:
        return ContentStats(total_items=0, avg_reads=0, avg_likes=0, avg_engagement="0%")

    def compute_stats(self, items: List[ContentItem]) -> ContentStats:
        reads = np.array([item.reads for item in items], dtype=float)
        likes = np.array([item.likes for item in items], dtype=float)
        total_reads = float(reads.sum())
        total_likes = float(likes.sum())
        return ContentStats(
            total_items=len(items),
            avg_reads=round_half_up(reads.mean()),
            avg_likes=round_half_up(likes.mean()),
            avg_engagement=format_percent(total_likes / total_reads, places=1) if total_reads > 0 else "0%",
        )

    def rank_by_ratio(self, items: List[ContentItem]) -> List[ContentItem]:
        # Zero reach means the ratio is undefined, not zero
        with_reach = [item for item in items if item.reads > 0]
        return _rank(with_reach, key=lambda item: item.likes / item.reads)

    def to_ranked(self, item: ContentItem) -> RankedArticle:
        return RankedArticle(
            title=item.title,
            likes=item.likes,
            reads=item.reads,
            engagement=format_percent(item.likes / item.reads) if item.reads > 0 else "0%",
            url=item.url or None,
        )

    def to_shortlist(self, item: ContentItem) -> ShortlistItem:
        return ShortlistItem(
            title=item.title,
            content=clean_html_content(item.content),
            likes=item.likes,
            reads=item.reads,
            url=item.url or None,
        )

    def dedupe_key(self, item: ContentItem) -> str:
        return item.title


class XiaohongshuAnalyzer(PlatformAnalyzer):
    platform = Platform.XIAOHONGSHU

    def empty_stats(self) -> ContentStats:
        return ContentStats(total_items=0, avg_reads=0, avg_likes=0, avg_engagement="0")

    def compute_stats(self, items: List[ContentItem]) -> ContentStats:
        likes = np.array([item.likes for item in items], dtype=float)
        collects = np.array([item.collects for item in items], dtype=float)
        interactions = np.array([item.interaction_total for item in items], dtype=float)
        return ContentStats(
            total_items=len(items),
            avg_reads=round_half_up(collects.mean()),
            avg_likes=round_half_up(likes.mean()),
            avg_engagement=str(round_half_up(interactions.mean())),
        )

    def rank_by_ratio(self, items: List[ContentItem]) -> List[ContentItem]:
        return _rank(items, key=lambda item: item.interaction_total)

    def to_ranked(self, item: ContentItem) -> RankedArticle:
        return RankedArticle(
            title=item.title,
            likes=item.likes,
            reads=item.collects,
            engagement=str(item.interaction_total),
            url=self._note_url(item),
        )

    def to_shortlist(self, item: ContentItem) -> ShortlistItem:
        return ShortlistItem(
            title=item.title,
            content=item.content,
            likes=item.likes,
            reads=item.interaction_total,
            url=self._note_url(item),
        )

    def dedupe_key(self, item: ContentItem) -> str:
        # Notes are frequently untitled, so the note id is the identity
        return item.id or item.url or item.title

    @staticmethod
    def _note_url(item: ContentItem) -> Optional[str]:
        if item.id:
            return XIAOHONGSHU_EXPLORE_URL.format(note_id=item.id)
        return item.url or None


_ANALYZERS: Dict[Platform, PlatformAnalyzer] = {
    Platform.WECHAT: WeChatAnalyzer(),
    Platform.XIAOHONGSHU: XiaohongshuAnalyzer(),
}


def get_platform_analyzer(platform) -> PlatformAnalyzer:
    """Return the analyzer for a platform value or enum member."""
    return _ANALYZERS[Platform(platform)]


def aggregate_content(items: List[ContentItem], platform) -> ContentAggregate:
    """Pure aggregation entry point: stats plus both TOP-5 lists."""
    return get_platform_analyzer(platform).aggregate(items)
