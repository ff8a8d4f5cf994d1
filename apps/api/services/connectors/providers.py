"""Content search providers for the supported platforms."""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from analysis.metrics import XIAOHONGSHU_EXPLORE_URL
from analysis.models import ContentItem, Platform
from config import require_search_api_key, settings
from services.connectors.types import FetchError, PlatformKey

logger = logging.getLogger(__name__)

_WAN_RE = re.compile(r"^([\d.]+)\s*[万wW]$")


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError, OverflowError):
        return default


def _parse_count(value: Any) -> int:
    """Parse vendor counters, which arrive as ints, numeric strings or '1.2万'."""
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        match = _WAN_RE.match(text)
        if match:
            return _safe_int(float(match.group(1)) * 10000)
        return _safe_int(text)
    return _safe_int(value)


def _normalize_text(value: Any) -> str:
    return str(value or "").strip()


class BaseSearchProvider(ABC):
    platform: PlatformKey
    endpoint: str

    def __init__(self, *, endpoint: str, api_key: Optional[str] = None) -> None:
        self.endpoint = endpoint
        self._api_key = api_key

    @property
    def api_key(self) -> str:
        return self._api_key if self._api_key is not None else require_search_api_key()

    @abstractmethod
    def build_request(self, keyword: str) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def parse_items(self, payload: Dict[str, Any]) -> List[ContentItem]:
        raise NotImplementedError

    async def search(self, keyword: str, *, client: httpx.AsyncClient) -> List[ContentItem]:
        body = self.build_request(keyword)
        try:
            response = await client.post(self.endpoint, json=body)
        except httpx.HTTPError as exc:
            raise FetchError(f"{self.platform} search request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise FetchError(f"{self.platform} search returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError(f"{self.platform} search returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise FetchError(f"{self.platform} search returned an unexpected payload")
        if payload.get("code") != 0:
            message = _normalize_text(payload.get("msg")) or f"code={payload.get('code')}"
            raise FetchError(f"{self.platform} search failed: {message}")

        items = self.parse_items(payload)
        logger.info("%s search for %r returned %s items", self.platform, keyword, len(items))
        return items


class WeChatSearchProvider(BaseSearchProvider):
    """Keyword search over recent official-account articles."""

    platform: PlatformKey = "wechat"

    def __init__(self, *, endpoint: str, api_key: Optional[str] = None, period_days: int = 7) -> None:
        super().__init__(endpoint=endpoint, api_key=api_key)
        self.period_days = period_days

    def build_request(self, keyword: str) -> Dict[str, Any]:
        return {
            "kw": keyword,
            "sort_type": 1,
            "mode": 1,
            "period": self.period_days,
            "page": 1,
            "key": self.api_key,
            "any_kw": "",
            "ex_kw": "",
            "verifycode": "",
            "type": 1,
        }

    def parse_items(self, payload: Dict[str, Any]) -> List[ContentItem]:
        rows = payload.get("data")
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise FetchError("wechat search returned malformed data")
        items: List[ContentItem] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            url = _normalize_text(row.get("url")) or _normalize_text(row.get("short_link")) or None
            items.append(
                ContentItem(
                    id=url,
                    title=_normalize_text(row.get("title")),
                    url=url,
                    content=str(row.get("content") or ""),
                    likes=_parse_count(row.get("praise")),
                    reads=_parse_count(row.get("read")),
                )
            )
        return items


class XiaohongshuSearchProvider(BaseSearchProvider):
    """
    Keyword search over image notes.

    Search cards carry counters but no body, so each hit is followed by a
    detail lookup for its text when a detail endpoint is configured. A failed
    lookup keeps the note with whatever the card had.
    """

    platform: PlatformKey = "xiaohongshu"

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: Optional[str] = None,
        detail_endpoint: Optional[str] = None,
        detail_api_key: Optional[str] = None,
        detail_concurrency: int = 5,
    ) -> None:
        super().__init__(endpoint=endpoint, api_key=api_key)
        self.detail_endpoint = detail_endpoint
        self.detail_api_key = detail_api_key
        self.detail_concurrency = max(int(detail_concurrency), 1)

    async def search(self, keyword: str, *, client: httpx.AsyncClient) -> List[ContentItem]:
        items = await super().search(keyword, client=client)
        return await self.fetch_note_details(items, client=client)

    async def fetch_note_details(self, items: List[ContentItem], *, client: httpx.AsyncClient) -> List[ContentItem]:
        if not items or not self.detail_endpoint or not self.detail_api_key:
            return items
        semaphore = asyncio.Semaphore(self.detail_concurrency)

        async def _enrich(item: ContentItem) -> ContentItem:
            if not item.id or not item.xsec_token:
                return item
            async with semaphore:
                try:
                    text = await self._fetch_note_text(item, client=client)
                except (httpx.HTTPError, ValueError, FetchError) as exc:
                    logger.warning("xiaohongshu detail lookup for note %s failed: %s", item.id, exc)
                    return item
            return item.model_copy(update={"content": text}) if text else item

        enriched = await asyncio.gather(*(_enrich(item) for item in items))
        found = sum(1 for before, after in zip(items, enriched) if after is not before)
        logger.info("xiaohongshu detail lookups filled %s/%s note bodies", found, len(items))
        return list(enriched)

    async def _fetch_note_text(self, item: ContentItem, *, client: httpx.AsyncClient) -> str:
        note_url = f"{XIAOHONGSHU_EXPLORE_URL.format(note_id=item.id)}?xsec_token={item.xsec_token}"
        response = await client.post(
            self.detail_endpoint,
            json={"url": note_url},
            headers={"x-api-key": self.detail_api_key, "accept-language": "zh"},
        )
        payload = response.json()
        if response.status_code < 200 or response.status_code >= 300:
            message = _normalize_text(payload.get("message")) if isinstance(payload, dict) else ""
            raise FetchError(message or f"HTTP {response.status_code}")
        if not isinstance(payload, dict):
            raise FetchError("unexpected detail payload")
        return _normalize_text(payload.get("text"))

    def build_request(self, keyword: str) -> Dict[str, Any]:
        return {
            "key": self.api_key,
            "type": 1,
            "keyword": keyword,
            "page": 1,
            "sort": "general",
            "note_type": "image",
            "note_time": "不限",
            "note_range": "不限",
            "proxy": "",
        }

    def parse_items(self, payload: Dict[str, Any]) -> List[ContentItem]:
        rows = payload.get("items")
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise FetchError("xiaohongshu search returned malformed items")
        items: List[ContentItem] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            card = row.get("note_card")
            if not isinstance(card, dict):
                continue
            interact = card.get("interact_info") if isinstance(card.get("interact_info"), dict) else {}
            items.append(
                ContentItem(
                    id=_normalize_text(row.get("id")) or None,
                    title=_normalize_text(card.get("display_title")) or "(untitled)",
                    content=str(card.get("desc") or ""),
                    xsec_token=_normalize_text(row.get("xsec_token")) or None,
                    likes=_parse_count(interact.get("liked_count")),
                    collects=_parse_count(interact.get("collected_count")),
                    comments=_parse_count(interact.get("comment_count")),
                    shares=_parse_count(interact.get("shared_count")),
                )
            )
        return items


class ContentFetcher(ABC):
    """Keyword + platform -> list of content items."""

    @abstractmethod
    async def search(self, keyword: str, platform: str) -> List[ContentItem]:
        raise NotImplementedError


class VendorContentFetcher(ContentFetcher):
    """Routes searches to the vendor provider registered for each platform."""

    def __init__(
        self,
        providers: Dict[Platform, BaseSearchProvider],
        *,
        timeout_seconds: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.providers = providers
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def search(self, keyword: str, platform: str) -> List[ContentItem]:
        try:
            provider = self.providers[Platform(platform)]
        except (KeyError, ValueError) as exc:
            raise FetchError(f"No search provider for platform {platform!r}") from exc
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            return await provider.search(keyword, client=client)


def get_content_fetcher(transport: Optional[httpx.AsyncBaseTransport] = None) -> VendorContentFetcher:
    return VendorContentFetcher(
        {
            Platform.WECHAT: WeChatSearchProvider(
                endpoint=settings.WECHAT_SEARCH_API_URL,
                period_days=settings.SEARCH_PERIOD_DAYS,
            ),
            Platform.XIAOHONGSHU: XiaohongshuSearchProvider(
                endpoint=settings.XIAOHONGSHU_SEARCH_API_URL,
                detail_endpoint=settings.XIAOHONGSHU_DETAIL_API_URL,
                detail_api_key=settings.XIAOHONGSHU_DETAIL_API_KEY,
                detail_concurrency=settings.XIAOHONGSHU_DETAIL_CONCURRENCY,
            ),
        },
        timeout_seconds=settings.FETCH_TIMEOUT_SECONDS,
        transport=transport,
    )
