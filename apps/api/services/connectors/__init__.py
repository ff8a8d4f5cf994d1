"""Public vendor connector utilities."""

from services.connectors.providers import (
    BaseSearchProvider,
    ContentFetcher,
    VendorContentFetcher,
    WeChatSearchProvider,
    XiaohongshuSearchProvider,
    get_content_fetcher,
)
from services.connectors.types import DeliveryResult, FetchError, InsightError, PlatformKey

__all__ = [
    "BaseSearchProvider",
    "ContentFetcher",
    "DeliveryResult",
    "FetchError",
    "InsightError",
    "PlatformKey",
    "VendorContentFetcher",
    "WeChatSearchProvider",
    "XiaohongshuSearchProvider",
    "get_content_fetcher",
]
