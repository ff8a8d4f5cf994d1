"""Vendor connector contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Optional


PlatformKey = Literal["wechat", "xiaohongshu"]


class FetchError(RuntimeError):
    """Raised when a content search vendor call fails or returns an unusable payload."""


class InsightError(RuntimeError):
    """Raised when the LLM insight call fails or its output does not match the schema."""


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: Optional[str] = None
    response: Optional[Any] = None
