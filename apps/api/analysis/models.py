"""
Analysis models and schemas.
"""

from typing import List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from enum import Enum


class Platform(str, Enum):
    WECHAT = "wechat"            # Article platform: reads + likes
    XIAOHONGSHU = "xiaohongshu"  # Note platform: likes + collects + comments + shares


class TrendDirection(str, Enum):
    RISING = "rising"
    STABLE = "stable"
    DECLINING = "declining"


class ContentItem(BaseModel):
    """Normalized search hit from either platform."""
    id: Optional[str] = None
    title: str = ""
    url: Optional[str] = None
    content: str = ""
    xsec_token: Optional[str] = None  # xiaohongshu detail lookups need it
    likes: int = 0
    reads: int = 0
    collects: int = 0
    comments: int = 0
    shares: int = 0

    @property
    def interaction_total(self) -> int:
        return self.likes + self.collects + self.comments


class RankedArticle(BaseModel):
    """Entry of a TOP-5 list."""
    title: str
    likes: int
    reads: int
    engagement: str  # "12%" on wechat, interaction total on xiaohongshu
    url: Optional[str] = None


class ContentStats(BaseModel):
    total_items: int = 0
    avg_reads: int = 0
    avg_likes: int = 0
    avg_engagement: str = "0"


class ContentAggregate(BaseModel):
    """Stats plus both rankings for one keyword's result set."""
    stats: ContentStats
    top_by_count: List[RankedArticle] = []
    top_by_ratio: List[RankedArticle] = []


class ShortlistItem(BaseModel):
    """Curated item handed to the insight requester."""
    title: str
    content: str = ""
    likes: int = 0
    reads: int = 0
    url: Optional[str] = None


class SummaryMetrics(BaseModel):
    likes: int = 0
    reads: int = 0
    engagement: str = "0%"


class ArticleSummary(BaseModel):
    """Structured synopsis of one shortlisted item."""
    model_config = ConfigDict(populate_by_name=True)

    article_title: str = Field(validation_alias=AliasChoices("article_title", "articleTitle"))
    article_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("article_url", "articleUrl")
    )
    summary: str
    keywords: List[str] = []
    highlights: List[str] = []
    target_audience: str = Field(
        default="", validation_alias=AliasChoices("target_audience", "targetAudience")
    )
    content_type: str = Field(
        default="", validation_alias=AliasChoices("content_type", "contentType")
    )
    metrics: SummaryMetrics = SummaryMetrics()


class TopicInsight(BaseModel):
    """Thematic insight derived from the summaries."""
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    supporting_articles: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("supporting_articles", "supportingArticles"),
    )
    creative_advice: str = Field(
        default="", validation_alias=AliasChoices("creative_advice", "creativeAdvice")
    )
    related_keywords: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("related_keywords", "relatedKeywords"),
    )
    trend: Optional[TrendDirection] = None


class InsightBundle(BaseModel):
    """LLM output for a run's shortlisted items."""
    model_config = ConfigDict(populate_by_name=True)

    summaries: List[ArticleSummary] = []
    insights: List[TopicInsight] = []
    overall_trends: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("overall_trends", "overallTrends"),
    )
    recommended_topics: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("recommended_topics", "recommendedTopics"),
    )


class AnalysisSnapshot(BaseModel):
    """Persisted analysis_result of a scheduled report."""
    stats: ContentStats
    top_by_count: List[RankedArticle] = []
    top_by_ratio: List[RankedArticle] = []
    insights: Optional[InsightBundle] = None
