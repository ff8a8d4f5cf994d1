import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from analysis.models import ShortlistItem, TrendDirection
from services.connectors import InsightError
from services.insights import (
    OpenAIInsightRequester,
    extract_json_payload,
    get_openai_client,
)


def _completion(content: str):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _fake_client(*replies: str):
    create = AsyncMock(side_effect=[_completion(reply) for reply in replies])
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create))), create


def _items(count: int = 2):
    return [
        ShortlistItem(
            title=f"Article {index}",
            content=f"Body of article {index}",
            likes=10 * index,
            reads=100 * index,
            url=f"https://mp.weixin.qq.com/s/{index}",
        )
        for index in range(1, count + 1)
    ]


SUMMARY_REPLY = """Here you go:
```json
[
  {"articleTitle": "Article 1", "summary": "First synopsis", "keywords": ["ai"], "highlights": ["h1"],
   "targetAudience": "creators", "contentType": "tutorial"},
  {"articleTitle": "Article 2", "summary": "Second synopsis", "keywords": [], "highlights": [],
   "targetAudience": "marketers", "contentType": "case study"}
]
```"""

INSIGHT_REPLY = json.dumps(
    {
        "insights": [
            {
                "title": "Tutorials win",
                "description": "Step-by-step guides outperform opinion pieces.",
                "supportingArticles": ["Article 1"],
                "creativeAdvice": "Lead with a concrete outcome.",
                "relatedKeywords": ["workflow"],
                "trend": "rising",
            }
        ],
        "overallTrends": ["Practical content"],
        "recommendedTopics": ["Five tools that save an hour a day"],
    }
)


@pytest.mark.asyncio
async def test_analyze_builds_validated_bundle():
    client, create = _fake_client(SUMMARY_REPLY, INSIGHT_REPLY)
    requester = OpenAIInsightRequester(client, model="openai/gpt-4o", max_tokens=1000)

    bundle = await requester.analyze("AI创作", "wechat", _items())

    assert [summary.article_title for summary in bundle.summaries] == ["Article 1", "Article 2"]
    first = bundle.summaries[0]
    assert first.article_url == "https://mp.weixin.qq.com/s/1"
    assert first.metrics.likes == 10
    assert first.metrics.engagement == "10.0%"
    assert first.target_audience == "creators"
    assert bundle.insights[0].trend == TrendDirection.RISING
    assert bundle.insights[0].supporting_articles == ["Article 1"]
    assert bundle.recommended_topics == ["Five tools that save an hour a day"]
    assert create.await_count == 2
    assert create.await_args_list[0].kwargs["model"] == "openai/gpt-4o"
    assert create.await_args_list[0].kwargs["max_tokens"] == 1000


@pytest.mark.asyncio
async def test_analyze_caps_items_sent_to_the_model():
    client, create = _fake_client(SUMMARY_REPLY, INSIGHT_REPLY)
    requester = OpenAIInsightRequester(client, model="m")

    await requester.analyze("AI", "wechat", _items(12))

    prompt = create.await_args_list[0].kwargs["messages"][1]["content"]
    assert "[Article 10]" in prompt
    assert "[Article 11]" not in prompt


@pytest.mark.asyncio
async def test_invalid_json_reply_raises_insight_error():
    client, _ = _fake_client("I could not analyze these articles.")
    requester = OpenAIInsightRequester(client, model="m")

    with pytest.raises(InsightError):
        await requester.analyze("AI", "wechat", _items())


@pytest.mark.asyncio
async def test_schema_mismatch_raises_insight_error():
    bad_insights = json.dumps({"insights": [{"title": "no description", "trend": "sideways"}]})
    client, _ = _fake_client(SUMMARY_REPLY, bad_insights)
    requester = OpenAIInsightRequester(client, model="m")

    with pytest.raises(InsightError, match="validation"):
        await requester.analyze("AI", "wechat", _items())


@pytest.mark.asyncio
async def test_missing_client_raises_insight_error():
    requester = OpenAIInsightRequester(None, model="m")

    with pytest.raises(InsightError, match="OPENAI_API_KEY"):
        await requester.analyze("AI", "wechat", _items())


@pytest.mark.asyncio
async def test_empty_items_raise_insight_error():
    client, create = _fake_client()
    requester = OpenAIInsightRequester(client, model="m")

    with pytest.raises(InsightError):
        await requester.analyze("AI", "wechat", [])
    assert create.await_count == 0


def test_extract_json_payload_tolerates_fences_and_curly_quotes():
    assert extract_json_payload('```json\n{"a": 1}\n```') == {"a": 1}
    assert extract_json_payload("[1, 2]") == [1, 2]
    assert extract_json_payload("{“a”: “b”}") == {"a": "b"}


def test_placeholder_api_keys_disable_the_client():
    assert get_openai_client("") is None
    assert get_openai_client("your_openai_key") is None
    assert get_openai_client("test-key") is None
