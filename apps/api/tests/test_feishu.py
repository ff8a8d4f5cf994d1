import json
from datetime import datetime

import httpx
import pytest

from analysis.models import ContentStats, InsightBundle, RankedArticle, TopicInsight, TrendDirection
from services.feishu import FeishuReport, build_feishu_card, check_feishu_webhook, push_report_to_feishu


WEBHOOK_URL = "https://open.feishu.cn/open-apis/bot/v2/hook/test-hook"


def _report(**overrides) -> FeishuReport:
    payload = {
        "keyword": "AI创作",
        "platform": "wechat",
        "report_id": 7,
        "report_url": "http://localhost:3000/reports/7",
        "stats": ContentStats(total_items=3, avg_reads=63, avg_likes=8, avg_engagement="12.1%"),
        "top_by_count": [
            RankedArticle(title="item1", likes=10, reads=100, engagement="10%", url="https://mp.weixin.qq.com/s/1"),
            RankedArticle(title="item3", likes=8, reads=40, engagement="20%"),
        ],
        "top_by_ratio": [],
        "insights": None,
    }
    payload.update(overrides)
    return FeishuReport(**payload)


def _card_text(card) -> str:
    return json.dumps(card, ensure_ascii=False)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_card_header_and_overview():
    card = build_feishu_card(_report(), now=datetime(2025, 3, 4, 8, 0))

    assert card["msg_type"] == "interactive"
    header = card["card"]["header"]
    assert header["template"] == "blue"
    assert "AI创作" in header["title"]["content"]
    text = _card_text(card)
    assert "2025/03/04" in text
    assert "Articles analyzed: **3**" in text
    assert "Average engagement: **12.1%**" in text
    assert "[item1](https://mp.weixin.qq.com/s/1)" in text
    # No url, plain title
    assert "**2. item3**" in text


def test_card_action_button_links_to_report():
    card = build_feishu_card(_report())
    action = card["card"]["elements"][-1]
    assert action["tag"] == "action"
    assert action["actions"][0]["url"] == "http://localhost:3000/reports/7"

    without_url = build_feishu_card(_report(report_url=None))
    assert all(element["tag"] != "action" for element in without_url["card"]["elements"])


def test_card_insight_blocks_are_optional_and_capped():
    plain = _card_text(build_feishu_card(_report()))
    assert "AI topic insights" not in plain
    assert "Recommended topics" not in plain

    bundle = InsightBundle(
        insights=[
            TopicInsight(title=f"insight {index}", description="why", trend=trend)
            for index, trend in enumerate(
                [TrendDirection.RISING, TrendDirection.DECLINING, TrendDirection.STABLE, None, None, None],
                start=1,
            )
        ],
        recommended_topics=[f"topic {index}" for index in range(1, 8)],
    )
    text = _card_text(build_feishu_card(_report(insights=bundle)))
    assert "📈 insight 1" in text
    assert "📉 insight 2" in text
    assert "➡️ insight 3" in text
    assert "insight 5" in text
    assert "insight 6" not in text
    assert "5. topic 5" in text
    assert "topic 6" not in text


def test_xiaohongshu_card_uses_red_template():
    card = build_feishu_card(_report(platform="xiaohongshu"))
    assert card["card"]["header"]["template"] == "red"
    assert "Notes analyzed" in _card_text(card)


@pytest.mark.asyncio
async def test_push_success_requires_zero_code():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 0, "msg": "success", "data": {}})

    async with _client(handler) as client:
        result = await push_report_to_feishu(WEBHOOK_URL, _report(), client=client)

    assert result.success is True
    assert result.error is None
    assert result.response["code"] == 0
    assert captured["url"] == WEBHOOK_URL
    assert captured["body"]["msg_type"] == "interactive"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response,expected_error",
    [
        (httpx.Response(200, json={"code": 19024, "msg": "Key Words Not Found"}), "Key Words Not Found"),
        (httpx.Response(200, json={"code": 9499}), "code=9499"),
        (httpx.Response(500, text="upstream exploded"), "HTTP 500"),
        (httpx.Response(200, text="<html>ok</html>"), "not JSON"),
    ],
)
async def test_push_failures_are_reported_not_raised(response, expected_error):
    async with _client(lambda request: response) as client:
        result = await push_report_to_feishu(WEBHOOK_URL, _report(), client=client)

    assert result.success is False
    assert expected_error in result.error


@pytest.mark.asyncio
async def test_push_network_error_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        result = await push_report_to_feishu(WEBHOOK_URL, _report(), client=client)

    assert result.success is False
    assert "connection refused" in result.error


@pytest.mark.asyncio
async def test_check_webhook_sends_plain_text():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 0, "msg": "success"})

    async with _client(handler) as client:
        result = await check_feishu_webhook(WEBHOOK_URL, client=client)

    assert result.success is True
    assert captured["body"]["msg_type"] == "text"
    assert "test succeeded" in captured["body"]["content"]["text"]
