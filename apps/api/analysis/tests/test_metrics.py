import pytest
from analysis.metrics import (
    aggregate_content,
    clean_html_content,
    format_percent,
    get_platform_analyzer,
    round_half_up,
)
from analysis.models import ContentItem, Platform

@pytest.fixture
def wechat_items():
    """Three articles: likes [10, 5, 8], reads [100, 50, 40]."""
    return [
        ContentItem(title="item1", url="https://mp.weixin.qq.com/s/1", content="<p>one</p>", likes=10, reads=100),
        ContentItem(title="item2", url="https://mp.weixin.qq.com/s/2", content="<p>two</p>", likes=5, reads=50),
        ContentItem(title="item3", url="https://mp.weixin.qq.com/s/3", content="<p>three</p>", likes=8, reads=40),
    ]

@pytest.fixture
def many_wechat_items():
    return [
        ContentItem(title=f"article {i}", likes=i * 3, reads=100 + i * 10)
        for i in range(12)
    ]

@pytest.fixture
def xhs_items():
    return [
        ContentItem(id="n1", title="note 1", likes=10, collects=5, comments=1),
        ContentItem(id="n2", title="note 2", likes=2, collects=30, comments=10),
        ContentItem(id="n3", title="", likes=7, collects=0, comments=0),
    ]


def test_round_half_up_rounds_halves_away_from_zero():
    assert round_half_up(2.5) == 3
    assert round_half_up(7.666) == 8
    assert round_half_up(63.33) == 63


def test_format_percent_places():
    assert format_percent(0.1) == "10%"
    assert format_percent(0.125, places=1) == "12.5%"
    assert format_percent(23 / 190, places=1) == "12.1%"


def test_wechat_stats_and_rankings(wechat_items):
    aggregate = aggregate_content(wechat_items, "wechat")

    assert aggregate.stats.total_items == 3
    assert aggregate.stats.avg_likes == 8  # 23 / 3 = 7.67
    assert aggregate.stats.avg_reads == 63
    assert aggregate.stats.avg_engagement == "12.1%"
    assert [row.title for row in aggregate.top_by_count] == ["item1", "item3", "item2"]
    # item1 and item2 tie at 10%; stable sort keeps input order
    assert [row.title for row in aggregate.top_by_ratio] == ["item3", "item1", "item2"]
    assert aggregate.top_by_ratio[0].engagement == "20%"
    assert aggregate.top_by_count[0].url == "https://mp.weixin.qq.com/s/1"


def test_aggregation_is_deterministic(many_wechat_items):
    first = aggregate_content(many_wechat_items, Platform.WECHAT)
    second = aggregate_content(many_wechat_items, Platform.WECHAT)
    assert first.model_dump() == second.model_dump()


def test_rankings_are_capped_at_five(many_wechat_items):
    aggregate = aggregate_content(many_wechat_items, "wechat")
    assert len(aggregate.top_by_count) == 5
    assert len(aggregate.top_by_ratio) == 5

    small = aggregate_content(many_wechat_items[:3], "wechat")
    assert len(small.top_by_count) == 3
    assert len(small.top_by_ratio) == 3


def test_count_ties_keep_input_order():
    items = [ContentItem(title=name, likes=5, reads=10) for name in ["a", "b", "c"]]
    aggregate = aggregate_content(items, "wechat")
    assert [row.title for row in aggregate.top_by_count] == ["a", "b", "c"]


@pytest.mark.parametrize("platform,engagement", [("wechat", "0%"), ("xiaohongshu", "0")])
def test_empty_input_yields_zero_stats(platform, engagement):
    aggregate = aggregate_content([], platform)
    assert aggregate.stats.total_items == 0
    assert aggregate.stats.avg_reads == 0
    assert aggregate.stats.avg_likes == 0
    assert aggregate.stats.avg_engagement == engagement
    assert aggregate.top_by_count == []
    assert aggregate.top_by_ratio == []


def test_zero_reach_never_ranks_by_ratio():
    items = [
        ContentItem(title="viral but unread", likes=999, reads=0),
        ContentItem(title="normal", likes=10, reads=100),
    ]
    aggregate = aggregate_content(items, "wechat")
    assert aggregate.top_by_count[0].title == "viral but unread"
    assert aggregate.top_by_count[0].engagement == "0%"
    assert [row.title for row in aggregate.top_by_ratio] == ["normal"]


def test_all_zero_reach_gives_zero_percent_engagement():
    aggregate = aggregate_content([ContentItem(title="x", likes=3, reads=0)], "wechat")
    assert aggregate.stats.avg_engagement == "0%"
    assert aggregate.top_by_ratio == []


def test_xiaohongshu_uses_interaction_totals(xhs_items):
    aggregate = aggregate_content(xhs_items, "xiaohongshu")

    assert aggregate.stats.total_items == 3
    assert aggregate.stats.avg_likes == 6  # 19 / 3
    assert aggregate.stats.avg_reads == 12  # mean collects 35 / 3
    assert aggregate.stats.avg_engagement == "22"  # (16 + 42 + 7) / 3 = 21.67
    assert [row.title for row in aggregate.top_by_count] == ["note 1", "", "note 2"]
    top = aggregate.top_by_ratio[0]
    assert top.title == "note 2"
    assert top.reads == 30
    assert top.engagement == "42"
    assert top.url == "https://www.xiaohongshu.com/explore/n2"


def test_wechat_shortlist_dedupes_by_title_and_strips_html(wechat_items):
    shortlist = get_platform_analyzer("wechat").build_shortlist(wechat_items)
    assert [row.title for row in shortlist] == ["item1", "item3", "item2"]
    assert shortlist[0].content == "one"
    assert shortlist[0].reads == 100


def test_xiaohongshu_shortlist_dedupes_by_id():
    items = [
        ContentItem(id="same-title-1", title="Same", likes=9, collects=1),
        ContentItem(id="same-title-2", title="Same", likes=8, collects=1),
    ]
    shortlist = get_platform_analyzer("xiaohongshu").build_shortlist(items)
    assert len(shortlist) == 2
    assert shortlist[0].reads == 10  # interaction total


def test_shortlist_is_union_of_rankings(many_wechat_items):
    shortlist = get_platform_analyzer("wechat").build_shortlist(many_wechat_items)
    assert 5 <= len(shortlist) <= 10
    assert len({row.title for row in shortlist}) == len(shortlist)


def test_clean_html_content():
    raw = "<style>p{}</style><p>Hello&nbsp;<b>world</b></p>\n\n<script>x()</script>  end"
    assert clean_html_content(raw) == "Hello world end"
    assert clean_html_content("") == ""
    assert clean_html_content("a" * 9000).endswith("...")


def test_unknown_platform_is_rejected():
    with pytest.raises(ValueError):
        get_platform_analyzer("tiktok")
