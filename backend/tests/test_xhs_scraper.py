"""
Tests for xhs_scraper.py

Covers count parsing, URL helpers, HTML extraction with selector fallbacks,
the mock-data fallback, and the HTTP paths (via httpx.MockTransport).
"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from xhs_scraper import (
    ANONYMOUS_USER,
    DEFAULT_CONTENT,
    DEFAULT_TITLE,
    XhsScraper,
    id_from_url,
    parse_count,
)


SEARCH_HTML = """
<html><body>
  <div class="note-item">
    <a href="/explore/abc123?xsec_token=t1">
      <div class="note-item-title">宝宝保险怎么买</div>
    </a>
    <div class="note-item-desc">新手爸妈必看</div>
    <span class="author-name">保险达人</span>
    <div class="author-avatar"><img src="https://img.example/a.png"></div>
    <span class="like-count">1.2万</span>
    <span class="comment-count">356</span>
    <span class="tag">#宝宝保险</span><span class="hashtag">#育儿</span>
    <div class="comment-item">
      <span class="comment-author">小美</span>
      <p class="comment-content">有没有推荐的产品？预算5000</p>
      <span class="comment-like-count">12</span>
      <span class="comment-reply-count">3</span>
    </div>
    <div class="comment-item reply" data-reply="true">
      <span class="comment-author">保险达人</span>
      <p class="comment-content">私信你了</p>
    </div>
    <div class="comment-item">
      <p class="comment-content">没有作者的评论会被跳过</p>
    </div>
  </div>
  <div class="note-item">
    <a href="/explore/def456"></a>
    <div class="comment-item">
      <span class="comment-author">阿强</span>
      <p class="comment-content">求链接</p>
    </div>
  </div>
</body></html>
"""

POSTS_WITHOUT_COMMENTS_HTML = """
<html><body>
  <div class="feed-item"><a href="/explore/p1"><div class="title">A</div></a></div>
  <div class="feed-item"><a href="/explore/p2"><div class="title">B</div></a></div>
  <div class="feed-item"><a href="/explore/p3"><div class="title">C</div></a></div>
  <div class="feed-item"><a href="/explore/p4"><div class="title">D</div></a></div>
</body></html>
"""

POST_PAGE_HTML = """
<html><body>
  <div class="comment-list">
    <div class="comment">
      <span class="author">路人甲</span><span class="content">在哪买的？</span>
    </div>
  </div>
  <div class="comment-item">
    <span class="comment-author">路人乙</span><span class="comment-content">同问</span>
  </div>
</body></html>
"""


def _scraper(handler=None, **kwargs) -> XhsScraper:
    client = None
    if handler is not None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("min_delay", 0)
    kwargs.setdefault("max_delay", 0)
    kwargs.setdefault("use_mock_data", False)
    return XhsScraper(client=client, base_url="https://www.xiaohongshu.com", **kwargs)


# ═══════════════════════════════════════════════
# parse_count
# ═══════════════════════════════════════════════

class TestParseCount:
    def test_plain_number(self):
        assert parse_count("356") == 356

    def test_wan(self):
        assert parse_count("1.2万") == 12000

    def test_qian(self):
        assert parse_count("3千") == 3000

    def test_k_suffix(self):
        assert parse_count("2.5k") == 2500
        assert parse_count("2.5K") == 2500

    def test_thousands_separator(self):
        assert parse_count("1,024") == 1024

    def test_floating_point_noise(self):
        assert parse_count("0.29万") == 2900

    def test_empty_and_garbage(self):
        assert parse_count("") == 0
        assert parse_count(None) == 0
        assert parse_count("赞") == 0

    def test_surrounding_text(self):
        assert parse_count("点赞 88") == 88


# ═══════════════════════════════════════════════
# URL helpers
# ═══════════════════════════════════════════════

class TestUrlHelpers:
    def test_id_from_url(self):
        assert id_from_url("https://www.xiaohongshu.com/explore/abc123?xsec_token=x") == "abc123"
        assert id_from_url("/discovery/item/note9/") == "note9"
        assert id_from_url("") == ""

    def test_build_search_url_encodes_keyword(self):
        url = _scraper().build_search_url("宝宝 保险", page=2)
        assert url.startswith("https://www.xiaohongshu.com/search_result?keyword=")
        assert "%E5%AE%9D%E5%AE%9D%20%E4%BF%9D%E9%99%A9" in url
        assert url.endswith("&type=51&page=2")

    def test_absolute_url(self):
        s = _scraper()
        assert s.absolute_url("/explore/1") == "https://www.xiaohongshu.com/explore/1"
        assert s.absolute_url("explore/1") == "https://www.xiaohongshu.com/explore/1"
        assert s.absolute_url("https://other.example/x") == "https://other.example/x"


# ═══════════════════════════════════════════════
# HTML parsing
# ═══════════════════════════════════════════════

class TestParseSearchHtml:
    def test_posts_extracted(self):
        result = _scraper().parse_search_html(SEARCH_HTML, "宝宝保险")

        assert result.source == "web"
        assert len(result.posts) == 2
        post = result.posts[0]
        assert post.id == "abc123"
        assert post.title == "宝宝保险怎么买"
        assert post.content == "新手爸妈必看"
        assert post.author.username == "保险达人"
        assert post.author.avatar == "https://img.example/a.png"
        assert post.author.followers == 0
        assert post.stats.likes == 12000
        assert post.stats.comments == 356
        assert post.stats.shares == 0
        assert post.tags == ["宝宝保险", "育儿"]
        assert post.url == "https://www.xiaohongshu.com/explore/abc123?xsec_token=t1"

    def test_missing_fields_use_defaults(self):
        result = _scraper().parse_search_html(SEARCH_HTML, "宝宝保险")
        bare = result.posts[1]
        assert bare.title == DEFAULT_TITLE
        assert bare.content == DEFAULT_CONTENT
        assert bare.author.username == ANONYMOUS_USER

    def test_comments_scoped_to_their_post(self):
        result = _scraper().parse_search_html(SEARCH_HTML, "宝宝保险")

        first = [c for c in result.comments if c.post_id == "abc123"]
        second = [c for c in result.comments if c.post_id == "def456"]
        assert [c.content for c in first] == ["有没有推荐的产品？预算5000", "私信你了"]
        assert [c.content for c in second] == ["求链接"]
        assert result.total_count == 3

    def test_comment_fields(self):
        result = _scraper().parse_search_html(SEARCH_HTML, "宝宝保险")
        c = result.comments[0]
        assert c.author.username == "小美"
        assert c.likes == 12
        assert c.replies == 3
        assert c.is_reply is False
        assert c.id.startswith("comment_")
        assert result.comments[1].is_reply is True

    def test_no_post_selector_matches_gives_mock(self):
        result = _scraper().parse_search_html("<html><body><p>登录</p></body></html>", "宝宝保险")
        assert result.source == "mock"
        assert [p.id for p in result.posts] == ["post_1", "post_2"]

    def test_posts_without_comments_get_synthetic_comments(self):
        result = _scraper().parse_search_html(POSTS_WITHOUT_COMMENTS_HTML, "宝宝保险")
        assert result.source == "web"
        assert len(result.posts) == 4
        # Only the first three posts get synthetic comments
        assert {c.post_id for c in result.comments} == {"p1", "p2", "p3"}
        assert len(result.comments) == 12

    def test_has_more_only_for_full_page(self):
        result = _scraper().parse_search_html(SEARCH_HTML, "宝宝保险")
        assert result.has_more is False

        cards = "".join(
            f'<div class="note-item"><a href="/explore/n{i}"></a></div>' for i in range(20)
        )
        result = _scraper().parse_search_html(f"<html><body>{cards}</body></html>", "k")
        assert result.has_more is True

    def test_fallback_post_selector(self):
        html = '<div data-testid="note-item"><a href="/explore/x1"><span class="title">T</span></a></div>'
        result = _scraper().parse_search_html(html, "k")
        assert [p.id for p in result.posts] == ["x1"]
        assert result.posts[0].title == "T"

    def test_element_matching_two_selectors_extracted_once(self):
        html = """
        <div class="note-item">
          <a href="/explore/d1"></a>
          <div class="comment-item comment">
            <span class="comment-author">小美</span>
            <p class="comment-content">求推荐</p>
          </div>
        </div>
        """
        result = _scraper().parse_search_html(html, "k")
        assert [c.content for c in result.comments] == ["求推荐"]


# ═══════════════════════════════════════════════
# Mock data
# ═══════════════════════════════════════════════

class TestMockData:
    def test_shape(self):
        result = _scraper().generate_mock_data("医疗险")
        assert result.source == "mock"
        assert result.has_more is False
        assert len(result.posts) == 2
        assert len(result.comments) == 8
        assert result.total_count == 8
        assert result.posts[0].title == "医疗险选择指南 - 新手必看"
        assert result.posts[0].author.followers == 15600

    def test_comments_reference_keyword_and_post(self):
        result = _scraper().generate_mock_data("医疗险")
        for comment in result.comments:
            assert "医疗险" in comment.content
            assert result.find_post(comment.post_id) is not None
        assert result.comments[0].id == "comment_post_1_0"

    def test_engagement_ranges(self):
        result = _scraper().generate_mock_data("医疗险")
        for comment in result.comments:
            assert 0 <= comment.likes < 50
            assert 0 <= comment.replies < 10


# ═══════════════════════════════════════════════
# HTTP paths
# ═══════════════════════════════════════════════

class TestScrapeSearch:
    @pytest.mark.asyncio
    async def test_live_page(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["ua"] = request.headers.get("user-agent", "")
            return httpx.Response(200, text=SEARCH_HTML)

        scraper = _scraper(handler)
        result = await scraper.scrape_search("宝宝保险", page=3)

        assert result.source == "web"
        assert len(result.posts) == 2
        assert "page=3" in seen["url"]
        assert "Chrome" in seen["ua"]

    @pytest.mark.asyncio
    async def test_http_error_falls_back_to_mock(self):
        scraper = _scraper(lambda request: httpx.Response(403, text="forbidden"))
        result = await scraper.scrape_search("宝宝保险")
        assert result.source == "mock"
        assert len(result.comments) == 8

    @pytest.mark.asyncio
    async def test_network_error_falls_back_to_mock(self):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        result = await _scraper(handler).scrape_search("宝宝保险")
        assert result.source == "mock"

    @pytest.mark.asyncio
    async def test_mock_mode_skips_network(self):
        def handler(request):
            raise AssertionError("network should not be used")

        result = await _scraper(handler, use_mock_data=True).scrape_search("宝宝保险")
        assert result.source == "mock"

    @pytest.mark.asyncio
    async def test_delay_applied(self):
        scraper = _scraper(lambda request: httpx.Response(200, text=SEARCH_HTML), min_delay=1, max_delay=3)
        with patch("xhs_scraper.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await scraper.scrape_search("宝宝保险")
        delay = mock_sleep.call_args.args[0]
        assert 1 <= delay <= 3


class TestScrapePostComments:
    @pytest.mark.asyncio
    async def test_extracts_comments(self):
        scraper = _scraper(lambda request: httpx.Response(200, text=POST_PAGE_HTML))
        comments = await scraper.scrape_post_comments("https://www.xiaohongshu.com/explore/n42")

        assert [c.content for c in comments] == ["同问", "在哪买的？"]
        assert all(c.post_id == "n42" for c in comments)

    @pytest.mark.asyncio
    async def test_failure_returns_empty(self):
        scraper = _scraper(lambda request: httpx.Response(500))
        assert await scraper.scrape_post_comments("https://www.xiaohongshu.com/explore/n42") == []

    @pytest.mark.asyncio
    async def test_element_matching_two_selectors_extracted_once(self):
        html = """
        <div class="comment-list">
          <div class="comment-item comment">
            <span class="comment-author">路人丙</span><span class="comment-content">多少钱</span>
          </div>
        </div>
        """
        scraper = _scraper(lambda request: httpx.Response(200, text=html))
        comments = await scraper.scrape_post_comments("https://www.xiaohongshu.com/explore/n7")
        assert [c.content for c in comments] == ["多少钱"]
