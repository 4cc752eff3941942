"""
Tests for xhs_api.py

Covers request shapes for the backend proxy endpoints, error mapping to
XhsApiError, list parsing, and collect_via_backend().
"""

import json

import httpx
import pytest

from xhs_api import (
    HOME_FEED_CATEGORIES,
    XhsApiError,
    XhsBackendClient,
    collect_via_backend,
)


class Recorder:
    """MockTransport handler that records requests and replies from a route table."""

    def __init__(self, routes=None, default=None):
        self.routes = routes or {}
        self.default = default if default is not None else {"success": True}
        self.calls = []

    def __call__(self, request: httpx.Request):
        body = json.loads(request.content) if request.content else None
        endpoint = request.url.path.removeprefix("/api/")
        self.calls.append((endpoint, body))
        reply = self.routes.get(endpoint, self.default)
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)


def _client(recorder: Recorder) -> XhsBackendClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return XhsBackendClient(base_url="http://proxy.test/", client=http)


# ═══════════════════════════════════════════════
# Request shapes
# ═══════════════════════════════════════════════

class TestEndpoints:
    @pytest.mark.asyncio
    async def test_follow_user(self):
        rec = Recorder()
        await _client(rec).follow_user("u1")
        assert rec.calls == [("follow-user", {"target_user_id": "u1", "follow": True})]

    @pytest.mark.asyncio
    async def test_unfollow_user(self):
        rec = Recorder()
        await _client(rec).follow_user("u1", follow=False)
        assert rec.calls[0][1]["follow"] is False

    @pytest.mark.asyncio
    async def test_like_collect_comment(self):
        rec = Recorder()
        client = _client(rec)
        await client.like_note("n1")
        await client.collect_note("n1", collect=False)
        await client.post_comment("n1", "好文")
        assert rec.calls == [
            ("like-note-action", {"note_id": "n1", "like": True}),
            ("collect-note", {"note_id": "n1", "collect": False}),
            ("post-note-comment", {"note_id": "n1", "content": "好文"}),
        ]

    @pytest.mark.asyncio
    async def test_get_user_posts_defaults(self):
        rec = Recorder(default=[])
        await _client(rec).get_user_posts("u1", "tok")
        assert rec.calls == [("get-user-posts", {
            "user_id": "u1", "count": 5, "xsec_token": "tok", "download": False,
        })]

    @pytest.mark.asyncio
    async def test_get_file_contents_uses_camel_key(self):
        rec = Recorder()
        await _client(rec).get_file_contents("/tmp/a.json")
        assert rec.calls == [("get-file-contents", {"filePath": "/tmp/a.json"})]

    @pytest.mark.asyncio
    async def test_current_user_info_has_no_body(self):
        rec = Recorder(routes={"get-current-user-info": {"user_id": "me", "nickname": "我"}})
        user = await _client(rec).get_current_user_info()
        assert rec.calls == [("get-current-user-info", None)]
        assert user.user_id == "me"

    @pytest.mark.asyncio
    async def test_notifications(self):
        rec = Recorder()
        client = _client(rec)
        await client.get_user_notify_connections()
        await client.get_user_notify_likes(count=5, cursor="c1")
        await client.get_user_notify_mentions()
        assert [c[0] for c in rec.calls] == [
            "get-user-notify-connections",
            "get-user-notify-likes",
            "get-user-notify-mentions",
        ]
        assert rec.calls[1][1] == {"count": 5, "cursor": "c1"}

    @pytest.mark.asyncio
    async def test_search_notes_payload(self):
        rec = Recorder(default=[])
        await _client(rec).search_notes("宝宝保险", count=10, sort="popularity_descending", note_type=2)
        assert rec.calls == [("search-notes", {
            "keyword": "宝宝保险",
            "count": 10,
            "sort": "popularity_descending",
            "noteType": 2,
            "download": False,
        })]

    @pytest.mark.asyncio
    async def test_search_notes_validates_before_request(self):
        rec = Recorder(default=[])
        client = _client(rec)
        with pytest.raises(ValueError):
            await client.search_notes("k", sort="hot")
        with pytest.raises(ValueError):
            await client.search_notes("k", note_type=3)
        assert rec.calls == []


# ═══════════════════════════════════════════════
# Parsing & errors
# ═══════════════════════════════════════════════

class TestResponses:
    @pytest.mark.asyncio
    async def test_list_parsed(self):
        rec = Recorder(routes={"get-home-feeds": [
            {"note_id": "n1", "title": "早餐", "liked_count": 3, "unknown_field": 1},
        ]})
        notes = await _client(rec).get_home_feeds(category="homefeed.food_v3")
        assert notes[0].note_id == "n1"
        assert notes[0].liked_count == 3
        assert rec.calls[0][1]["category"] == "homefeed.food_v3"

    @pytest.mark.asyncio
    async def test_wrapped_list_parsed(self):
        rec = Recorder(routes={"search-users": {"data": [{"user_id": "u9", "nickname": "小王"}]}})
        users = await _client(rec).search_users("小王")
        assert [u.user_id for u in users] == ["u9"]

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_failure_text(self):
        rec = Recorder(routes={"follow-user": httpx.Response(404)})
        with pytest.raises(XhsApiError) as exc:
            await _client(rec).follow_user("u1")
        assert exc.value.message == "关注操作失败: Not Found"
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_server_error_message(self):
        rec = Recorder(routes={"get-note-comments": httpx.Response(500)})
        with pytest.raises(XhsApiError) as exc:
            await _client(rec).get_note_comments("n1", "tok")
        assert str(exc.value) == "获取评论失败: Internal Server Error"

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = XhsBackendClient(
            base_url="http://proxy.test",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(XhsApiError) as exc:
            await client.like_note("n1")
        assert exc.value.message.startswith("点赞操作失败")
        assert exc.value.status_code is None

    @pytest.mark.asyncio
    async def test_epoch_created_time_accepted(self):
        rec = Recorder(routes={"get-note-comments": [
            {"id": "c1", "content": "求推荐", "user_name": "u", "created_time": 1700000000000},
        ]})
        comments = await _client(rec).get_note_comments("n1", "tok")
        assert comments[0].created_time.startswith("2023-11-14T22:13:20")

    @pytest.mark.asyncio
    async def test_unknown_note_type_treated_as_normal(self):
        rec = Recorder(routes={"search-notes": [{"note_id": "n1", "type": "multi"}]})
        notes = await _client(rec).search_notes("k")
        assert notes[0].type == "normal"

    @pytest.mark.asyncio
    async def test_malformed_item_raises_api_error(self):
        rec = Recorder(routes={"get-note-comments": [{"id": "c1", "user_name": "u"}]})
        with pytest.raises(XhsApiError) as exc:
            await _client(rec).get_note_comments("n1", "tok")
        assert exc.value.message == "获取评论失败: invalid response"

    @pytest.mark.asyncio
    async def test_malformed_user_info_raises_api_error(self):
        rec = Recorder(routes={"get-current-user-info": {"nickname": "no id"}})
        with pytest.raises(XhsApiError):
            await _client(rec).get_current_user_info()

    def test_static_options(self):
        categories = XhsBackendClient.home_feed_categories()
        assert len(categories) == 11
        assert categories[0] == {"id": "homefeed_recommend", "name": "推荐"}
        # Callers get copies
        categories[0]["name"] = "x"
        assert HOME_FEED_CATEGORIES[0]["name"] == "推荐"
        assert [o["value"] for o in XhsBackendClient.search_sort_options()] == [
            "general", "time_descending", "popularity_descending",
        ]
        assert [o["value"] for o in XhsBackendClient.note_type_options()] == [0, 1, 2]


# ═══════════════════════════════════════════════
# collect_via_backend
# ═══════════════════════════════════════════════

class TestCollectViaBackend:
    @pytest.mark.asyncio
    async def test_builds_scraping_result(self):
        rec = Recorder(routes={
            "search-notes": [
                {"note_id": "n1", "xsec_token": "t1", "title": "宝宝保险攻略", "user_id": "a1",
                 "user_name": "作者", "liked_count": 40},
                {"note_id": "n2", "xsec_token": "t2", "title": "第二篇"},
            ],
            "get-note-comments": [
                {"id": "c1", "content": "求推荐", "user_id": "u1", "user_name": "小美", "liked_count": 2,
                 "replies": [{"id": "c2", "content": "同求", "user_id": "u2", "user_name": "小李"}]},
            ],
        })
        result = await collect_via_backend(_client(rec), "宝宝保险", count=2)

        assert result.source == "backend"
        assert [p.id for p in result.posts] == ["n1", "n2"]
        assert result.posts[0].url.endswith("/explore/n1?xsec_token=t1")
        assert result.posts[0].stats.likes == 40
        # 2 notes × (1 comment + 1 reply)
        assert len(result.comments) == 4
        reply = result.comments[1]
        assert reply.is_reply is True
        assert reply.parent_comment_id == "c1"
        assert result.comments[0].replies == 1
        assert result.has_more is True

    @pytest.mark.asyncio
    async def test_failed_comment_fetch_skips_note(self):
        rec = Recorder(routes={
            "search-notes": [{"note_id": "n1", "xsec_token": "t1"}],
            "get-note-comments": httpx.Response(502),
        })
        result = await collect_via_backend(_client(rec), "k")
        assert len(result.posts) == 1
        assert result.comments == []

    @pytest.mark.asyncio
    async def test_failed_search_raises(self):
        rec = Recorder(routes={"search-notes": httpx.Response(503)})
        with pytest.raises(XhsApiError):
            await collect_via_backend(_client(rec), "k")

    @pytest.mark.asyncio
    async def test_malformed_comments_skip_note(self):
        rec = Recorder(routes={
            "search-notes": [{"note_id": "n1", "xsec_token": "t1", "title": "标题", "desc": "正文"}],
            "get-note-comments": [{"id": "c1"}],
        })
        result = await collect_via_backend(_client(rec), "k")
        assert len(result.posts) == 1
        assert result.posts[0].content == "正文"
        assert result.comments == []

    @pytest.mark.asyncio
    async def test_post_content_without_desc(self):
        rec = Recorder(routes={
            "search-notes": [{"note_id": "n1", "title": "标题"}],
            "get-note-comments": [],
        })
        result = await collect_via_backend(_client(rec), "k")
        assert result.posts[0].title == "标题"
        assert result.posts[0].content == "无内容"
