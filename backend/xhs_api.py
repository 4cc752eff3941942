"""
Backend Proxy Client — thin wrapper over the Xiaohongshu backend service

The backend proxy (a separate service) holds the logged-in platform session
and exposes its private API as JSON endpoints. Every call here is a
``POST {XHS_BACKEND_URL}/api/<endpoint>`` with a JSON body; the JSON reply is
returned as-is, or parsed into the proxy models for the list endpoints.

Non-2xx replies raise ``XhsApiError`` with the operation's user-facing
failure message (e.g. ``关注操作失败: Not Found``).

Also provides ``collect_via_backend()`` which turns a keyword search on the
proxy into a ``ScrapingResult`` so the lead analyzer can use it instead of
HTML scraping.
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from config import REQUEST_TIMEOUT, XHS_BACKEND_URL
from models import (
    ScrapingResult,
    XhsAuthor,
    XhsComment,
    XhsCommentAuthor,
    XhsNote,
    XhsNoteComment,
    XhsPost,
    XhsPostStats,
    XhsUser,
)

logger = logging.getLogger(__name__)

SEARCH_SORTS = ("general", "time_descending", "popularity_descending")
NOTE_TYPES = (0, 1, 2)

HOME_FEED_CATEGORIES = [
    {"id": "homefeed_recommend", "name": "推荐"},
    {"id": "homefeed.fashion_v3", "name": "穿搭"},
    {"id": "homefeed.food_v3", "name": "美食"},
    {"id": "homefeed.cosmetics_v3", "name": "彩妆"},
    {"id": "homefeed.movie_and_tv_v3", "name": "影视"},
    {"id": "homefeed.career_v3", "name": "职场"},
    {"id": "homefeed.love_v3", "name": "情感"},
    {"id": "homefeed.household_product_v3", "name": "家居"},
    {"id": "homefeed.gaming_v3", "name": "游戏"},
    {"id": "homefeed.travel_v3", "name": "旅行"},
    {"id": "homefeed.fitness_v3", "name": "健身"},
]

SEARCH_SORT_OPTIONS = [
    {"value": "general", "label": "综合排序"},
    {"value": "time_descending", "label": "最新排序"},
    {"value": "popularity_descending", "label": "最热排序"},
]

NOTE_TYPE_OPTIONS = [
    {"value": 0, "label": "全部类型"},
    {"value": 1, "label": "视频笔记"},
    {"value": 2, "label": "图文笔记"},
]


class XhsApiError(Exception):
    """A backend proxy call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class XhsBackendClient:
    """Async client for the backend proxy's JSON endpoints."""

    def __init__(self, base_url: str = XHS_BACKEND_URL, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    async def _ensure_client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT, connect=10.0))

    async def close(self):
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self):
        await self._ensure_client()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def _post(self, endpoint: str, failure: str, payload: Optional[dict] = None) -> Any:
        await self._ensure_client()
        url = f"{self.base_url}/api/{endpoint}"
        try:
            if payload is None:
                resp = await self._client.post(url, headers={"Content-Type": "application/json"})
            else:
                resp = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Backend proxy request to %s failed: %s", endpoint, e)
            raise XhsApiError(f"{failure}: {e}") from e

        if not resp.is_success:
            logger.warning("Backend proxy %s → HTTP %d", endpoint, resp.status_code)
            raise XhsApiError(f"{failure}: {resp.reason_phrase}", status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise XhsApiError(f"{failure}: invalid JSON response") from e

    # ── Note actions ───────────────────────────

    async def collect_note(self, note_id: str, collect: bool = True) -> Any:
        """收藏/取消收藏笔记"""
        return await self._post("collect-note", "收藏操作失败", {"note_id": note_id, "collect": collect})

    async def like_note(self, note_id: str, like: bool = True) -> Any:
        """点赞/取消点赞笔记"""
        return await self._post("like-note-action", "点赞操作失败", {"note_id": note_id, "like": like})

    async def post_comment(self, note_id: str, content: str) -> Any:
        """发表评论"""
        return await self._post("post-note-comment", "发表评论失败", {"note_id": note_id, "content": content})

    async def follow_user(self, target_user_id: str, follow: bool = True) -> Any:
        """关注/取消关注用户"""
        return await self._post(
            "follow-user", "关注操作失败", {"target_user_id": target_user_id, "follow": follow}
        )

    # ── Note & feed reads ──────────────────────

    async def get_collect_notes(
        self, user_id: str, count: int = 5, xsec_token: str = "", download: bool = False
    ) -> list[XhsNote]:
        data = await self._post("get-collect-notes", "获取收藏笔记失败", {
            "user_id": user_id,
            "count": count,
            "xsec_token": xsec_token,
            "download": download,
        })
        return _parse_list(data, XhsNote, "获取收藏笔记失败")

    async def get_feed_data(self, note_id: str, xsec_token: str) -> Any:
        return await self._post("get-feed-data", "获取笔记数据失败", {
            "note_id": note_id,
            "xsec_token": xsec_token,
        })

    async def get_file_contents(self, file_path: str) -> Any:
        return await self._post("get-file-contents", "读取文件失败", {"filePath": file_path})

    async def get_home_feeds(
        self, count: int = 10, category: str = "homefeed_recommend", download: bool = False
    ) -> list[XhsNote]:
        data = await self._post("get-home-feeds", "获取首页数据失败", {
            "count": count,
            "category": category,
            "download": download,
        })
        return _parse_list(data, XhsNote, "获取首页数据失败")

    async def get_user_liked_notes(
        self, user_id: str, count: int = 5, xsec_token: str = "", download: bool = False
    ) -> list[XhsNote]:
        data = await self._post("get-user-liked-notes", "获取用户点赞笔记失败", {
            "user_id": user_id,
            "count": count,
            "xsec_token": xsec_token,
            "download": download,
        })
        return _parse_list(data, XhsNote, "获取用户点赞笔记失败")

    async def get_note_comments(
        self, note_id: str, xsec_token: str, count: int = 10, download: bool = False
    ) -> list[XhsNoteComment]:
        data = await self._post("get-note-comments", "获取评论失败", {
            "note_id": note_id,
            "xsec_token": xsec_token,
            "count": count,
            "download": download,
        })
        return _parse_list(data, XhsNoteComment, "获取评论失败")

    async def get_user_posts(
        self, user_id: str, xsec_token: str, count: int = 5, download: bool = False
    ) -> list[XhsNote]:
        data = await self._post("get-user-posts", "获取用户笔记失败", {
            "user_id": user_id,
            "count": count,
            "xsec_token": xsec_token,
            "download": download,
        })
        return _parse_list(data, XhsNote, "获取用户笔记失败")

    async def search_notes(
        self,
        keyword: str,
        count: int = 20,
        sort: str = "general",
        note_type: int = 0,
        download: bool = False,
    ) -> list[XhsNote]:
        if sort not in SEARCH_SORTS:
            raise ValueError(f"sort must be one of {SEARCH_SORTS}, got {sort!r}")
        if note_type not in NOTE_TYPES:
            raise ValueError(f"note_type must be one of {NOTE_TYPES}, got {note_type!r}")
        data = await self._post("search-notes", "搜索笔记失败", {
            "keyword": keyword,
            "count": count,
            "sort": sort,
            "noteType": note_type,
            "download": download,
        })
        return _parse_list(data, XhsNote, "搜索笔记失败")

    # ── Users & notifications ──────────────────

    async def get_current_user_info(self) -> XhsUser:
        data = await self._post("get-current-user-info", "获取用户信息失败")
        try:
            return XhsUser.model_validate(data)
        except ValidationError as e:
            raise XhsApiError("获取用户信息失败: invalid response") from e

    async def search_users(self, keyword: str, count: int = 5, download: bool = False) -> list[XhsUser]:
        data = await self._post("search-users", "搜索用户失败", {
            "keyword": keyword,
            "count": count,
            "download": download,
        })
        return _parse_list(data, XhsUser, "搜索用户失败")

    async def get_user_notify_connections(self, count: int = 20, cursor: str = "") -> Any:
        """消息通知 — 关注分类"""
        return await self._post(
            "get-user-notify-connections", "获取关注通知失败", {"count": count, "cursor": cursor}
        )

    async def get_user_notify_likes(self, count: int = 20, cursor: str = "") -> Any:
        """消息通知 — 赞和收藏分类"""
        return await self._post(
            "get-user-notify-likes", "获取点赞通知失败", {"count": count, "cursor": cursor}
        )

    async def get_user_notify_mentions(self, count: int = 20, cursor: str = "") -> Any:
        """消息通知 — 评论和@分类"""
        return await self._post(
            "get-user-notify-mentions", "获取提及通知失败", {"count": count, "cursor": cursor}
        )

    # ── Static option lists for the dashboard ──

    @staticmethod
    def home_feed_categories() -> list[dict]:
        return [dict(c) for c in HOME_FEED_CATEGORIES]

    @staticmethod
    def search_sort_options() -> list[dict]:
        return [dict(o) for o in SEARCH_SORT_OPTIONS]

    @staticmethod
    def note_type_options() -> list[dict]:
        return [dict(o) for o in NOTE_TYPE_OPTIONS]


def _parse_list(data: Any, model, failure: str):
    if isinstance(data, dict):
        # Some proxy builds wrap lists as {"data": [...]}
        data = data.get("data", data.get("items", []))
    if not isinstance(data, list):
        return []
    try:
        return [model.model_validate(item) for item in data]
    except ValidationError as e:
        logger.warning("Backend proxy returned an unexpected %s shape: %s", model.__name__, e)
        raise XhsApiError(f"{failure}: invalid response") from e


# ──────────────────────────────────────────────
# Keyword search through the proxy → ScrapingResult
# ──────────────────────────────────────────────

def _flatten_comments(comments: list[XhsNoteComment], parent_id: Optional[str] = None):
    for c in comments:
        yield c, parent_id
        if c.replies:
            yield from _flatten_comments(c.replies, c.id)


async def collect_via_backend(
    client: XhsBackendClient,
    keyword: str,
    count: int = 20,
    comments_per_note: int = 10,
) -> ScrapingResult:
    """Search notes on the proxy and pull their comments.

    A failed comment fetch for one note is logged and skipped; a failed
    search raises ``XhsApiError``.
    """
    notes = await client.search_notes(keyword, count=count)
    logger.info("Backend search for %r → %d notes", keyword, len(notes))

    posts: list[XhsPost] = []
    comments: list[XhsComment] = []
    for note in notes:
        posts.append(XhsPost(
            id=note.note_id,
            title=note.title or "无标题",
            content=note.desc or "无内容",
            author=XhsAuthor(username=note.user_id or note.user_name, nickname=note.user_name),
            stats=XhsPostStats(likes=note.liked_count),
            url=f"https://www.xiaohongshu.com/explore/{note.note_id}?xsec_token={note.xsec_token}",
        ))
        try:
            note_comments = await client.get_note_comments(
                note.note_id, note.xsec_token, count=comments_per_note
            )
        except XhsApiError as e:
            logger.warning("Skipping comments for note %s: %s", note.note_id, e)
            continue

        for c, parent_id in _flatten_comments(note_comments):
            comments.append(XhsComment(
                id=c.id,
                post_id=note.note_id,
                content=c.content,
                author=XhsCommentAuthor(
                    username=c.user_id or c.user_name,
                    nickname=c.user_name,
                    avatar=c.user_avatar,
                ),
                likes=c.liked_count,
                replies=len(c.replies or []),
                created_at=c.created_time or posts[-1].created_at,
                is_reply=parent_id is not None,
                parent_comment_id=parent_id,
            ))

    return ScrapingResult(
        posts=posts,
        comments=comments,
        total_count=len(comments),
        has_more=len(notes) >= count,
        source="backend",
    )
