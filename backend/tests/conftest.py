"""
Shared test fixtures for the entire test suite.

Provides:
  - In-memory SQLite database with all tables
  - A session factory shared with the FastAPI app in server tests
  - Sample data factories for posts, comments, leads and DB rows
"""

import uuid
from datetime import datetime, timezone

import pytest_asyncio

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from db import Base
from db.models import Lead, Search, UserSettings  # noqa: F401  registers tables

# ── Deterministic test IDs ──────────────────────
TEST_USER = "demo-user"
OTHER_USER = "00000000-0000-4000-8000-000000000002"


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh in-memory SQLite engine (one shared connection)."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ── Sample data factories ──────────────────────

def make_post(**overrides):
    """Create an XhsPost with sensible defaults."""
    from models import XhsAuthor, XhsPost, XhsPostStats

    defaults = {
        "id": "post_1",
        "title": "宝宝保险怎么选？",
        "content": "分享一下给宝宝配置保险的经验",
        "author": XhsAuthor(username="mom_01", nickname="宝妈小王"),
        "stats": XhsPostStats(likes=120, comments=30),
        "tags": ["宝宝保险"],
        "url": "https://www.xiaohongshu.com/explore/post_1",
    }
    defaults.update(overrides)
    return XhsPost(**defaults)


def make_comment(**overrides):
    """Create an XhsComment with sensible defaults."""
    from models import XhsComment, XhsCommentAuthor

    defaults = {
        "id": "comment_1",
        "post_id": "post_1",
        "content": "我也在考虑宝宝保险，有没有推荐？预算5000左右",
        "author": XhsCommentAuthor(username="user_1", nickname="新手爸爸"),
        "likes": 10,
        "replies": 2,
    }
    defaults.update(overrides)
    return XhsComment(**defaults)


def make_scraping_result(posts=None, comments=None, **overrides):
    from models import ScrapingResult

    posts = [make_post()] if posts is None else posts
    comments = [make_comment()] if comments is None else comments
    defaults = {
        "posts": posts,
        "comments": comments,
        "total_count": len(comments),
        "has_more": False,
        "source": "web",
    }
    defaults.update(overrides)
    return ScrapingResult(**defaults)


def make_analyzed_lead(**overrides):
    """Create an AnalyzedLead with sensible defaults."""
    from models import AnalyzedLead

    defaults = {
        "username": "user_1",
        "nickname": "新手爸爸",
        "comment": "我也在考虑宝宝保险，有没有推荐？",
        "post_title": "宝宝保险怎么选？",
        "post_url": "https://www.xiaohongshu.com/explore/post_1",
        "ai_analysis": "需求明确，主动寻求推荐",
        "lead_score": 85,
        "tags": ["需求明确", "寻求推荐"],
        "intent_level": "高",
        "contact_potential": "高",
    }
    defaults.update(overrides)
    return AnalyzedLead(**defaults)


def make_search(**overrides) -> Search:
    defaults = {
        "id": str(uuid.uuid4()),
        "user_id": TEST_USER,
        "keyword": "宝宝保险",
        "source": "mock",
        "posts_found": 2,
        "comments_found": 8,
        "leads_found": 1,
    }
    defaults.update(overrides)
    return Search(**defaults)


def make_db_lead(search_id: str, **overrides) -> Lead:
    defaults = {
        "id": str(uuid.uuid4()),
        "search_id": search_id,
        "username": "user_1",
        "nickname": "新手爸爸",
        "comment": "我也在考虑宝宝保险，有没有推荐？",
        "lead_score": 85,
        "tags": ["需求明确", "寻求推荐"],
        "intent_level": "高",
        "created_at": datetime.now(timezone.utc),
    }
    defaults.update(overrides)
    return Lead(**defaults)
