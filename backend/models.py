"""
Pydantic Data Models

All structured data types used throughout LeadCrush:
  - XhsPost / XhsComment: what the scraper pulls off a search page
  - ScrapingResult: one scrape (posts + comments + provenance)
  - AnalyzedLead / AnalysisSummary / LeadAnalysis: LLM scoring output,
    also the body of POST /api/analyze-leads
  - XhsNote / XhsNoteComment / XhsUser: shapes returned by the backend proxy

Dashboard-facing models serialize with camelCase keys (``leadScore``,
``aiAnalysis``); construct them with either spelling.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CamelModel(BaseModel):
    """Base for models the dashboard reads (camelCase on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────────────────────
# Enumerations
# ──────────────────────────────────────────────

class EngagementLevel(str, Enum):
    NEW = "新用户"
    ACTIVE = "活跃用户"
    MODERATE = "中等活跃"
    HIGH = "高活跃"


class IntentLevel(str, Enum):
    LOW = "低"
    MEDIUM = "中"
    HIGH = "高"
    VERY_HIGH = "极高"


class ContactPotential(str, Enum):
    LOW = "低"
    MEDIUM = "中"
    HIGH = "高"


class LeadStatus(str, Enum):
    """Sales pipeline stage of a stored lead"""
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    LOST = "lost"


ScrapeSource = Literal["web", "mock", "backend"]


# ──────────────────────────────────────────────
# Scraped content
# ──────────────────────────────────────────────

class XhsAuthor(CamelModel):
    username: str
    nickname: str
    avatar: str = ""
    followers: int = 0


class XhsPostStats(CamelModel):
    likes: int = 0
    comments: int = 0
    shares: int = 0


class XhsPost(CamelModel):
    """A note (post) as seen on a search result page"""
    id: str
    title: str
    content: str
    author: XhsAuthor
    stats: XhsPostStats = Field(default_factory=XhsPostStats)
    tags: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)
    url: str = ""


class XhsCommentAuthor(CamelModel):
    username: str
    nickname: str
    avatar: str = ""


class XhsComment(CamelModel):
    id: str
    post_id: str
    content: str
    author: XhsCommentAuthor
    likes: int = 0
    replies: int = 0
    created_at: str = Field(default_factory=utc_now_iso)
    is_reply: bool = False
    parent_comment_id: Optional[str] = None


class ScrapingResult(CamelModel):
    posts: list[XhsPost] = Field(default_factory=list)
    comments: list[XhsComment] = Field(default_factory=list)
    total_count: int = 0
    has_more: bool = False
    source: ScrapeSource = "web"

    def find_post(self, post_id: str) -> Optional[XhsPost]:
        for post in self.posts:
            if post.id == post_id:
                return post
        return None


# ──────────────────────────────────────────────
# Lead analysis (LLM output schema)
# ──────────────────────────────────────────────

class AnalyzedLead(CamelModel):
    """A comment judged to be a potential customer"""
    username: str
    nickname: str = ""
    comment: str
    post_title: str = ""
    post_url: str = ""
    ai_analysis: str = ""
    lead_score: int = Field(ge=0, le=100, description="Purchase-intent score, 0-100")
    tags: list[str] = Field(default_factory=list)
    engagement: EngagementLevel = EngagementLevel.MODERATE
    intent_level: IntentLevel = IntentLevel.MEDIUM
    contact_potential: ContactPotential = ContactPotential.MEDIUM
    followers_count: Optional[int] = None

    @field_validator("lead_score", mode="before")
    @classmethod
    def _clamp_score(cls, v):
        # Models occasionally answer 105 or 87.5
        try:
            score = int(round(float(v)))
        except (TypeError, ValueError):
            return v
        return max(0, min(100, score))

    @field_validator("engagement", mode="before")
    @classmethod
    def _coerce_engagement(cls, v):
        values = {e.value for e in EngagementLevel}
        return v if isinstance(v, EngagementLevel) or (isinstance(v, str) and v in values) else EngagementLevel.MODERATE

    @field_validator("intent_level", mode="before")
    @classmethod
    def _coerce_intent(cls, v):
        values = {e.value for e in IntentLevel}
        return v if isinstance(v, IntentLevel) or (isinstance(v, str) and v in values) else IntentLevel.MEDIUM

    @field_validator("contact_potential", mode="before")
    @classmethod
    def _coerce_contact(cls, v):
        values = {e.value for e in ContactPotential}
        return v if isinstance(v, ContactPotential) or (isinstance(v, str) and v in values) else ContactPotential.MEDIUM


class AnalysisSummary(CamelModel):
    total_analyzed: int = 0
    high_quality_leads: int = 0
    average_score: float = 0
    top_keywords: list[str] = Field(default_factory=list)
    scraping_status: str = ""


class LeadAnalysis(CamelModel):
    leads: list[AnalyzedLead] = Field(default_factory=list)
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary)


# ──────────────────────────────────────────────
# Backend proxy shapes (snake_case on the wire)
# ──────────────────────────────────────────────

class XhsNote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    note_id: str
    xsec_token: str = ""
    type: Literal["normal", "video"] = "normal"
    title: str = ""
    desc: str = ""
    liked_count: int = 0
    cover: str = ""
    user_id: str = ""
    user_name: str = ""
    user_xsec_token: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, v):
        return "video" if v == "video" else "normal"

    @field_validator("desc", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v


class XhsNoteComment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    note_id: str = ""
    content: str
    user_id: str = ""
    user_name: str = ""
    user_avatar: str = ""
    liked_count: int = 0
    created_time: str = ""
    replies: Optional[list["XhsNoteComment"]] = None

    @field_validator("created_time", mode="before")
    @classmethod
    def _epoch_to_iso(cls, v):
        # Proxy builds send either an ISO string or epoch milliseconds
        if v is None:
            return ""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            seconds = v / 1000 if v > 1e11 else v
            return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
        return v


class XhsUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    user_name: str = ""
    nickname: str = ""
    avatar: str = ""
    followers_count: int = 0
    following_count: int = 0
    notes_count: int = 0
    xsec_token: str = ""
