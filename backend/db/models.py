"""
Database Models — SQLAlchemy ORM models.

Tables:
  - searches:       One keyword analysis run (scrape stats + summary)
  - leads:          Scored comments kept from a search, with CRM state
                    (status, favorite, assignee, last contact)
  - user_settings:  The dashboard's settings form, one row per user
"""

from datetime import datetime, timezone
from typing import Optional

import uuid as _uuid

from sqlalchemy import (
    String,
    Integer,
    Float,
    Boolean,
    Text,
    DateTime,
    ForeignKey,
    JSON,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(_uuid.uuid4())


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite hands back naive datetimes
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class Search(Base):
    __tablename__ = "searches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    keyword: Mapped[str] = mapped_column(String(255), index=True)
    source: Mapped[str] = mapped_column(String(20), default="web")  # web, mock, backend
    posts_found: Mapped[int] = mapped_column(Integer, default=0)
    comments_found: Mapped[int] = mapped_column(Integer, default=0)
    leads_found: Mapped[int] = mapped_column(Integer, default=0)
    high_quality_leads: Mapped[int] = mapped_column(Integer, default=0)
    average_score: Mapped[float] = mapped_column(Float, default=0.0)
    top_keywords: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    scraping_status: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    leads: Mapped[list["Lead"]] = relationship(back_populates="search", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "keyword": self.keyword,
            "source": self.source,
            "postsFound": self.posts_found,
            "commentsFound": self.comments_found,
            "leadsFound": self.leads_found,
            "highQualityLeads": self.high_quality_leads,
            "averageScore": self.average_score,
            "topKeywords": self.top_keywords or [],
            "scrapingStatus": self.scraping_status,
            "createdAt": _iso(self.created_at),
        }


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    search_id: Mapped[str] = mapped_column(String(36), ForeignKey("searches.id"), index=True)
    # Who said what, where
    username: Mapped[str] = mapped_column(String(255))
    nickname: Mapped[str] = mapped_column(String(255), default="")
    comment: Mapped[str] = mapped_column(Text)
    post_title: Mapped[str] = mapped_column(Text, default="")
    post_url: Mapped[str] = mapped_column(String(1000), default="")
    # AI analysis
    ai_analysis: Mapped[str] = mapped_column(Text, default="")
    lead_score: Mapped[int] = mapped_column(Integer)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    engagement: Mapped[str] = mapped_column(String(20), default="中等活跃")
    intent_level: Mapped[str] = mapped_column(String(10), default="中")
    contact_potential: Mapped[str] = mapped_column(String(10), default="中")
    followers_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # CRM state
    status: Mapped[str] = mapped_column(String(20), default="new")  # new, contacted, qualified, converted, lost
    favorite: Mapped[bool] = mapped_column(Boolean, default=False)
    assigned_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_contact_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    search: Mapped["Search"] = relationship(back_populates="leads")

    __table_args__ = (
        Index("ix_leads_search_score", "search_id", "lead_score"),
    )

    def matches(self, query: str) -> bool:
        """Case-insensitive match on user name, comment text or any tag."""
        q = (query or "").strip().lower()
        if not q:
            return True
        return (
            q in (self.username or "").lower()
            or q in (self.nickname or "").lower()
            or q in (self.comment or "").lower()
            or any(q in str(tag).lower() for tag in (self.tags or []))
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "searchId": self.search_id,
            "username": self.username,
            "nickname": self.nickname,
            "comment": self.comment,
            "postTitle": self.post_title,
            "postUrl": self.post_url,
            "aiAnalysis": self.ai_analysis,
            "leadScore": self.lead_score,
            "tags": self.tags or [],
            "engagement": self.engagement,
            "intentLevel": self.intent_level,
            "contactPotential": self.contact_potential,
            "followersCount": self.followers_count,
            "status": self.status,
            "favorite": self.favorite,
            "assignedTo": self.assigned_to,
            "lastContact": _iso(self.last_contact_at),
            "createdAt": _iso(self.created_at),
        }


class UserSettings(Base):
    """Settings form values; defaults mirror the dashboard's initial form."""
    __tablename__ = "user_settings"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    company_name: Mapped[str] = mapped_column(String(255), default="LeadCrush 科技有限公司")
    admin_email: Mapped[str] = mapped_column(String(255), default="admin@leadcrush.com")
    company_description: Mapped[str] = mapped_column(
        Text,
        default="LeadCrush 是一家专注于小红书营销和线索挖掘的科技公司，帮助企业发现和管理高质量潜在客户。",
    )
    auto_refresh: Mapped[bool] = mapped_column(Boolean, default=True)
    new_lead_notifications: Mapped[bool] = mapped_column(Boolean, default=True)
    export_format: Mapped[str] = mapped_column(String(10), default="excel")  # excel, csv, json
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def to_dict(self) -> dict:
        return {
            "companyName": self.company_name,
            "adminEmail": self.admin_email,
            "companyDescription": self.company_description,
            "autoRefresh": self.auto_refresh,
            "newLeadNotifications": self.new_lead_notifications,
            "exportFormat": self.export_format,
            "updatedAt": _iso(self.updated_at),
        }
