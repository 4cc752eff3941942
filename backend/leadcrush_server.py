"""
LeadCrush API Server

FastAPI backend for the LeadCrush dashboard.

Endpoints:
  POST /api/analyze-leads        Scrape a keyword, score comments, persist the leads
  GET  /api/health               Health check
  POST /api/auth/login           Issue a session token (sets the auth-token cookie)
  POST /api/auth/register        Demo/self-service sign-up
  POST /api/auth/forgot-password Acknowledge a reset request
  POST /api/auth/logout          Clear the session cookie
  GET  /api/auth/me              Current user
  GET  /api/leads                Saved leads (search / status / favorite / score filters)
  GET  /api/leads/export         Download leads as csv / json / excel
  GET  /api/leads/{id}           One lead
  PATCH /api/leads/{id}          Update status / favorite / assignee
  POST /api/leads/{id}/favorite  Toggle favorite
  POST /api/leads/bulk-status    Set status on many leads
  DELETE /api/leads/{id}         Delete a lead
  GET  /api/searches             Past keyword analyses
  GET  /api/dashboard/stats      Headline numbers
  GET  /api/analytics?range=7d   Charts data for the analytics page
  GET/PUT /api/settings          Company & notification settings
  POST /api/xhs/*                Engagement actions through the backend proxy
  GET  /api/xhs/options          Feed categories, sort & note-type options

Run:
  uvicorn leadcrush_server:app --reload --port 8080
"""

import logging
import time
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import analytics
from auth import AuthUser, create_token, demo_mode, get_current_user, is_public_path, require_auth
from config import (
    ADMIN_PASSWORD,
    ALLOWED_ORIGINS,
    AUTH_COOKIE_NAME,
    AUTH_TOKEN_TTL_HOURS,
    DEMO_USER_ID,
    KIMI_API_KEY,
    OPENAI_API_KEY,
    RATE_LIMIT_PER_MINUTE,
    XHS_BACKEND_CONFIGURED,
    XHS_BACKEND_URL,
    XHS_USE_MOCK_DATA,
)
from db import get_db
from db.models import Lead, Search, UserSettings
from export import EXPORT_FORMATS, export_leads
from lead_analyzer import run_lead_analysis
from logging_config import setup_logging
from models import CamelModel, LeadStatus
from xhs_api import XhsApiError, XhsBackendClient
from xhs_scraper import get_scraper

setup_logging()
logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Rate Limiter (in-memory, per-IP)
# ──────────────────────────────────────────────

class RateLimiter:
    """Sliding-window rate limiter with periodic stale-IP cleanup."""

    def __init__(self, max_requests: int = 60, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._last_cleanup = time.time()
        self._cleanup_interval = 300

    def _maybe_cleanup(self):
        now = time.time()
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        stale_keys = [
            k for k, timestamps in self._requests.items()
            if not timestamps or (now - max(timestamps)) > self.window
        ]
        for k in stale_keys:
            del self._requests[k]

    def check(self, client_id: str) -> bool:
        """Returns True if the request is allowed."""
        now = time.time()
        self._maybe_cleanup()
        self._requests[client_id] = [
            t for t in self._requests[client_id] if now - t < self.window
        ]
        if len(self._requests[client_id]) >= self.max_requests:
            return False
        self._requests[client_id].append(now)
        return True


rate_limiter = RateLimiter(max_requests=RATE_LIMIT_PER_MINUTE, window_seconds=60)

_RATE_LIMIT_EXEMPT = {"/api/health"}


# ──────────────────────────────────────────────
# App
# ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    from db import init_db
    logger.info("Initializing database...")
    await init_db()
    logger.info("LeadCrush API ready (mock data: %s, backend proxy: %s)",
                XHS_USE_MOCK_DATA, XHS_BACKEND_URL if XHS_BACKEND_CONFIGURED else "not configured")
    yield
    logger.info("Shutting down")
    await get_scraper().close()


app = FastAPI(
    title="LeadCrush API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Apply rate limiting to API routes (skip CORS preflight and health)."""
    path = request.url.path.rstrip("/")
    if (
        request.url.path.startswith("/api/")
        and request.method != "OPTIONS"
        and path not in _RATE_LIMIT_EXEMPT
    ):
        client_ip = request.client.host if request.client else "unknown"
        if not rate_limiter.check(client_ip):
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please wait a moment and try again."},
            )
    return await call_next(request)


@app.middleware("http")
async def session_gate_middleware(request: Request, call_next):
    """Reject API calls that carry no session token at all (public auth routes excepted).

    Token validity is checked per route by ``require_auth``.
    """
    path = request.url.path
    if (
        path.startswith("/api/")
        and request.method != "OPTIONS"
        and not is_public_path(path)
        and not request.cookies.get(AUTH_COOKIE_NAME)
        and not request.headers.get("authorization", "").lower().startswith("bearer ")
    ):
        return JSONResponse(status_code=401, content={"detail": "Authentication required"})
    return await call_next(request)


# ──────────────────────────────────────────────
# Request Models
# ──────────────────────────────────────────────

class AnalyzeLeadsRequest(BaseModel):
    # Optional so a missing keyword gets the 400 body instead of a 422
    keyword: Optional[str] = Field(None, max_length=100)
    page: int = Field(1, ge=1, le=50)
    source: Literal["web", "backend", "mock"] = "web"


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field("", max_length=255)


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=255)
    name: Optional[str] = Field(None, max_length=100)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)


class UpdateLeadRequest(BaseModel):
    status: Optional[LeadStatus] = None
    favorite: Optional[bool] = None
    assigned_to: Optional[str] = Field(None, max_length=255)


class BulkStatusRequest(BaseModel):
    ids: list[str] = Field(..., min_length=1, max_length=500)
    status: LeadStatus


class SettingsUpdate(CamelModel):
    company_name: Optional[str] = Field(None, max_length=255)
    admin_email: Optional[str] = Field(None, max_length=255)
    company_description: Optional[str] = Field(None, max_length=2000)
    auto_refresh: Optional[bool] = None
    new_lead_notifications: Optional[bool] = None
    export_format: Optional[str] = Field(None, pattern=r"^(excel|csv|json)$")


class FollowUserRequest(BaseModel):
    target_user_id: str = Field(..., min_length=1)
    follow: bool = True


class LikeNoteRequest(BaseModel):
    note_id: str = Field(..., min_length=1)
    like: bool = True


class CollectNoteRequest(BaseModel):
    note_id: str = Field(..., min_length=1)
    collect: bool = True


class CommentRequest(BaseModel):
    note_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, max_length=1000)


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────

def mask_key(key: str) -> str:
    """sk-abcdef123456 → sk-a…3456; empty stays empty."""
    if not key:
        return ""
    if len(key) <= 8:
        return "*" * len(key)
    return f"{key[:4]}…{key[-4:]}"


def _set_session_cookie(response: Response, token: str):
    response.set_cookie(
        AUTH_COOKIE_NAME,
        token,
        max_age=AUTH_TOKEN_TTL_HOURS * 3600,
        httponly=True,
        samesite="lax",
    )


async def _get_user_lead(db: AsyncSession, lead_id: str, user_id: str) -> Lead:
    lead = (await db.execute(
        select(Lead)
        .join(Search, Lead.search_id == Search.id)
        .where(Lead.id == lead_id, Search.user_id == user_id)
    )).scalar_one_or_none()
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead


async def _user_leads(db: AsyncSession, user_id: str, since: Optional[datetime] = None) -> list[tuple[Lead, str]]:
    """(lead, search keyword) pairs for a user, best first."""
    stmt = (
        select(Lead, Search.keyword)
        .join(Search, Lead.search_id == Search.id)
        .where(Search.user_id == user_id)
        .order_by(Lead.lead_score.desc(), Lead.created_at.desc())
    )
    if since is not None:
        stmt = stmt.where(Lead.created_at >= since)
    return [(row[0], row[1]) for row in (await db.execute(stmt)).all()]


async def _user_searches(db: AsyncSession, user_id: str, since: Optional[datetime] = None) -> list[Search]:
    stmt = select(Search).where(Search.user_id == user_id).order_by(Search.created_at.desc())
    if since is not None:
        stmt = stmt.where(Search.created_at >= since)
    return list((await db.execute(stmt)).scalars().all())


async def _get_settings(db: AsyncSession, user_id: str) -> UserSettings:
    settings = await db.get(UserSettings, user_id)
    if settings is None:
        settings = UserSettings(user_id=user_id)
        db.add(settings)
        await db.commit()
    return settings


async def get_backend_client():
    """FastAPI dependency — a backend proxy client for the request."""
    client = XhsBackendClient()
    try:
        yield client
    finally:
        await client.close()


# ──────────────────────────────────────────────
# Lead analysis
# ──────────────────────────────────────────────

@app.post("/api/analyze-leads")
async def analyze_leads(
    request: AnalyzeLeadsRequest,
    user: AuthUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    keyword = (request.keyword or "").strip()
    if not keyword:
        return JSONResponse(status_code=400, content={"error": "Keyword is required"})

    source = "mock" if XHS_USE_MOCK_DATA else request.source
    try:
        result, analysis = await run_lead_analysis(keyword, page=request.page, source=source)
    except Exception as e:
        logger.error("Error in lead analysis: %s", e, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to analyze leads", "details": str(e)},
        )

    summary = analysis.summary
    search = Search(
        id=str(uuid.uuid4()),
        user_id=user.id,
        keyword=keyword,
        source=result.source,
        posts_found=len(result.posts),
        comments_found=len(result.comments),
        leads_found=len(analysis.leads),
        high_quality_leads=summary.high_quality_leads,
        average_score=summary.average_score,
        top_keywords=summary.top_keywords,
        scraping_status=summary.scraping_status,
    )
    db.add(search)
    for item in analysis.leads:
        db.add(Lead(
            search_id=search.id,
            username=item.username,
            nickname=item.nickname,
            comment=item.comment,
            post_title=item.post_title,
            post_url=item.post_url,
            ai_analysis=item.ai_analysis,
            lead_score=item.lead_score,
            tags=item.tags,
            engagement=item.engagement.value,
            intent_level=item.intent_level.value,
            contact_potential=item.contact_potential.value,
            followers_count=item.followers_count,
        ))
    await db.commit()
    logger.info("Saved search %s (%r): %d leads", search.id, keyword, len(analysis.leads))

    body = analysis.model_dump(by_alias=True, mode="json")
    body["searchId"] = search.id
    body["source"] = result.source
    return body


# ──────────────────────────────────────────────
# Health & auth
# ──────────────────────────────────────────────

@app.get("/api/health")
async def health():
    """Health check."""
    return {
        "status": "ok",
        "llm_available": bool(OPENAI_API_KEY or KIMI_API_KEY),
        "mock_data": XHS_USE_MOCK_DATA,
        "backend_configured": XHS_BACKEND_CONFIGURED,
        "demo_mode": demo_mode(),
    }


@app.post("/api/auth/login")
async def login(request: LoginRequest, response: Response):
    if not demo_mode() and ADMIN_PASSWORD and request.password != ADMIN_PASSWORD:
        logger.info("Rejected login for %s", request.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")

    user_id = DEMO_USER_ID if demo_mode() else request.email
    token = create_token(user_id, email=request.email)
    _set_session_cookie(response, token)
    return {"ok": True, "token": token, "user": {"id": user_id, "email": request.email}}


@app.post("/api/auth/register")
async def register(request: RegisterRequest, response: Response):
    if ADMIN_PASSWORD:
        raise HTTPException(status_code=403, detail="Registration is disabled")

    user_id = DEMO_USER_ID if demo_mode() else request.email
    token = create_token(user_id, email=request.email)
    _set_session_cookie(response, token)
    return {"ok": True, "token": token, "user": {"id": user_id, "email": request.email, "name": request.name}}


@app.post("/api/auth/forgot-password")
async def forgot_password(request: ForgotPasswordRequest):
    # No mail delivery; the reply does not reveal whether the address exists
    logger.info("Password reset requested for %s", request.email)
    return {"ok": True, "message": "如果该邮箱已注册，我们已发送重置密码链接"}


@app.post("/api/auth/logout")
async def logout(response: Response):
    response.delete_cookie(AUTH_COOKIE_NAME)
    return {"ok": True}


@app.get("/api/auth/me")
async def me(user: Optional[AuthUser] = Depends(get_current_user)):
    if not user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user.model_dump()


# ──────────────────────────────────────────────
# Leads
# ──────────────────────────────────────────────

@app.get("/api/leads")
async def list_leads(
    q: Optional[str] = Query(None, max_length=100),
    status: Optional[LeadStatus] = None,
    favorite: Optional[bool] = None,
    min_score: int = Query(0, ge=0, le=100),
    search_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: AuthUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    leads = []
    for lead, keyword in await _user_leads(db, user.id):
        if status and lead.status != status:
            continue
        if favorite is not None and lead.favorite != favorite:
            continue
        if lead.lead_score < min_score:
            continue
        if search_id and lead.search_id != search_id:
            continue
        if q and not lead.matches(q):
            continue
        leads.append({**lead.to_dict(), "keyword": keyword})

    return {
        "leads": leads[offset:offset + limit],
        "total": len(leads),
        "limit": limit,
        "offset": offset,
    }


@app.get("/api/leads/export")
async def export_leads_endpoint(
    format: Optional[str] = Query(None),
    status: Optional[LeadStatus] = None,
    user: AuthUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    fmt = format or (await _get_settings(db, user.id)).export_format
    if fmt not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {fmt}")

    rows = [
        {**lead.to_dict(), "keyword": keyword}
        for lead, keyword in await _user_leads(db, user.id)
        if not status or lead.status == status
    ]
    content, media_type, filename = export_leads(rows, fmt)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@app.post("/api/leads/bulk-status")
async def bulk_update_status(
    request: BulkStatusRequest,
    user: AuthUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    leads = (await db.execute(
        select(Lead)
        .join(Search, Lead.search_id == Search.id)
        .where(Lead.id.in_(request.ids), Search.user_id == user.id)
    )).scalars().all()

    now = datetime.now(timezone.utc)
    for lead in leads:
        if request.status is LeadStatus.CONTACTED and lead.status != "contacted":
            lead.last_contact_at = now
        lead.status = request.status.value
    await db.commit()
    return {"ok": True, "updated": len(leads)}


@app.get("/api/leads/{lead_id}")
async def get_lead(lead_id: str, user: AuthUser = Depends(require_auth), db: AsyncSession = Depends(get_db)):
    lead = await _get_user_lead(db, lead_id, user.id)
    return lead.to_dict()


@app.patch("/api/leads/{lead_id}")
async def update_lead(
    lead_id: str,
    request: UpdateLeadRequest,
    user: AuthUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    lead = await _get_user_lead(db, lead_id, user.id)

    if request.status is not None and request.status != lead.status:
        lead.status = request.status.value
        if request.status is LeadStatus.CONTACTED:
            lead.last_contact_at = datetime.now(timezone.utc)
    if request.favorite is not None:
        lead.favorite = request.favorite
    if request.assigned_to is not None:
        lead.assigned_to = request.assigned_to or None
    await db.commit()
    return lead.to_dict()


@app.post("/api/leads/{lead_id}/favorite")
async def toggle_favorite(lead_id: str, user: AuthUser = Depends(require_auth), db: AsyncSession = Depends(get_db)):
    lead = await _get_user_lead(db, lead_id, user.id)
    lead.favorite = not lead.favorite
    await db.commit()
    return {"ok": True, "favorite": lead.favorite}


@app.delete("/api/leads/{lead_id}")
async def delete_lead(lead_id: str, user: AuthUser = Depends(require_auth), db: AsyncSession = Depends(get_db)):
    lead = await _get_user_lead(db, lead_id, user.id)
    await db.delete(lead)
    await db.commit()
    return {"ok": True}


# ──────────────────────────────────────────────
# Searches, dashboard & analytics
# ──────────────────────────────────────────────

@app.get("/api/searches")
async def list_searches(
    limit: int = Query(50, ge=1, le=200),
    user: AuthUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    searches = await _user_searches(db, user.id)
    return {"searches": [s.to_dict() for s in searches[:limit]], "total": len(searches)}


@app.get("/api/dashboard/stats")
async def dashboard_stats(user: AuthUser = Depends(require_auth), db: AsyncSession = Depends(get_db)):
    leads = [lead for lead, _ in await _user_leads(db, user.id)]
    searches = await _user_searches(db, user.id)
    stats = analytics.dashboard_stats(leads, searches)
    stats["recentSearches"] = [s.to_dict() for s in searches[:5]]
    return stats


@app.get("/api/analytics")
async def get_analytics(
    range: str = Query("7d"),
    user: AuthUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    try:
        days = analytics.parse_time_range(range)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    now = datetime.now(timezone.utc)
    since = now - timedelta(days=days)
    pairs = await _user_leads(db, user.id, since=since)
    leads = [lead for lead, _ in pairs]
    searches = await _user_searches(db, user.id, since=since)

    return {
        "range": range,
        "stats": analytics.dashboard_stats(leads, searches),
        "leadsByDay": analytics.leads_by_day(leads, days, now=now),
        "conversion": analytics.conversion_breakdown(leads),
        "sources": analytics.lead_sources(keyword for _, keyword in pairs),
        "scoreDistribution": analytics.score_distribution(leads),
        "intentLevels": analytics.intent_level_breakdown(leads),
    }


# ──────────────────────────────────────────────
# Settings
# ──────────────────────────────────────────────

def _settings_body(settings: UserSettings) -> dict:
    return {
        **settings.to_dict(),
        "apiKeys": {
            "openai": mask_key(OPENAI_API_KEY),
            "kimi": mask_key(KIMI_API_KEY),
        },
        "xhsBackend": {
            "url": XHS_BACKEND_URL,
            "configured": XHS_BACKEND_CONFIGURED,
        },
    }


@app.get("/api/settings")
async def get_settings(user: AuthUser = Depends(require_auth), db: AsyncSession = Depends(get_db)):
    return _settings_body(await _get_settings(db, user.id))


@app.put("/api/settings")
async def update_settings(
    request: SettingsUpdate,
    user: AuthUser = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    settings = await _get_settings(db, user.id)
    for field, value in request.model_dump(exclude_none=True).items():
        setattr(settings, field, value)
    await db.commit()
    await db.refresh(settings)
    logger.info("Settings updated for %s", user.id)
    return _settings_body(settings)


# ──────────────────────────────────────────────
# Backend proxy actions
# ──────────────────────────────────────────────

async def _proxy_call(coro):
    try:
        return {"ok": True, "data": await coro}
    except XhsApiError as e:
        raise HTTPException(status_code=502, detail=e.message)


@app.post("/api/xhs/follow-user")
async def xhs_follow_user(
    request: FollowUserRequest,
    user: AuthUser = Depends(require_auth),
    client: XhsBackendClient = Depends(get_backend_client),
):
    return await _proxy_call(client.follow_user(request.target_user_id, request.follow))


@app.post("/api/xhs/like-note")
async def xhs_like_note(
    request: LikeNoteRequest,
    user: AuthUser = Depends(require_auth),
    client: XhsBackendClient = Depends(get_backend_client),
):
    return await _proxy_call(client.like_note(request.note_id, request.like))


@app.post("/api/xhs/collect-note")
async def xhs_collect_note(
    request: CollectNoteRequest,
    user: AuthUser = Depends(require_auth),
    client: XhsBackendClient = Depends(get_backend_client),
):
    return await _proxy_call(client.collect_note(request.note_id, request.collect))


@app.post("/api/xhs/comment")
async def xhs_comment(
    request: CommentRequest,
    user: AuthUser = Depends(require_auth),
    client: XhsBackendClient = Depends(get_backend_client),
):
    return await _proxy_call(client.post_comment(request.note_id, request.content))


@app.get("/api/xhs/options")
async def xhs_options(user: AuthUser = Depends(require_auth)):
    return {
        "homeFeedCategories": XhsBackendClient.home_feed_categories(),
        "searchSortOptions": XhsBackendClient.search_sort_options(),
        "noteTypeOptions": XhsBackendClient.note_type_options(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("leadcrush_server:app", host="0.0.0.0", port=8080, reload=True)
