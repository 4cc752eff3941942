"""
Lead Analyzer — LLM-based purchase-intent scoring of scraped comments

Given the posts and comments from a scrape, asks an LLM to pick out the
commenters who look like potential customers and score each one 0-100.

Scoring rubric (shared by the LLM prompt and the keyword fallback):
  - Clearly states a need or interest          25
  - Actively asks for advice or recommendations 20
  - Concrete scenario or budget                 20
  - Purchasing power or urgency                 15
  - User activity / social influence            10
  - Comment quality and interaction             10

Model priority:
  1. OpenAI (LEAD_MODEL, default gpt-4o)
  2. Kimi (OpenAI-compatible API)
  3. Keyword scorer (no-API fallback, also used when the LLM call fails)

Only leads scoring >= LEAD_MIN_SCORE are returned. Summary counts are
recomputed from the kept leads so they always agree with the list.
"""

import asyncio
import json
import logging
import random
import re
from collections import Counter
from typing import Optional

import httpx
from openai import AsyncOpenAI, RateLimitError
from pydantic import ValidationError

from config import (
    COST_PER_1K_TOKENS,
    HIGH_QUALITY_SCORE,
    KIMI_API_BASE,
    KIMI_API_KEY,
    KIMI_LEAD_MODEL,
    LEAD_MIN_SCORE,
    LEAD_MODEL,
    OPENAI_API_KEY,
)
from models import (
    AnalysisSummary,
    AnalyzedLead,
    ContactPotential,
    EngagementLevel,
    IntentLevel,
    LeadAnalysis,
    ScrapingResult,
)

logger = logging.getLogger(__name__)

NO_COMMENTS_STATUS = "未找到相关评论数据"
UNKNOWN_POST_TITLE = "未知帖子"

MAX_ATTEMPTS = 4

# ──────────────────────────────────────────────
# Keyword signals (fallback scorer)
# ──────────────────────────────────────────────

NEED_PHRASES = ["考虑", "想买", "想要", "需要", "打算", "纠结", "想给", "准备", "配置", "想先买", "在找"]
ADVICE_PHRASES = ["建议", "推荐", "求", "有没有", "咨询", "怎么选", "请问", "哪个好", "靠谱"]
SCENARIO_PHRASES = ["宝宝", "孩子", "家里", "我家", "岁", "爸爸", "妈妈", "老人", "父母"]
BUDGET_PATTERN = re.compile(r"预算|\d+\s*(?:元|块|万|左右)")
URGENCY_PHRASES = ["急", "尽快", "马上", "来得及", "现在", "最好的", "赶紧"]
AD_PHRASES = ["加微信", "加v", "vx", "私信我", "代理", "优惠券", "点击链接", "限时"]
DONE_PHRASES = ["已经买了", "已买", "不需要", "不感兴趣", "买过了"]
CONSULT_PHRASES = ["咨询", "有没有专业", "顾问", "私信", "联系"]


def _contains_any(text: str, phrases: list[str]) -> list[str]:
    lowered = text.lower()
    return [p for p in phrases if p.lower() in lowered]


def engagement_for(likes: int, replies: int) -> EngagementLevel:
    activity = likes + replies * 2
    if activity >= 50:
        return EngagementLevel.HIGH
    if activity >= 20:
        return EngagementLevel.ACTIVE
    if activity >= 5:
        return EngagementLevel.MODERATE
    return EngagementLevel.NEW


def intent_for(score: int) -> IntentLevel:
    if score >= 90:
        return IntentLevel.VERY_HIGH
    if score >= 75:
        return IntentLevel.HIGH
    if score >= LEAD_MIN_SCORE:
        return IntentLevel.MEDIUM
    return IntentLevel.LOW


def build_comment_rows(result: ScrapingResult) -> list[dict]:
    """Flatten comments + their post into the rows the prompt lists."""
    rows = []
    for index, comment in enumerate(result.comments, start=1):
        post = result.find_post(comment.post_id)
        rows.append({
            "index": index,
            "username": comment.author.username,
            "nickname": comment.author.nickname,
            "comment": comment.content,
            "postTitle": post.title if post else UNKNOWN_POST_TITLE,
            "postUrl": post.url if post else "",
            "likes": comment.likes,
            "replies": comment.replies,
            "createdAt": comment.created_at,
            "authorFollowers": post.author.followers if post else 0,
        })
    return rows


def score_comment(row: dict) -> Optional[AnalyzedLead]:
    """Rubric-based score for one comment row, or None for ads / already-bought."""
    text = row["comment"]
    if _contains_any(text, AD_PHRASES) or _contains_any(text, DONE_PHRASES):
        return None

    score = 0
    tags: list[str] = []
    reasons: list[str] = []

    if _contains_any(text, NEED_PHRASES):
        score += 25
        tags.append("需求明确")
        reasons.append("明确表达了需求")
    if _contains_any(text, ADVICE_PHRASES):
        score += 20
        tags.append("寻求推荐")
        reasons.append("主动寻求建议或推荐")
    if BUDGET_PATTERN.search(text):
        score += 20
        tags.append("有预算")
        reasons.append("提到了具体预算")
    elif _contains_any(text, SCENARIO_PHRASES):
        score += 10
        tags.append("有使用场景")
        reasons.append("描述了具体使用场景")
    if _contains_any(text, URGENCY_PHRASES):
        score += 15
        tags.append("时间紧迫")
        reasons.append("表现出购买紧迫性")

    likes, replies = row.get("likes", 0), row.get("replies", 0)
    score += min(10, likes // 5 + replies)

    if len(text) >= 30:
        score += 10
    elif len(text) >= 15:
        score += 5

    score = max(0, min(100, score))
    contact = (
        ContactPotential.HIGH if _contains_any(text, CONSULT_PHRASES)
        else ContactPotential.MEDIUM if "寻求推荐" in tags
        else ContactPotential.LOW
    )
    analysis = "；".join(reasons) if reasons else "未发现明显购买信号"

    return AnalyzedLead(
        username=row["username"],
        nickname=row.get("nickname", ""),
        comment=text,
        post_title=row.get("postTitle", ""),
        post_url=row.get("postUrl", ""),
        ai_analysis=f"关键词分析：{analysis}。",
        lead_score=score,
        tags=tags,
        engagement=engagement_for(likes, replies),
        intent_level=intent_for(score),
        contact_potential=contact,
        followers_count=row.get("authorFollowers"),
    )


# ──────────────────────────────────────────────
# Analyzer
# ──────────────────────────────────────────────

class LeadAnalyzer:
    """Scores scraped comments as sales leads."""

    def __init__(self):
        if OPENAI_API_KEY:
            self._client = AsyncOpenAI(api_key=OPENAI_API_KEY)
            self._model = LEAD_MODEL
        elif KIMI_API_KEY:
            self._client = AsyncOpenAI(
                api_key=KIMI_API_KEY,
                base_url=KIMI_API_BASE,
                timeout=httpx.Timeout(120.0, connect=10.0),
            )
            self._model = KIMI_LEAD_MODEL
        else:
            self._client = None
            self._model = None

        # Cost tracking
        self.total_input_tokens = 0
        self.total_output_tokens = 0

    @property
    def llm_available(self) -> bool:
        return self._client is not None

    async def analyze(self, keyword: str, result: ScrapingResult) -> LeadAnalysis:
        """Score every comment in ``result``; never raises for model failures."""
        if not result.comments:
            return LeadAnalysis(
                leads=[],
                summary=AnalysisSummary(scraping_status=NO_COMMENTS_STATUS),
            )

        rows = build_comment_rows(result)
        logger.info("Sending %d comments to AI for analysis", len(rows))

        analysis: Optional[LeadAnalysis] = None
        if self._client:
            try:
                analysis = await self._analyze_with_llm(keyword, rows)
            except Exception as e:
                logger.warning("LLM analysis failed: %s — falling back to keywords", e)

        if analysis is None:
            analysis = self._keyword_fallback(rows)

        analysis = self._finalize(analysis, result, total_analyzed=len(rows))
        logger.info("AI analysis completed: %d leads identified", len(analysis.leads))
        return analysis

    # ── LLM path ───────────────────────────────

    @staticmethod
    def build_prompt(keyword: str, rows: list[dict]) -> str:
        listing = []
        for r in rows:
            listing.append(
                f"{r['index']}. 用户: {r['username']} (昵称: {r['nickname']})\n"
                f"   评论: \"{r['comment']}\"\n"
                f"   帖子标题: \"{r['postTitle']}\"\n"
                f"   帖子链接: {r['postUrl']}\n"
                f"   点赞数: {r['likes']}\n"
                f"   回复数: {r['replies']}\n"
                f"   发布时间: {r['createdAt']}\n"
                f"   作者粉丝数: {r['authorFollowers']}"
            )

        parts = [
            "你是一个专业的销售线索分析师，专门分析从小红书抓取的评论数据来发现潜在客户。",
            "",
            f"关键词: \"{keyword}\"",
            "",
            "评论数据：",
            "\n\n".join(listing),
            "",
            "请分析每条评论，识别出有购买意向的潜在客户，为每位潜在客户给出：",
            "1. aiAnalysis：详细说明为什么是潜在客户（需求明确程度、购买时机、预算能力、比较行为、社交影响力）",
            "2. leadScore（0-100）：明确表达需求或兴趣 25分；主动寻求建议或推荐 20分；"
            "有具体的使用场景或预算 20分；显示购买能力或紧迫性 15分；用户活跃度和社交影响力 10分；评论质量和互动程度 10分",
            "3. tags：帮助销售人员快速了解客户特征的标签",
            "4. intentLevel：低 / 中 / 高 / 极高",
            "5. contactPotential：低 / 中 / 高",
            "6. engagement：新用户 / 活跃用户 / 中等活跃 / 高活跃",
            "",
            "筛选标准：",
            f"- 只返回评分{LEAD_MIN_SCORE}分以上的潜在客户",
            "- 过滤掉明显的广告、推广或无关内容",
            "- 排除已经购买或明确表示不感兴趣的用户",
            "",
            "只返回如下格式的JSON对象，不要包含其他文字：",
            '{"leads": [{"username": "", "nickname": "", "comment": "", "postTitle": "", "postUrl": "", '
            '"aiAnalysis": "", "leadScore": 0, "tags": [], "engagement": "中等活跃", "intentLevel": "中", '
            '"contactPotential": "中", "followersCount": 0}], '
            '"summary": {"totalAnalyzed": 0, "highQualityLeads": 0, "averageScore": 0, "topKeywords": [], '
            '"scrapingStatus": ""}}',
        ]
        return "\n".join(parts)

    async def _analyze_with_llm(self, keyword: str, rows: list[dict]) -> LeadAnalysis:
        prompt = self.build_prompt(keyword, rows)

        last_error: Optional[Exception] = None
        for attempt in range(MAX_ATTEMPTS):
            try:
                response = await self._client.chat.completions.create(
                    model=self._model,
                    messages=[
                        {"role": "system", "content": "You are a sales lead analyst. Respond with ONLY a valid JSON object."},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=0.3,
                    max_tokens=4000,
                    response_format={"type": "json_object"},
                )
                if response.usage:
                    self.total_input_tokens += response.usage.prompt_tokens
                    self.total_output_tokens += response.usage.completion_tokens

                return self._parse_llm_response(response.choices[0].message.content or "")
            except RateLimitError as e:
                last_error = e
                # Exponential backoff: 2-3s, 4-5s, 8-9s
                if attempt < MAX_ATTEMPTS - 1:
                    backoff = (2 * (2 ** attempt)) + random.uniform(0, 1)
                    logger.warning("LLM rate-limited (attempt %d/%d), backing off %.1fs...",
                                   attempt + 1, MAX_ATTEMPTS, backoff)
                    await asyncio.sleep(backoff)

        raise RuntimeError(f"LLM rate-limited after {MAX_ATTEMPTS} attempts: {last_error}")

    def _parse_llm_response(self, text: str) -> LeadAnalysis:
        """Parse the model's JSON (fences / leading prose tolerated). Raises ValueError."""
        text = text.strip()
        fence = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
        if fence:
            text = fence.group(1).strip()

        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object in LLM response")
        data = json.loads(text[start:end + 1])
        if not isinstance(data, dict) or not isinstance(data.get("leads"), list):
            raise ValueError("LLM response has no 'leads' list")

        leads = []
        for item in data["leads"]:
            try:
                leads.append(AnalyzedLead.model_validate(item))
            except ValidationError as e:
                logger.warning("Dropping malformed lead from LLM: %s", e.errors()[:1])

        try:
            summary = AnalysisSummary.model_validate(data.get("summary") or {})
        except ValidationError:
            summary = AnalysisSummary()

        return LeadAnalysis(leads=leads, summary=summary)

    # ── Fallback & post-processing ─────────────

    def _keyword_fallback(self, rows: list[dict]) -> LeadAnalysis:
        """Rubric scoring from keywords when no LLM is available."""
        leads = [lead for lead in (score_comment(r) for r in rows) if lead]
        tag_counts = Counter(tag for lead in leads if lead.lead_score >= LEAD_MIN_SCORE for tag in lead.tags)
        return LeadAnalysis(
            leads=leads,
            summary=AnalysisSummary(top_keywords=[t for t, _ in tag_counts.most_common(5)]),
        )

    @staticmethod
    def _finalize(analysis: LeadAnalysis, result: ScrapingResult, total_analyzed: int) -> LeadAnalysis:
        kept = [lead for lead in analysis.leads if lead.lead_score >= LEAD_MIN_SCORE]
        kept.sort(key=lambda lead: lead.lead_score, reverse=True)

        average = round(sum(lead.lead_score for lead in kept) / len(kept), 1) if kept else 0
        summary = AnalysisSummary(
            total_analyzed=total_analyzed,
            high_quality_leads=sum(1 for lead in kept if lead.lead_score >= HIGH_QUALITY_SCORE),
            average_score=average,
            top_keywords=analysis.summary.top_keywords[:10],
            scraping_status=f"成功抓取 {len(result.posts)} 个帖子，{len(result.comments)} 条评论",
        )
        return LeadAnalysis(leads=kept, summary=summary)

    def estimated_cost(self) -> float:
        """Approximate USD spent on the LLM by this analyzer."""
        rates = COST_PER_1K_TOKENS.get(self._model or "", COST_PER_1K_TOKENS["gpt-4o"])
        return (
            self.total_input_tokens / 1000 * rates["input"]
            + self.total_output_tokens / 1000 * rates["output"]
        )


# ──────────────────────────────────────────────
# Pipeline: scrape → analyze
# ──────────────────────────────────────────────

async def run_lead_analysis(
    keyword: str,
    page: int = 1,
    source: str = "web",
    scraper=None,
    analyzer: Optional[LeadAnalyzer] = None,
    backend=None,
) -> tuple[ScrapingResult, LeadAnalysis]:
    """Collect comments for ``keyword`` and score them.

    ``source``: "web" (HTML scrape), "backend" (proxy search; falls back to
    the web scrape if the proxy fails) or "mock".
    """
    from xhs_api import XhsApiError, XhsBackendClient, collect_via_backend
    from xhs_scraper import get_scraper

    scraper = scraper or get_scraper()
    analyzer = analyzer or LeadAnalyzer()

    logger.info("Starting lead collection for keyword: %s (source=%s)", keyword, source)

    if source == "mock":
        result = scraper.generate_mock_data(keyword)
    elif source == "backend":
        client = backend or XhsBackendClient()
        try:
            result = await collect_via_backend(client, keyword)
        except XhsApiError as e:
            logger.warning("Backend proxy search failed (%s), scraping the web instead", e)
            result = await scraper.scrape_search(keyword, page)
        finally:
            if backend is None:
                await client.close()
    else:
        result = await scraper.scrape_search(keyword, page)

    logger.info("Scraping completed: %d posts, %d comments", len(result.posts), len(result.comments))

    analysis = await analyzer.analyze(keyword, result)
    return result, analysis
