"""
Analytics — aggregate numbers for the dashboard and analytics pages.

Pure functions over lead rows (``db.models.Lead`` or anything with the same
attributes), so the server can run them on query results and tests can run
them on plain objects.

Usage:
    from analytics import parse_time_range, leads_by_day

    days = parse_time_range("30d")
    series = leads_by_day(leads, days)
"""

from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

from config import HIGH_QUALITY_SCORE

TIME_RANGES = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}

WEEKDAY_LABELS = ["周一", "周二", "周三", "周四", "周五", "周六", "周日"]

SCORE_BUCKETS = ["90-100", "80-89", "70-79", "60-69", "<60"]
INTENT_LEVELS = ["极高", "高", "中", "低"]

# Status → conversion bucket
CONVERSION_GROUPS = {
    "converted": "已转化",
    "new": "进行中",
    "contacted": "进行中",
    "qualified": "进行中",
    "lost": "已流失",
}
CONVERSION_LABELS = ["已转化", "进行中", "已流失"]

OTHER_SOURCE = "其他"


def parse_time_range(value: str) -> int:
    """'7d' / '30d' / '90d' / '1y' → number of days."""
    try:
        return TIME_RANGES[value]
    except KeyError:
        raise ValueError(f"Unknown time range {value!r}; expected one of {list(TIME_RANGES)}") from None


def _percent(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def _as_date(value: Optional[datetime]) -> Optional[date]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


# ──────────────────────────────────────────────
# Score & intent
# ──────────────────────────────────────────────

def score_bucket(score: int) -> str:
    if score >= 90:
        return "90-100"
    if score >= 80:
        return "80-89"
    if score >= 70:
        return "70-79"
    if score >= 60:
        return "60-69"
    return "<60"


def score_distribution(leads: Iterable) -> list[dict]:
    counts = Counter(score_bucket(lead.lead_score) for lead in leads)
    return [{"score": bucket, "count": counts.get(bucket, 0)} for bucket in SCORE_BUCKETS]


def intent_level_breakdown(leads: Iterable) -> list[dict]:
    counts = Counter(lead.intent_level for lead in leads)
    return [{"level": level, "count": counts.get(level, 0)} for level in INTENT_LEVELS]


# ──────────────────────────────────────────────
# Trends
# ──────────────────────────────────────────────

def leads_by_day(leads: Iterable, days: int, now: Optional[datetime] = None) -> list[dict]:
    """Daily lead counts for the ``days`` days ending today (UTC).

    A 7-day window is labelled by weekday (周一…周日); longer windows by MM-DD.
    """
    today = _as_date(now or datetime.now(timezone.utc))
    start = today - timedelta(days=days - 1)

    totals: Counter = Counter()
    high: Counter = Counter()
    for lead in leads:
        day = _as_date(lead.created_at)
        if day is None or day < start or day > today:
            continue
        totals[day] += 1
        if lead.lead_score >= HIGH_QUALITY_SCORE:
            high[day] += 1

    series = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        label = WEEKDAY_LABELS[day.weekday()] if days <= 7 else day.strftime("%m-%d")
        series.append({
            "date": label,
            "day": day.isoformat(),
            "count": totals.get(day, 0),
            "highQuality": high.get(day, 0),
        })
    return series


# ──────────────────────────────────────────────
# Conversion & sources
# ──────────────────────────────────────────────

def conversion_breakdown(leads: Iterable) -> list[dict]:
    counts = Counter(CONVERSION_GROUPS.get(lead.status, "进行中") for lead in leads)
    total = sum(counts.values())
    return [
        {"name": label, "count": counts.get(label, 0), "value": _percent(counts.get(label, 0), total)}
        for label in CONVERSION_LABELS
    ]


def lead_sources(keywords: Iterable[str], top: int = 4) -> list[dict]:
    """Share of leads per search keyword; everything past ``top`` is folded into 其他."""
    counts = Counter(keywords)
    total = sum(counts.values())
    if not total:
        return []

    ranked = counts.most_common()
    sources = [
        {"name": keyword, "count": n, "value": _percent(n, total)}
        for keyword, n in ranked[:top]
    ]
    rest = sum(n for _, n in ranked[top:])
    if rest:
        sources.append({"name": OTHER_SOURCE, "count": rest, "value": _percent(rest, total)})
    return sources


# ──────────────────────────────────────────────
# Dashboard
# ──────────────────────────────────────────────

def dashboard_stats(leads: Iterable, searches: Iterable) -> dict:
    leads = list(leads)
    searches = list(searches)
    total = len(leads)
    converted = sum(1 for lead in leads if lead.status == "converted")
    average = round(sum(lead.lead_score for lead in leads) / total, 1) if total else 0

    return {
        "totalLeads": total,
        "highQualityLeads": sum(1 for lead in leads if lead.lead_score >= HIGH_QUALITY_SCORE),
        "newLeads": sum(1 for lead in leads if lead.status == "new"),
        "contactedLeads": sum(1 for lead in leads if lead.status == "contacted"),
        "favoriteLeads": sum(1 for lead in leads if lead.favorite),
        "conversionRate": _percent(converted, total),
        "averageScore": average,
        "totalSearches": len(searches),
    }
