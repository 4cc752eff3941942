"""
LeadCrush CLI — run one keyword analysis from the terminal

Scrapes Xiaohongshu for the keyword, scores the comments and prints the
leads as a table. Nothing is written to the database.

Usage:
    python cli.py 宝宝保险
    python cli.py 宝宝保险 --page 2
    python cli.py 宝宝保险 --source mock          # No network
    python cli.py 宝宝保险 --source backend       # Via the backend proxy
    python cli.py 宝宝保险 --export excel --min-score 80
"""

import argparse
import asyncio
import sys
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import HIGH_QUALITY_SCORE, LEAD_MIN_SCORE
from export import EXPORT_FORMATS, export_to_file
from lead_analyzer import LeadAnalyzer, run_lead_analysis
from logging_config import setup_logging
from models import LeadAnalysis, ScrapingResult
from xhs_scraper import get_scraper

console = Console()


def _score_style(score: int) -> str:
    if score >= HIGH_QUALITY_SCORE:
        return "bold green"
    if score >= 70:
        return "yellow"
    return "white"


def build_leads_table(analysis: LeadAnalysis, min_score: int = LEAD_MIN_SCORE) -> Table:
    table = Table(title="潜在客户", show_lines=True)
    table.add_column("评分", justify="right")
    table.add_column("用户")
    table.add_column("评论", max_width=50)
    table.add_column("意向")
    table.add_column("联系潜力")
    table.add_column("标签", max_width=24)

    for lead in analysis.leads:
        if lead.lead_score < min_score:
            continue
        table.add_row(
            f"[{_score_style(lead.lead_score)}]{lead.lead_score}[/]",
            lead.nickname or lead.username,
            lead.comment,
            lead.intent_level.value,
            lead.contact_potential.value,
            ", ".join(lead.tags),
        )
    return table


def build_summary_panel(keyword: str, result: ScrapingResult, analysis: LeadAnalysis, cost: float) -> Panel:
    s = analysis.summary
    return Panel(
        f"""[bold]关键词:[/bold] {keyword}
[bold]数据来源:[/bold] {result.source}
[bold]状态:[/bold] {s.scraping_status}

分析评论: {s.total_analyzed}
潜在客户: {len(analysis.leads)}
高质量线索: {s.high_quality_leads}
平均评分: {s.average_score}
热门标签: {', '.join(s.top_keywords) or '—'}
Est. Cost: ${cost:.4f}""",
        title="分析结果",
    )


async def run(
    keyword: str,
    page: int = 1,
    source: str = "web",
    export_format: Optional[str] = None,
    min_score: int = LEAD_MIN_SCORE,
) -> LeadAnalysis:
    scraper = get_scraper()
    analyzer = LeadAnalyzer()
    if not analyzer.llm_available:
        console.print("[yellow]No LLM key configured, using keyword scoring[/yellow]")

    try:
        with console.status(f"Analyzing [cyan]{keyword}[/cyan]..."):
            result, analysis = await run_lead_analysis(
                keyword, page=page, source=source, scraper=scraper, analyzer=analyzer
            )
    finally:
        await scraper.close()

    console.print(build_summary_panel(keyword, result, analysis, analyzer.estimated_cost()))
    if analysis.leads:
        console.print(build_leads_table(analysis, min_score))
    else:
        console.print("[yellow]No leads found[/yellow]")

    if export_format:
        rows = [
            lead.model_dump(by_alias=True, mode="json")
            for lead in analysis.leads
            if lead.lead_score >= min_score
        ]
        path = export_to_file(rows, export_format)
        console.print(f"[green]Exported {len(rows)} leads → {path}[/green]")

    return analysis


def main(argv: Optional[list[str]] = None):
    parser = argparse.ArgumentParser(
        description="LeadCrush - find potential customers in Xiaohongshu comments"
    )
    parser.add_argument("keyword", help="Search keyword, e.g. 宝宝保险")
    parser.add_argument("--page", type=int, default=1, help="Search result page (default 1)")
    parser.add_argument(
        "--source",
        choices=["web", "backend", "mock"],
        default="web",
        help="Where comments come from (default: web scrape)",
    )
    parser.add_argument("--export", choices=EXPORT_FORMATS, default=None, help="Also write the leads to EXPORT_DIR")
    parser.add_argument(
        "--min-score",
        type=int,
        default=LEAD_MIN_SCORE,
        help=f"Only show leads at or above this score (default {LEAD_MIN_SCORE})",
    )
    args = parser.parse_args(argv)

    if not args.keyword.strip():
        parser.error("keyword must not be empty")
    if args.page < 1:
        parser.error("--page must be >= 1")

    setup_logging()
    asyncio.run(run(
        args.keyword.strip(),
        page=args.page,
        source=args.source,
        export_format=args.export,
        min_score=args.min_score,
    ))


if __name__ == "__main__":
    sys.exit(main())
