"""
Export Utilities

Turn lead rows into downloadable files:
  - CSV  (UTF-8 with BOM so Excel opens the Chinese text correctly)
  - JSON (camelCase records, as returned by the API)
  - Excel (.xlsx) with one sheet per lead status plus an 全部线索 sheet

Lead rows are the camelCase dicts produced by ``Lead.to_dict()`` or
``AnalyzedLead.model_dump(by_alias=True)``.

Usage:
    from export import export_leads, export_to_file

    content, media_type, filename = export_leads(rows, "excel")
    path = export_to_file(rows, "csv")
"""

import io
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from config import EXPORT_DIR

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "json", "excel")

MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
    "excel": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
EXTENSIONS = {"csv": "csv", "json": "json", "excel": "xlsx"}

# camelCase key → column header
COLUMNS = {
    "username": "用户名",
    "nickname": "昵称",
    "comment": "评论内容",
    "leadScore": "线索评分",
    "intentLevel": "购买意向",
    "contactPotential": "联系潜力",
    "engagement": "活跃度",
    "tags": "标签",
    "aiAnalysis": "AI分析",
    "postTitle": "帖子标题",
    "postUrl": "帖子链接",
    "status": "状态",
    "favorite": "收藏",
    "assignedTo": "负责人",
    "lastContact": "最后联系",
    "createdAt": "创建时间",
}

STATUS_SHEETS = {
    "new": "新线索",
    "contacted": "已联系",
    "qualified": "已确认",
    "converted": "已转化",
    "lost": "已流失",
}
ALL_LEADS_SHEET = "全部线索"


def _frame(rows: list[dict]) -> pd.DataFrame:
    records = []
    for row in rows:
        record = {}
        for key, header in COLUMNS.items():
            value = row.get(key)
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value)
            record[header] = value if value is not None else ""
        records.append(record)
    return pd.DataFrame(records, columns=list(COLUMNS.values()))


def _excel_bytes(rows: list[dict]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        # Always written first so the workbook is never empty
        _frame(rows).to_excel(writer, sheet_name=ALL_LEADS_SHEET, index=False)
        for status, sheet_name in STATUS_SHEETS.items():
            subset = [r for r in rows if r.get("status", "new") == status]
            if subset:
                _frame(subset).to_excel(writer, sheet_name=sheet_name, index=False)
    return buffer.getvalue()


def export_leads(rows: list[dict], fmt: str = "excel") -> tuple[bytes, str, str]:
    """Render ``rows`` as ``fmt``. Returns (content, media_type, filename)."""
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format {fmt!r}; expected one of {EXPORT_FORMATS}")

    if fmt == "csv":
        content = _frame(rows).to_csv(index=False).encode("utf-8-sig")
    elif fmt == "json":
        content = json.dumps(rows, ensure_ascii=False, indent=2, default=str).encode("utf-8")
    else:
        content = _excel_bytes(rows)

    filename = f"leads_{datetime.now().strftime('%Y-%m-%d_%H%M')}.{EXTENSIONS[fmt]}"
    logger.info("Exported %d leads as %s", len(rows), fmt)
    return content, MEDIA_TYPES[fmt], filename


def export_to_file(rows: list[dict], fmt: str = "excel", directory: Optional[Path] = None) -> Path:
    """Write an export to ``directory`` (default EXPORT_DIR) and return its path."""
    directory = Path(directory) if directory is not None else EXPORT_DIR
    directory.mkdir(parents=True, exist_ok=True)

    content, _, filename = export_leads(rows, fmt)
    path = directory / filename
    path.write_bytes(content)
    logger.info("Exported to: %s", path)
    return path
