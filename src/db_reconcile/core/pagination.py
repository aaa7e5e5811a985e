"""
分页编解码 - 不透明游标与 LIMIT/OFFSET 注入

游标是 base64url 编码的 {offset, limit}，只能向前翻页。
基于偏移量而非键集：两次请求之间有并发写入时，页面内容可能发生偏移。
"""

import base64
import binascii
import json
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from db_reconcile.errors import UnsupportedEngineError
from db_reconcile.models.connection import EngineKind
from db_reconcile.models.result import ColumnInfo, CursorData, PaginatedResult
from db_reconcile.utils.sql_parser import collapse_whitespace, strip_comments

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

_SELECT_PATTERN = re.compile(r"^\s*select\b", re.IGNORECASE)
_LIMIT_PATTERN = re.compile(r"\blimit\s+(\d+|all\b|\?|%s|:\w+|\$\d+)", re.IGNORECASE)
_FETCH_PATTERN = re.compile(r"\bfetch\s+(first|next)\b", re.IGNORECASE)
_OFFSET_PATTERN = re.compile(r"\boffset\s+(\d+|\?|%s|:\w+|\$\d+)", re.IGNORECASE)
_COMMENT_MARKERS = re.compile(r"--|/\*|#")


def encode_cursor(offset: int, limit: int) -> str:
    """
    编码游标

    示例:
        >>> decode_cursor(encode_cursor(20, 10))
        CursorData(offset=20, limit=10)
    """
    payload = json.dumps({"offset": offset, "limit": limit}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).rstrip(b"=").decode("ascii")


def decode_cursor(cursor: Any) -> Optional[CursorData]:
    """
    解码游标

    无效或被篡改的游标返回 None（从头开始），不会抛出异常。
    """
    if not cursor or not isinstance(cursor, str):
        return None
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
        if not isinstance(data, dict):
            return None
        return CursorData.model_validate(data, strict=True)
    except (binascii.Error, UnicodeError, ValueError, ValidationError):
        return None


def clamp_limit(limit: Optional[int], default: int = DEFAULT_PAGE_SIZE, maximum: int = MAX_PAGE_SIZE) -> int:
    """将页大小限制在 [1, maximum]"""
    if limit is None:
        limit = default
    return max(1, min(int(limit), maximum))


def parse_pagination_options(
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
    default_page_size: int = DEFAULT_PAGE_SIZE,
    max_page_size: int = MAX_PAGE_SIZE,
) -> Tuple[int, int]:
    """
    解析分页参数，返回 (offset, limit)

    游标有效时偏移量前进游标自身的页大小（严格向前翻页），忽略传入的 limit；
    否则从 0 开始。
    """
    cursor_data = decode_cursor(cursor)
    if cursor_data is not None:
        return (
            cursor_data.offset + cursor_data.limit,
            clamp_limit(cursor_data.limit, default_page_size, max_page_size),
        )
    return 0, clamp_limit(limit, default_page_size, max_page_size)


def has_limit_clause(sql: str) -> bool:
    """语句是否已包含 LIMIT（或 FETCH FIRST）"""
    normalized = collapse_whitespace(sql)
    return bool(_LIMIT_PATTERN.search(normalized) or _FETCH_PATTERN.search(normalized))


def has_offset_clause(sql: str) -> bool:
    """语句是否已包含 OFFSET"""
    return bool(_OFFSET_PATTERN.search(collapse_whitespace(sql)))


def _check_engine(engine: Any) -> EngineKind:
    try:
        return EngineKind(engine)
    except ValueError:
        raise UnsupportedEngineError(f"不支持的数据库类型: {engine}") from None


def wrap_query(sql: str, limit: int, offset: int, engine: Any) -> str:
    """
    为 SELECT 语句追加 LIMIT/OFFSET

    非 SELECT 语句和已带 LIMIT 的语句原样返回，不覆盖用户指定的范围。
    所有支持的引擎共用 LIMIT n OFFSET m 语法。

    示例:
        >>> wrap_query("SELECT * FROM t", 10, 20, "mysql")
        'SELECT * FROM t LIMIT 10 OFFSET 20'
    """
    _check_engine(engine)

    if not _SELECT_PATTERN.match(sql) or has_limit_clause(sql):
        return sql

    base = strip_comments(sql) if _COMMENT_MARKERS.search(sql) else sql.strip()
    base = re.sub(r";\s*$", "", base).rstrip()
    return f"{base} LIMIT {int(limit)} OFFSET {int(offset)}"


def create_count_query(sql: str) -> Optional[str]:
    """
    由 SELECT 语句生成 COUNT 查询（移除 LIMIT/OFFSET 后作为子查询）

    非 SELECT 返回 None。复杂查询代价较高，仅在首页显式请求时使用。
    """
    if not _SELECT_PATTERN.match(sql):
        return None

    stripped = _LIMIT_PATTERN.sub("", sql)
    stripped = _OFFSET_PATTERN.sub("", stripped)
    stripped = re.sub(r";\s*$", "", stripped.strip()).rstrip()
    return f"SELECT COUNT(*) AS total FROM ({stripped}) AS count_subquery"


def create_paginated_result(
    rows: List[Dict[str, Any]],
    offset: int,
    limit: int,
    total_estimate: Optional[int] = None,
    columns: Optional[List[ColumnInfo]] = None,
    execution_time: float = 0.0,
) -> PaginatedResult:
    """
    由 limit+1 行结果构建分页结果

    取到 limit+1 行时 has_more 为 True，只返回前 limit 行，
    并生成编码 (offset, limit) 的下一页游标。
    """
    has_more = len(rows) > limit
    return PaginatedResult(
        data=rows[:limit],
        columns=columns or [],
        cursor=encode_cursor(offset, limit) if has_more else None,
        has_more=has_more,
        total_estimate=total_estimate,
        execution_time=execution_time,
    )


def extract_limit_from_query(sql: str) -> Optional[int]:
    """提取语句中的数字 LIMIT"""
    match = re.search(r"\blimit\s+(\d+)", sql, re.IGNORECASE)
    return int(match.group(1)) if match else None
