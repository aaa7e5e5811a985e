"""
语句分类器 - 按破坏性对 SQL 分级

按顺序匹配规则，第一条命中的规则生效。只做语法模式匹配，
经过混淆或多子句的语句可能漏判。
"""

import re
from typing import Callable, List, NamedTuple, Optional

from db_reconcile.models.statement import DangerKind, DangerLevel, StatementClassification
from db_reconcile.utils.logging import get_logger
from db_reconcile.utils.sql_parser import contains_multiple_statements

logger = get_logger(__name__)

_NAME = r"[`\"']?(\w+)[`\"']?"


class DangerRule(NamedTuple):
    """危险语句规则；message 返回空字符串表示跳过该规则"""
    pattern: "re.Pattern[str]"
    kind: DangerKind
    level: DangerLevel
    message: Callable[["re.Match[str]"], str]


def _update_message(match: "re.Match[str]") -> str:
    if re.search(r"\bWHERE\b", match.group(0), re.IGNORECASE):
        return ""
    return f'This will update ALL rows in "{match.group(1)}" (no WHERE clause).'


DANGER_RULES: List[DangerRule] = [
    DangerRule(
        re.compile(rf"^\s*DROP\s+DATABASE\s+(?:IF\s+EXISTS\s+)?{_NAME}\s*;?\s*$", re.IGNORECASE),
        DangerKind.DROP_DATABASE,
        DangerLevel.CRITICAL,
        lambda m: f'This will permanently delete the entire database "{m.group(1)}" and all its data.',
    ),
    DangerRule(
        re.compile(rf"^\s*DROP\s+TABLE\s+(?:IF\s+EXISTS\s+)?{_NAME}\s*;?\s*$", re.IGNORECASE),
        DangerKind.DROP_TABLE,
        DangerLevel.CRITICAL,
        lambda m: f'This will permanently delete the table "{m.group(1)}" and all its data.',
    ),
    # 一次删除多张表
    DangerRule(
        re.compile(r"^\s*DROP\s+TABLE\s+(?:IF\s+EXISTS\s+)?(.+?)\s*;?\s*$", re.IGNORECASE),
        DangerKind.DROP_TABLE,
        DangerLevel.CRITICAL,
        lambda m: f"This will permanently delete the table(s): {m.group(1)}.",
    ),
    DangerRule(
        re.compile(rf"^\s*TRUNCATE\s+(?:TABLE\s+)?{_NAME}\s*;?\s*$", re.IGNORECASE),
        DangerKind.TRUNCATE,
        DangerLevel.CRITICAL,
        lambda m: f'This will delete ALL rows from "{m.group(1)}". This cannot be rolled back.',
    ),
    DangerRule(
        re.compile(rf"^\s*DROP\s+INDEX\s+(?:IF\s+EXISTS\s+)?{_NAME}", re.IGNORECASE),
        DangerKind.DROP_INDEX,
        DangerLevel.WARNING,
        lambda m: f'This will drop the index "{m.group(1)}", which may affect query performance.',
    ),
    DangerRule(
        re.compile(rf"^\s*DELETE\s+FROM\s+{_NAME}\s*;?\s*$", re.IGNORECASE),
        DangerKind.DELETE_ALL,
        DangerLevel.WARNING,
        lambda m: f'This will delete ALL rows from "{m.group(1)}" (no WHERE clause).',
    ),
    DangerRule(
        re.compile(rf"^\s*DELETE\s+FROM\s+{_NAME}\s+WHERE\s+(?:1\s*=\s*1|true)\s*;?\s*$", re.IGNORECASE),
        DangerKind.DELETE_ALL,
        DangerLevel.WARNING,
        lambda m: f'This will delete ALL rows from "{m.group(1)}" (WHERE clause always true).',
    ),
    DangerRule(
        re.compile(rf"^\s*UPDATE\s+{_NAME}\s+SET\s+[^;]+(?:;?\s*$)", re.IGNORECASE),
        DangerKind.UPDATE_ALL,
        DangerLevel.WARNING,
        _update_message,
    ),
    DangerRule(
        re.compile(rf"^\s*ALTER\s+TABLE\s+{_NAME}\s+DROP\s+(?:COLUMN\s+)?{_NAME}", re.IGNORECASE),
        DangerKind.ALTER_TABLE,
        DangerLevel.WARNING,
        lambda m: f'This will permanently remove column "{m.group(2)}" from table "{m.group(1)}".',
    ),
]


def _clean_object_name(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    return re.sub(r"[`\"']", "", name)


def classify(sql: str) -> StatementClassification:
    """
    对语句分级

    参数:
        sql: 原始 SQL

    返回:
        StatementClassification；critical 需要输入对象名确认，warning 只需确认

    示例:
        >>> classify("DROP TABLE users;").affected_object_name
        'users'
        >>> classify("DELETE FROM orders;").level
        <DangerLevel.WARNING: 'warning'>
    """
    statement = sql.strip()
    if not statement:
        return StatementClassification.safe()

    multiple = contains_multiple_statements(statement)

    for rule in DANGER_RULES:
        match = rule.pattern.search(statement)
        if match is None:
            continue
        message = rule.message(match)
        if not message:
            continue

        classification = StatementClassification(
            dangerous=True,
            level=rule.level,
            kind=rule.kind,
            affected_object_name=_clean_object_name(match.group(1)),
            message=message,
            requires_confirmation=True,
            requires_typed_confirmation=rule.level == DangerLevel.CRITICAL,
            contains_multiple_statements=multiple,
        )
        logger.debug(
            "statement_classified",
            level=classification.level.value,
            kind=classification.kind.value,
        )
        return classification

    return StatementClassification.safe(contains_multiple_statements=multiple)


def is_dangerous(sql: str) -> bool:
    """是否为危险语句"""
    return classify(sql).dangerous
