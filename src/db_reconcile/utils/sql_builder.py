"""
SQL 构建工具 - 标识符校验与参数化语句构建

标识符（表名、列名）无法参数化，只能先校验再引用；值一律走参数。
"""

import json
import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from db_reconcile.errors import IdentifierError, UnsupportedEngineError
from db_reconcile.models.connection import EngineKind

# 字母/下划线开头，允许一级 schema 限定（public.users）
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

# 预览中字符串值的最大显示长度
DISPLAY_VALUE_MAX_LENGTH = 100

Statement = Tuple[str, List[Any]]


def validate_identifier(name: Any) -> bool:
    """
    校验标识符是否安全

    示例:
        >>> validate_identifier("public.users")
        True
        >>> validate_identifier("users; DROP TABLE x")
        False
    """
    if not name or not isinstance(name, str):
        return False
    return _IDENTIFIER_PATTERN.match(name) is not None


def _engine(engine: Any) -> EngineKind:
    try:
        return EngineKind(engine)
    except ValueError:
        raise UnsupportedEngineError(f"不支持的数据库类型: {engine}") from None


def quote_identifier(name: str, engine: Any) -> str:
    """
    引用标识符

    MySQL/MariaDB 使用反引号，PostgreSQL/SQLite 使用双引号。

    异常:
        IdentifierError: 标识符不合法
        UnsupportedEngineError: 引擎类型未知

    示例:
        >>> quote_identifier("public.users", "postgresql")
        '"public"."users"'
    """
    if not validate_identifier(name):
        raise IdentifierError(f"非法标识符: {name}")

    kind = _engine(engine)
    quote = "`" if kind in (EngineKind.MYSQL, EngineKind.MARIADB) else '"'
    return ".".join(f"{quote}{part}{quote}" for part in name.split("."))


def get_placeholder(engine: Any) -> str:
    """驱动参数占位符（sqlite3/aiosqlite 用 ?，aiomysql/psycopg2 用 %s）"""
    return "?" if _engine(engine) == EngineKind.SQLITE else "%s"


def build_where_clause(
    primary_key_columns: Sequence[str],
    row: Mapping[str, Any],
    engine: Any,
) -> Statement:
    """
    构建主键 WHERE 条件

    主键值为 None 时生成 IS NULL，不占用参数。

    返回:
        (条件片段, 参数列表)
    """
    placeholder = get_placeholder(engine)
    conditions: List[str] = []
    params: List[Any] = []

    for column in primary_key_columns:
        quoted = quote_identifier(column, engine)
        value = row.get(column)
        if value is None:
            conditions.append(f"{quoted} IS NULL")
        else:
            conditions.append(f"{quoted} = {placeholder}")
            params.append(value)

    return " AND ".join(conditions), params


def build_set_clause(updates: Mapping[str, Any], engine: Any) -> Statement:
    """构建 UPDATE 的 SET 片段"""
    placeholder = get_placeholder(engine)
    clauses = [f"{quote_identifier(column, engine)} = {placeholder}" for column in updates]
    return ", ".join(clauses), list(updates.values())


def build_insert(table: str, values: Mapping[str, Any], engine: Any) -> Statement:
    """
    构建参数化 INSERT

    示例:
        >>> build_insert("users", {"id": 1, "name": "a"}, "sqlite")
        ('INSERT INTO "users" ("id", "name") VALUES (?, ?)', [1, 'a'])
    """
    if not values:
        raise ValueError("INSERT 至少需要一列")

    placeholder = get_placeholder(engine)
    columns = ", ".join(quote_identifier(column, engine) for column in values)
    placeholders = ", ".join([placeholder] * len(values))
    sql = f"INSERT INTO {quote_identifier(table, engine)} ({columns}) VALUES ({placeholders})"
    return sql, list(values.values())


def build_update(
    table: str,
    updates: Mapping[str, Any],
    primary_key_columns: Sequence[str],
    row_identifier: Mapping[str, Any],
    engine: Any,
) -> Statement:
    """构建参数化 UPDATE（仅按主键条件更新）"""
    if not updates:
        raise ValueError("UPDATE 至少需要一列")
    if not primary_key_columns:
        raise ValueError("UPDATE 需要主键条件")

    set_sql, set_params = build_set_clause(updates, engine)
    where_sql, where_params = build_where_clause(primary_key_columns, row_identifier, engine)
    sql = f"UPDATE {quote_identifier(table, engine)} SET {set_sql} WHERE {where_sql}"
    return sql, set_params + where_params


def build_delete(
    table: str,
    primary_key_columns: Sequence[str],
    row_identifier: Mapping[str, Any],
    engine: Any,
) -> Statement:
    """
    构建参数化 DELETE

    同步执行器从不调用；供调用方在用户确认后单独删除孤立行。
    """
    if not primary_key_columns:
        raise ValueError("DELETE 需要主键条件")

    where_sql, params = build_where_clause(primary_key_columns, row_identifier, engine)
    return f"DELETE FROM {quote_identifier(table, engine)} WHERE {where_sql}", params


def validate_table_exists(table_name: str, tables: Iterable[Any]) -> Tuple[bool, Optional[str]]:
    """
    不区分大小写地查找表，返回 (是否存在, 实际表名)

    参数:
        tables: 带 name 属性的对象（TableInfo）或字符串
    """
    target = table_name.lower()
    for table in tables:
        name = table if isinstance(table, str) else table.name
        if name.lower() == target:
            return True, name
    return False, None


def validate_columns(
    column_names: Iterable[str],
    columns: Iterable[Any],
) -> Tuple[bool, List[str], List[str]]:
    """
    校验列名，返回 (全部合法, 实际列名列表, 非法列名列表)
    """
    actual: Dict[str, str] = {}
    for column in columns:
        name = column if isinstance(column, str) else column.name
        actual.setdefault(name.lower(), name)

    valid_names: List[str] = []
    invalid_names: List[str] = []
    for name in column_names:
        match = actual.get(name.lower())
        if match is None:
            invalid_names.append(name)
        else:
            valid_names.append(match)

    return not invalid_names, valid_names, invalid_names


def _quote_for_display(text: str) -> str:
    escaped = text.replace("'", "''")
    if len(escaped) > DISPLAY_VALUE_MAX_LENGTH:
        return f"'{escaped[:DISPLAY_VALUE_MAX_LENGTH - 3]}...'"
    return f"'{escaped}'"


def escape_value_for_display(value: Any) -> str:
    """
    将值渲染为 SQL 字面量（仅用于预览展示，不可用于执行）

    示例:
        >>> escape_value_for_display("O'Brien")
        "'O''Brien'"
        >>> escape_value_for_display(None)
        'NULL'
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return _quote_for_display(value.isoformat())
    if isinstance(value, str):
        return _quote_for_display(value)
    if isinstance(value, (dict, list, tuple)):
        return _quote_for_display(json.dumps(value, ensure_ascii=False, default=str))
    return _quote_for_display(str(value))


def render_for_display(statement: Statement, engine: Any) -> str:
    """
    将参数内联到 SQL 中（仅用于预览展示）

    标识符已校验，不会包含占位符字符，可以直接按占位符切分。
    """
    sql, params = statement
    parts = sql.split(get_placeholder(engine))
    if len(parts) != len(params) + 1:
        raise ValueError("占位符数量与参数数量不一致")

    rendered = [parts[0]]
    for value, part in zip(params, parts[1:]):
        rendered.append(escape_value_for_display(value))
        rendered.append(part)
    return "".join(rendered)
