"""
测试配置和共享工具 (unittest 兼容)
"""

import shutil
import sqlite3
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock, MagicMock

from db_reconcile.models.connection import ConnectionDescriptor, EngineKind
from db_reconcile.models.diff import CellDiff, RowDiff, RowDiffStatus
from db_reconcile.models.result import TabularResult
from db_reconcile.utils.converters import serialize_primary_key


# ============================================================================
# SQLite 数据库工具
# ============================================================================

USERS_DDL = """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT,
        score REAL
    )
"""

ORDERS_DDL = """
    CREATE TABLE IF NOT EXISTS orders (
        order_id INTEGER,
        line_no INTEGER,
        total REAL,
        status TEXT DEFAULT 'pending',
        PRIMARY KEY (order_id, line_no)
    )
"""

NO_PK_DDL = """
    CREATE TABLE IF NOT EXISTS event_log (
        message TEXT
    )
"""


def create_temp_dir() -> Path:
    """创建临时目录"""
    return Path(tempfile.mkdtemp())


def remove_temp_dir(path: Path) -> None:
    """删除临时目录"""
    shutil.rmtree(path, ignore_errors=True)


def create_sqlite_db(db_path: Path, statements: Iterable[str] = (USERS_DDL, ORDERS_DDL, NO_PK_DDL)) -> None:
    """创建带有测试表的 SQLite 数据库文件"""
    conn = sqlite3.connect(str(db_path))
    try:
        for statement in statements:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def insert_rows(db_path: Path, table: str, rows: List[Dict[str, Any]]) -> None:
    """直接写入测试数据"""
    conn = sqlite3.connect(str(db_path))
    try:
        for row in rows:
            columns = ", ".join(row)
            placeholders = ", ".join("?" for _ in row)
            conn.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(row.values()))
        conn.commit()
    finally:
        conn.close()


def fetch_rows(db_path: Path, sql: str) -> List[Dict[str, Any]]:
    """直接读取数据（绕过网关）"""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    try:
        return [dict(row) for row in conn.execute(sql).fetchall()]
    finally:
        conn.close()


def sqlite_connection(db_path: Path, name: str = "local") -> ConnectionDescriptor:
    """创建 SQLite 连接描述"""
    return ConnectionDescriptor(name=name, type=EngineKind.SQLITE, database=str(db_path))


def mysql_connection(name: str = "prod") -> ConnectionDescriptor:
    """创建 MySQL 连接描述（不会真正连接）"""
    return ConnectionDescriptor(
        name=name,
        type=EngineKind.MYSQL,
        host="localhost",
        database="shop",
        username="test",
        password="test",
    )


# ============================================================================
# 测试数据工厂函数
# ============================================================================

def get_sample_users_data() -> List[Dict[str, Any]]:
    """返回样本用户数据"""
    return [
        {"id": 1, "name": "张三", "email": "zhangsan@example.com", "score": 90.5},
        {"id": 2, "name": "李四", "email": "lisi@example.com", "score": 80.0},
        {"id": 3, "name": "王五", "email": "wangwu@example.com", "score": None},
    ]


def make_row_diff(
    primary_key: Dict[str, Any],
    status: RowDiffStatus,
    source_row: Optional[Dict[str, Any]] = None,
    target_row: Optional[Dict[str, Any]] = None,
    cell_diffs: Optional[List[Dict[str, Any]]] = None,
) -> RowDiff:
    """构建 RowDiff"""
    return RowDiff(
        primary_key=primary_key,
        primary_key_string=serialize_primary_key(primary_key),
        status=status,
        cell_diffs=[CellDiff(**cell) for cell in (cell_diffs or [])],
        source_row=source_row,
        target_row=target_row,
    )


def create_test_config_yaml(db_path: Path, target_path: Optional[Path] = None) -> str:
    """返回测试配置 YAML 字符串"""
    target = target_path or db_path
    return f"""
connections:
  - name: "source"
    type: "sqlite"
    database: "{db_path}"
  - name: "target"
    type: "sqlite"
    database: "{target}"

gateway:
  max_rows: 500
  default_timeout: 5

pagination:
  default_page_size: 2
  max_page_size: 50

sync:
  comparison_limit: 100

log_level: "DEBUG"
"""


# ============================================================================
# Mock 工厂函数
# ============================================================================

def create_mock_gateway(results: Optional[List[TabularResult]] = None) -> MagicMock:
    """创建 Mock QueryGateway，execute 依次返回给定结果（默认影响 1 行）"""
    gateway = MagicMock()
    if results is None:
        gateway.execute = AsyncMock(return_value=TabularResult.mutation(1))
    else:
        gateway.execute = AsyncMock(side_effect=list(results))
    gateway.execute_paginated = AsyncMock()
    return gateway


def setup_logging():
    """设置测试日志级别"""
    from db_reconcile.utils.logging import configure_logging
    configure_logging(log_level="DEBUG", json_format=False)
