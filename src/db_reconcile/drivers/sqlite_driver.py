"""
SQLite 驱动实现
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from db_reconcile.drivers.base import COUNT_CHUNK_SIZE, BaseEngineDriver, DriverResult
from db_reconcile.models.connection import ConnectionDescriptor, EngineKind
from db_reconcile.models.result import ColumnInfo
from db_reconcile.utils.logging import get_logger

logger = get_logger(__name__)

# Python 类型 -> SQLite 存储类型
SQLITE_TYPE_NAMES = {
    int: "integer",
    float: "real",
    str: "text",
    bytes: "blob",
}

DEFAULT_BUSY_TIMEOUT = 5.0


class SQLiteDriver(BaseEngineDriver):
    """
    SQLite 驱动

    database 字段为数据库文件路径，文件必须已存在（以 mode=rw 打开）。
    连接使用自动提交模式，会话通过显式 BEGIN/COMMIT 管理事务。
    """

    placeholder = "?"

    def __init__(self, connection: ConnectionDescriptor):
        super().__init__(connection)
        if connection.type != EngineKind.SQLITE:
            raise ValueError("SQLiteDriver 需要 sqlite 连接")
        self._conn: Optional[aiosqlite.Connection] = None

    def _database_uri(self) -> str:
        database = self.connection.database
        if database == ":memory:":
            return database
        return f"{Path(database).resolve().as_uri()}?mode=rw"

    async def connect(self, timeout: Optional[float] = None, autocommit: bool = True) -> None:
        """打开数据库文件"""
        try:
            self._conn = await aiosqlite.connect(
                self._database_uri(),
                timeout=timeout or DEFAULT_BUSY_TIMEOUT,
                isolation_level=None,
                uri=True,
            )
        except Exception as e:
            logger.error("sqlite_connect_failed", connection=self.name, error=str(e))
            raise

        logger.debug("sqlite_connected", connection=self.name, database=self.connection.database)

    async def close(self) -> None:
        """关闭连接"""
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await conn.close()

    async def execute(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> DriverResult:
        """
        执行语句

        结果集的总行数通过继续读取剩余行得到（sqlite 游标不提供 rowcount）。
        """
        conn = self._require_connection(self._conn)
        async with conn.execute(sql, tuple(params) if params is not None else ()) as cursor:
            if cursor.description is None:
                return DriverResult(returns_rows=False, row_count=max(cursor.rowcount, 0))

            names = [item[0] for item in cursor.description]
            if limit:
                rows = list(await cursor.fetchmany(limit))
                row_count = len(rows)
                while True:
                    remaining = await cursor.fetchmany(COUNT_CHUNK_SIZE)
                    if not remaining:
                        break
                    row_count += len(remaining)
            else:
                rows = list(await cursor.fetchall())
                row_count = len(rows)

            dict_rows = self._rows_to_dicts(names, rows)
            return DriverResult(
                returns_rows=True,
                columns=self._infer_columns(names, dict_rows),
                rows=dict_rows,
                row_count=row_count,
            )

    @staticmethod
    def _infer_columns(names: List[str], rows: List[Dict[str, Any]]) -> List[ColumnInfo]:
        """sqlite 的 description 不含类型，按首个非空值推断存储类型"""
        columns = []
        for name in names:
            sample = next((row[name] for row in rows if row.get(name) is not None), None)
            type_name = SQLITE_TYPE_NAMES.get(type(sample), "unknown") if sample is not None else "unknown"
            columns.append(ColumnInfo(name=name, type=type_name, nullable=True))
        return columns

    async def begin(self) -> None:
        """显式开始事务"""
        await self._require_connection(self._conn).execute("BEGIN")

    async def commit(self) -> None:
        """提交事务"""
        conn = self._require_connection(self._conn)
        if conn.in_transaction:
            await conn.execute("COMMIT")

    async def rollback(self) -> None:
        """回滚事务"""
        conn = self._require_connection(self._conn)
        if conn.in_transaction:
            await conn.execute("ROLLBACK")
