"""
MySQL / MariaDB 驱动实现
"""

import ssl
from typing import Any, Optional, Sequence

import aiomysql
from pymysql.constants import FIELD_TYPE

from db_reconcile.drivers.base import BaseEngineDriver, DriverResult
from db_reconcile.models.connection import ConnectionDescriptor, EngineKind
from db_reconcile.utils.logging import get_logger

logger = get_logger(__name__)

# 字段类型编码 -> 类型名
MYSQL_TYPE_NAMES = {
    getattr(FIELD_TYPE, name): name.lower()
    for name in dir(FIELD_TYPE)
    if name.isupper()
}

DEFAULT_CONNECT_TIMEOUT = 10


class MySQLDriver(BaseEngineDriver):
    """
    MySQL / MariaDB 驱动

    使用 aiomysql 实现异步连接，每个实例一个连接（不使用连接池）。
    """

    placeholder = "%s"

    def __init__(self, connection: ConnectionDescriptor):
        super().__init__(connection)
        if not connection.is_mysql_family:
            raise ValueError("MySQLDriver 需要 mysql/mariadb 连接")
        self._conn: Optional[aiomysql.Connection] = None

    async def connect(self, timeout: Optional[float] = None, autocommit: bool = True) -> None:
        """建立 MySQL 连接"""
        ssl_context = ssl.create_default_context() if self.connection.ssl else None
        try:
            self._conn = await aiomysql.connect(
                host=self.connection.host,
                port=self.connection.port or 3306,
                user=self.connection.username,
                password=self.connection.password,
                db=self.connection.database,
                charset="utf8mb4",
                connect_timeout=int(timeout) if timeout else DEFAULT_CONNECT_TIMEOUT,
                autocommit=autocommit,
                ssl=ssl_context,
            )
        except Exception as e:
            logger.error("mysql_connect_failed", connection=self.name, error=str(e))
            raise

        if timeout:
            await self._set_statement_timeout(timeout)
        logger.debug(
            "mysql_connected",
            connection=self.name,
            host=self.connection.host,
            database=self.connection.database,
        )

    async def _set_statement_timeout(self, timeout: float) -> None:
        """设置会话级语句超时（不支持时忽略）"""
        if self.type == EngineKind.MARIADB:
            sql = f"SET SESSION max_statement_time = {float(timeout)}"
        else:
            sql = f"SET SESSION max_execution_time = {int(timeout * 1000)}"
        try:
            async with self._conn.cursor() as cursor:
                await cursor.execute(sql)
        except aiomysql.Error as e:
            logger.debug("mysql_statement_timeout_unsupported", connection=self.name, error=str(e))

    async def close(self) -> None:
        """关闭连接"""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def execute(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> DriverResult:
        """执行语句，按游标 description 区分结果集和写操作"""
        conn = self._require_connection(self._conn)
        async with conn.cursor() as cursor:
            await cursor.execute(sql, tuple(params) if params is not None else None)

            if cursor.description is None:
                return DriverResult(returns_rows=False, row_count=max(cursor.rowcount, 0))

            names = [item[0] for item in cursor.description]
            rows = await cursor.fetchmany(limit) if limit else await cursor.fetchall()
            return DriverResult(
                returns_rows=True,
                columns=self._columns_from_description(cursor.description, MYSQL_TYPE_NAMES),
                rows=self._rows_to_dicts(names, rows),
                row_count=max(cursor.rowcount, len(rows)),
            )

    async def commit(self) -> None:
        """提交事务"""
        await self._require_connection(self._conn).commit()

    async def rollback(self) -> None:
        """回滚事务"""
        await self._require_connection(self._conn).rollback()
