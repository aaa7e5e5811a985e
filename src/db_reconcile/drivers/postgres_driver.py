"""
PostgreSQL 驱动实现

psycopg2 是同步驱动，所有阻塞调用通过 asyncio.to_thread 执行。
"""

import asyncio
from typing import Any, Dict, Optional, Sequence

import psycopg2

from db_reconcile.drivers.base import BaseEngineDriver, DriverResult
from db_reconcile.models.connection import ConnectionDescriptor, EngineKind
from db_reconcile.utils.logging import get_logger

logger = get_logger(__name__)

# 常见类型 OID -> 类型名
POSTGRES_TYPE_NAMES: Dict[int, str] = {
    16: "bool",
    17: "bytea",
    20: "int8",
    21: "int2",
    23: "int4",
    25: "text",
    114: "json",
    700: "float4",
    701: "float8",
    1042: "bpchar",
    1043: "varchar",
    1082: "date",
    1083: "time",
    1114: "timestamp",
    1184: "timestamptz",
    1700: "numeric",
    2950: "uuid",
    3802: "jsonb",
}

DEFAULT_CONNECT_TIMEOUT = 10


class PostgresDriver(BaseEngineDriver):
    """
    PostgreSQL 驱动

    语句超时通过连接参数 -c statement_timeout 传给服务端。
    """

    placeholder = "%s"

    def __init__(self, connection: ConnectionDescriptor):
        super().__init__(connection)
        if connection.type != EngineKind.POSTGRESQL:
            raise ValueError("PostgresDriver 需要 postgresql 连接")
        self._conn: Optional[Any] = None

    async def connect(self, timeout: Optional[float] = None, autocommit: bool = True) -> None:
        """建立 PostgreSQL 连接"""
        def _connect() -> Any:
            kwargs: Dict[str, Any] = {
                "host": self.connection.host,
                "port": self.connection.port or 5432,
                "dbname": self.connection.database,
                "user": self.connection.username,
                "password": self.connection.password,
                "connect_timeout": int(timeout) if timeout else DEFAULT_CONNECT_TIMEOUT,
                "sslmode": "require" if self.connection.ssl else "prefer",
            }
            if timeout:
                kwargs["options"] = f"-c statement_timeout={int(timeout * 1000)}"
            conn = psycopg2.connect(**kwargs)
            conn.autocommit = autocommit
            if self.connection.schema_name:
                with conn.cursor() as cursor:
                    cursor.execute("SET search_path TO %s", (self.connection.schema_name,))
                if not autocommit:
                    conn.commit()
            return conn

        try:
            self._conn = await asyncio.to_thread(_connect)
        except Exception as e:
            logger.error("postgres_connect_failed", connection=self.name, error=str(e))
            raise

        logger.debug(
            "postgres_connected",
            connection=self.name,
            host=self.connection.host,
            database=self.connection.database,
        )

    async def close(self) -> None:
        """关闭连接"""
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)

    async def execute(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> DriverResult:
        """执行语句，按游标 description 区分结果集和写操作"""
        conn = self._require_connection(self._conn)

        def _inner() -> DriverResult:
            with conn.cursor() as cursor:
                cursor.execute(sql, tuple(params) if params is not None else None)

                if cursor.description is None:
                    return DriverResult(returns_rows=False, row_count=max(cursor.rowcount, 0))

                names = [item[0] for item in cursor.description]
                rows = cursor.fetchmany(limit) if limit else cursor.fetchall()
                return DriverResult(
                    returns_rows=True,
                    columns=self._columns_from_description(cursor.description, POSTGRES_TYPE_NAMES),
                    rows=self._rows_to_dicts(names, rows),
                    row_count=max(cursor.rowcount, len(rows)),
                )

        return await asyncio.to_thread(_inner)

    async def commit(self) -> None:
        """提交事务"""
        await asyncio.to_thread(self._require_connection(self._conn).commit)

    async def rollback(self) -> None:
        """回滚事务"""
        await asyncio.to_thread(self._require_connection(self._conn).rollback)
