"""
表结构查询 - 列出表和列定义

比对、预览前用于确认表存在并获取主键。
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

from db_reconcile.core.gateway import QueryGateway
from db_reconcile.errors import SchemaIntrospectionError
from db_reconcile.models.connection import ConnectionDescriptor, EngineKind
from db_reconcile.models.result import ColumnDefinition, TabularResult, TableInfo
from db_reconcile.utils.logging import get_logger
from db_reconcile.utils.sql_builder import quote_identifier

logger = get_logger(__name__)


class SchemaIntrospector(ABC):
    """表结构查询抽象基类"""

    @abstractmethod
    async def list_tables(self, connection: ConnectionDescriptor) -> List[TableInfo]:
        """列出表和视图"""
        raise NotImplementedError

    @abstractmethod
    async def list_columns(self, connection: ConnectionDescriptor, table: str) -> List[ColumnDefinition]:
        """列出表的列定义（按列顺序）"""
        raise NotImplementedError


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().upper() in ("YES", "TRUE", "T", "1")
    return bool(value)


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class GatewaySchemaIntrospector(SchemaIntrospector):
    """
    基于查询网关的表结构查询

    MySQL/MariaDB、PostgreSQL 查询 information_schema，SQLite 查询
    sqlite_master 和 PRAGMA table_info。
    """

    def __init__(self, gateway: QueryGateway):
        self.gateway = gateway

    async def _query(self, connection: ConnectionDescriptor, sql: str, params: Optional[List[Any]] = None) -> TabularResult:
        result = await self.gateway.execute(connection, sql, params=params)
        if not result.success:
            logger.warning("schema_query_failed", connection=connection.name, error=result.error)
            raise SchemaIntrospectionError(result.error or "schema query failed")
        return result

    def _tables_query(self, connection: ConnectionDescriptor) -> Tuple[str, List[Any]]:
        if connection.is_mysql_family:
            return (
                "SELECT TABLE_NAME AS name, TABLE_TYPE AS table_type, TABLE_SCHEMA AS schema_name "
                "FROM information_schema.TABLES WHERE TABLE_SCHEMA = %s ORDER BY TABLE_NAME",
                [connection.database],
            )
        if connection.type == EngineKind.POSTGRESQL:
            return (
                "SELECT table_name AS name, table_type AS table_type, table_schema AS schema_name "
                "FROM information_schema.tables WHERE table_schema = %s ORDER BY table_name",
                [connection.schema_name or "public"],
            )
        return (
            "SELECT name, type AS table_type, NULL AS schema_name FROM sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' ORDER BY name",
            [],
        )

    async def list_tables(self, connection: ConnectionDescriptor) -> List[TableInfo]:
        """列出表和视图"""
        sql, params = self._tables_query(connection)
        result = await self._query(connection, sql, params or None)
        return [
            TableInfo(
                name=str(row["name"]),
                schema_name=_text(row.get("schema_name")),
                type="view" if "VIEW" in str(row.get("table_type", "")).upper() else "table",
            )
            for row in result.rows
        ]

    async def list_columns(self, connection: ConnectionDescriptor, table: str) -> List[ColumnDefinition]:
        """列出表的列定义"""
        if connection.is_mysql_family:
            return await self._mysql_columns(connection, table)
        if connection.type == EngineKind.POSTGRESQL:
            return await self._postgres_columns(connection, table)
        return await self._sqlite_columns(connection, table)

    async def _mysql_columns(self, connection: ConnectionDescriptor, table: str) -> List[ColumnDefinition]:
        result = await self._query(
            connection,
            "SELECT COLUMN_NAME AS name, COLUMN_TYPE AS column_type, IS_NULLABLE AS is_nullable, "
            "COLUMN_DEFAULT AS column_default, COLUMN_KEY AS column_key, EXTRA AS extra "
            "FROM information_schema.COLUMNS WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s "
            "ORDER BY ORDINAL_POSITION",
            [connection.database, table],
        )
        return [
            ColumnDefinition(
                name=str(row["name"]),
                type=str(row.get("column_type") or ""),
                nullable=_flag(row.get("is_nullable")),
                default_value=_text(row.get("column_default")),
                is_primary_key=row.get("column_key") == "PRI",
                auto_increment="auto_increment" in str(row.get("extra") or "").lower(),
            )
            for row in result.rows
        ]

    async def _postgres_columns(self, connection: ConnectionDescriptor, table: str) -> List[ColumnDefinition]:
        result = await self._query(
            connection,
            "SELECT c.column_name AS name, c.data_type AS data_type, c.is_nullable AS is_nullable, "
            "c.column_default AS column_default, EXISTS ("
            "SELECT 1 FROM information_schema.table_constraints tc "
            "JOIN information_schema.key_column_usage kcu "
            "ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema "
            "WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_schema = c.table_schema "
            "AND tc.table_name = c.table_name AND kcu.column_name = c.column_name"
            ") AS is_primary_key "
            "FROM information_schema.columns c WHERE c.table_schema = %s AND c.table_name = %s "
            "ORDER BY c.ordinal_position",
            [connection.schema_name or "public", table],
        )
        return [
            ColumnDefinition(
                name=str(row["name"]),
                type=str(row.get("data_type") or ""),
                nullable=_flag(row.get("is_nullable")),
                default_value=_text(row.get("column_default")),
                is_primary_key=bool(row.get("is_primary_key")),
                auto_increment=str(row.get("column_default") or "").startswith("nextval("),
            )
            for row in result.rows
        ]

    async def _sqlite_columns(self, connection: ConnectionDescriptor, table: str) -> List[ColumnDefinition]:
        result = await self._query(
            connection,
            f"PRAGMA table_info({quote_identifier(table, connection.type)})",
        )
        primary_keys = [row for row in result.rows if row.get("pk")]
        return [
            ColumnDefinition(
                name=str(row["name"]),
                type=str(row.get("type") or ""),
                nullable=not row.get("notnull") and not row.get("pk"),
                default_value=_text(row.get("dflt_value")),
                is_primary_key=bool(row.get("pk")),
                auto_increment=(
                    bool(row.get("pk"))
                    and len(primary_keys) == 1
                    and str(row.get("type") or "").upper() == "INTEGER"
                ),
            )
            for row in sorted(result.rows, key=lambda r: r.get("cid", 0))
        ]
