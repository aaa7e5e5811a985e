"""
表比对 - 读取两侧数据并计算行差异
"""

import asyncio
from typing import List, Optional, Tuple

from db_reconcile.collaborators.schema import GatewaySchemaIntrospector, SchemaIntrospector
from db_reconcile.core.diff import create_table_comparison_result
from db_reconcile.core.gateway import QueryGateway
from db_reconcile.errors import RequestValidationError, SchemaIntrospectionError
from db_reconcile.models.connection import ConnectionDescriptor
from db_reconcile.models.diff import TableComparisonResult
from db_reconcile.models.result import ColumnDefinition, TabularResult
from db_reconcile.models.settings import SyncSettings
from db_reconcile.utils.logging import get_logger
from db_reconcile.utils.sql_builder import quote_identifier, validate_identifier, validate_table_exists

logger = get_logger(__name__)

NO_PRIMARY_KEY_MESSAGE = "Table has no primary key. Cannot compare without primary key."


class TableComparator:
    """
    表比对器

    以源端表结构为准：主键和比对列都取自源端。
    两侧各读取最多 comparison_limit 行，任一侧达到上限时结果标记为 truncated。

    示例:
        ```python
        comparator = TableComparator(QueryGateway())
        result = await comparator.compare(source, target, "users")
        print(result.different_rows, result.truncated)
        ```
    """

    def __init__(
        self,
        gateway: QueryGateway,
        introspector: Optional[SchemaIntrospector] = None,
        settings: Optional[SyncSettings] = None,
    ):
        self.gateway = gateway
        self.introspector = introspector or GatewaySchemaIntrospector(gateway)
        self.settings = settings or SyncSettings()

    async def describe_table(
        self,
        connection: ConnectionDescriptor,
        table_name: str,
    ) -> Tuple[str, List[ColumnDefinition]]:
        """
        确认表存在并返回 (实际表名, 列定义)

        异常:
            RequestValidationError: 表名不合法或表不存在
            SchemaIntrospectionError: 表结构查询失败
        """
        if not validate_identifier(table_name):
            raise RequestValidationError(
                "Invalid table name",
                {"table_name": [f"Invalid table name: {table_name}"]},
            )

        tables = await self.introspector.list_tables(connection)
        exists, actual_name = validate_table_exists(table_name, tables)
        if not exists:
            raise RequestValidationError(
                f"Table {table_name} does not exist",
                {"table_name": [f"Table {table_name} does not exist in connection {connection.name}"]},
            )

        columns = await self.introspector.list_columns(connection, actual_name)
        return actual_name, columns

    async def _fetch_rows(self, connection: ConnectionDescriptor, table_name: str) -> TabularResult:
        limit = self.settings.comparison_limit
        sql = f"SELECT * FROM {quote_identifier(table_name, connection.type)} LIMIT {limit}"
        return await self.gateway.execute(connection, sql, limit=limit)

    async def compare(
        self,
        source: ConnectionDescriptor,
        target: ConnectionDescriptor,
        table_name: str,
    ) -> TableComparisonResult:
        """
        比对两个连接上的同名表

        参数:
            source: 源连接
            target: 目标连接
            table_name: 表名（不区分大小写，按源端实际表名读取）

        返回:
            TableComparisonResult；读取失败时 error 字段非空

        异常:
            RequestValidationError: 表不存在或没有主键
        """
        try:
            actual_name, columns = await self.describe_table(source, table_name)
        except SchemaIntrospectionError as e:
            return TableComparisonResult(
                source_connection=source.name,
                target_connection=target.name,
                table_name=table_name,
                error=str(e),
            )

        primary_key_columns = [c.name for c in columns if c.is_primary_key]
        if not primary_key_columns:
            raise RequestValidationError(NO_PRIMARY_KEY_MESSAGE, {"table_name": [NO_PRIMARY_KEY_MESSAGE]})
        column_names = [c.name for c in columns]

        source_result, target_result = await asyncio.gather(
            self._fetch_rows(source, actual_name),
            self._fetch_rows(target, actual_name),
        )

        error = None
        if not source_result.success:
            error = f"Source query failed: {source_result.error}"
        elif not target_result.success:
            error = f"Target query failed: {target_result.error}"

        if error is not None:
            logger.warning("comparison_failed", table=actual_name, source=source.name, target=target.name, error=error)
            return TableComparisonResult(
                source_connection=source.name,
                target_connection=target.name,
                table_name=actual_name,
                primary_key_columns=primary_key_columns,
                columns=column_names,
                error=error,
            )

        limit = self.settings.comparison_limit
        truncated = len(source_result.rows) >= limit or len(target_result.rows) >= limit

        result = create_table_comparison_result(
            source.name,
            target.name,
            actual_name,
            primary_key_columns,
            source_result.rows,
            target_result.rows,
            column_names,
            truncated=truncated,
        )
        logger.info(
            "comparison_completed",
            table=actual_name,
            source=source.name,
            target=target.name,
            total=result.total_rows,
            different=result.different_rows,
            source_only=result.source_only_rows,
            target_only=result.target_only_rows,
            truncated=truncated,
        )
        return result
