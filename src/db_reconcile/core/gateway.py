"""
查询执行网关 - 对异构引擎执行 SQL 并返回规范化结果

每次调用打开新连接、执行一条语句、无论成败都释放连接。
引擎错误以 TabularResult.error 返回，不会抛出到调用方。
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

from db_reconcile.core.pagination import (
    create_count_query,
    create_paginated_result,
    parse_pagination_options,
    wrap_query,
)
from db_reconcile.drivers.base import BaseEngineDriver, DriverResult
from db_reconcile.drivers.registry import DriverFactory, get_driver
from db_reconcile.models.connection import ConnectionDescriptor
from db_reconcile.models.result import PaginatedResult, TabularResult
from db_reconcile.models.settings import GatewaySettings, PaginationSettings
from db_reconcile.utils.logging import get_logger
from db_reconcile.utils.sql_parser import leading_keyword

logger = get_logger(__name__)

_TIMEOUT_MARKERS = (
    "timeout",
    "timed out",
    "canceling statement due to statement timeout",
    "maximum statement execution time exceeded",
)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def is_timeout_error(error: BaseException) -> bool:
    """判断是否为超时错误"""
    if isinstance(error, TimeoutError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _TIMEOUT_MARKERS)


def format_engine_error(error: BaseException, timeout: float) -> str:
    """
    引擎错误转换为返回给调用方的消息

    超时错误替换为友好提示。
    """
    if is_timeout_error(error):
        return (
            f"Query timed out after {round(timeout)} seconds. "
            "Consider adding a LIMIT clause or optimizing your query."
        )
    return str(error) or error.__class__.__name__


def to_tabular_result(result: DriverResult, limit: int, execution_time: float) -> TabularResult:
    """驱动结果转换为表格结果（行数不超过 limit）"""
    if not result.returns_rows:
        return TabularResult.mutation(result.row_count, execution_time)

    rows = result.rows[:limit]
    return TabularResult(
        columns=result.columns,
        rows=rows,
        row_count=max(result.row_count, len(rows)),
        execution_time=execution_time,
    )


class GatewaySession:
    """
    网关会话 - 在同一连接上执行多条语句

    由 QueryGateway.session() 创建，用于需要事务的场景（事务同步）。
    """

    def __init__(self, gateway: "QueryGateway", driver: BaseEngineDriver, connection: ConnectionDescriptor):
        self._gateway = gateway
        self._driver = driver
        self.connection = connection
        self.finished = False

    async def execute(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> TabularResult:
        """执行语句，错误内联返回"""
        start = time.perf_counter()
        effective_limit = self._gateway.effective_limit(limit)
        try:
            result = await self._driver.execute(sql, params, effective_limit)
        except Exception as e:
            message = format_engine_error(e, self._gateway.resolve_timeout(self.connection))
            logger.warning("session_statement_failed", connection=self.connection.name, error=message)
            return TabularResult.failure(message, _elapsed_ms(start))
        return to_tabular_result(result, effective_limit, _elapsed_ms(start))

    async def commit(self) -> None:
        """提交事务（失败时抛出异常）"""
        await self._driver.commit()
        self.finished = True

    async def rollback(self) -> None:
        """回滚事务"""
        await self._driver.rollback()
        self.finished = True


class QueryGateway:
    """
    查询执行网关

    属性:
        settings: 网关配置（行数上限、默认超时）
        pagination: 分页配置

    示例:
        ```python
        gateway = QueryGateway()
        result = await gateway.execute_query(connection, "SELECT * FROM users", limit=50)
        if result.error:
            print(result.error)
        ```
    """

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        pagination: Optional[PaginationSettings] = None,
        driver_factory: DriverFactory = get_driver,
    ):
        self.settings = settings or GatewaySettings()
        self.pagination = pagination or PaginationSettings()
        self._driver_factory = driver_factory

    def effective_limit(self, limit: Optional[int] = None) -> int:
        """请求的行数上限，不超过 max_rows"""
        max_rows = self.settings.max_rows
        if not limit or limit < 1:
            return max_rows
        return min(limit, max_rows)

    def resolve_timeout(self, connection: ConnectionDescriptor, timeout: Optional[float] = None) -> float:
        """超时优先级: 调用参数 > 连接配置 > 默认配置"""
        if timeout is not None and timeout > 0:
            return timeout
        return connection.timeout or self.settings.default_timeout

    async def _release(self, driver: BaseEngineDriver) -> None:
        try:
            await driver.close()
        except Exception as e:
            logger.warning("driver_close_failed", connection=driver.name, error=str(e))

    async def execute(
        self,
        connection: ConnectionDescriptor,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> TabularResult:
        """
        执行单条语句

        参数:
            connection: 连接描述
            sql: SQL 语句
            params: 位置参数（占位符按引擎: sqlite 为 ?，其余为 %s）
            limit: 返回行数上限（默认且最大为 max_rows）
            timeout: 超时时间（秒）

        返回:
            TabularResult；执行时间包含建立连接的时间
        """
        start = time.perf_counter()
        effective_limit = self.effective_limit(limit)
        effective_timeout = self.resolve_timeout(connection, timeout)

        driver: Optional[BaseEngineDriver] = None
        try:
            driver = self._driver_factory(connection)
            await driver.connect(timeout=effective_timeout)
            driver_result = await driver.execute(sql, params, effective_limit)
        except Exception as e:
            message = format_engine_error(e, effective_timeout)
            logger.warning(
                "query_failed",
                connection=connection.name,
                engine=connection.type.value,
                statement=leading_keyword(sql),
                error=message,
            )
            return TabularResult.failure(message, _elapsed_ms(start))
        finally:
            if driver is not None:
                await self._release(driver)

        result = to_tabular_result(driver_result, effective_limit, _elapsed_ms(start))
        logger.debug(
            "query_executed",
            connection=connection.name,
            engine=connection.type.value,
            statement=leading_keyword(sql),
            row_count=result.row_count,
            execution_time=result.execution_time,
        )
        return result

    async def execute_query(
        self,
        connection: ConnectionDescriptor,
        sql: str,
        limit: Optional[int] = None,
    ) -> TabularResult:
        """执行查询"""
        return await self.execute(connection, sql, limit=limit)

    async def execute_query_with_params(
        self,
        connection: ConnectionDescriptor,
        sql: str,
        params: Sequence[Any],
        limit: Optional[int] = None,
    ) -> TabularResult:
        """执行参数化查询"""
        return await self.execute(connection, sql, params=params, limit=limit)

    async def execute_query_with_timeout(
        self,
        connection: ConnectionDescriptor,
        sql: str,
        timeout: float,
        limit: Optional[int] = None,
    ) -> TabularResult:
        """使用指定超时执行查询"""
        return await self.execute(connection, sql, limit=limit, timeout=timeout)

    async def execute_paginated(
        self,
        connection: ConnectionDescriptor,
        sql: str,
        cursor: Optional[str] = None,
        page_size: Optional[int] = None,
        include_total: bool = False,
    ) -> PaginatedResult:
        """
        分页执行查询

        多取一行判断是否有下一页；总行数估计只在首页且显式请求时计算。
        不做访问检查，调用方需先经过访问策略评估。
        """
        offset, limit = parse_pagination_options(
            cursor,
            page_size,
            self.pagination.default_page_size,
            self.pagination.max_page_size,
        )
        paginated_sql = wrap_query(sql, limit + 1, offset, connection.type)

        result = await self.execute(connection, paginated_sql, limit=limit + 1)
        if not result.success:
            return PaginatedResult(error=result.error, execution_time=result.execution_time)

        total_estimate = None
        if include_total and offset == 0:
            total_estimate = await self._count_rows(connection, sql)

        return create_paginated_result(
            result.rows,
            offset,
            limit,
            total_estimate=total_estimate,
            columns=result.columns,
            execution_time=result.execution_time,
        )

    async def _count_rows(self, connection: ConnectionDescriptor, sql: str) -> Optional[int]:
        count_sql = create_count_query(sql)
        if count_sql is None:
            return None

        result = await self.execute(connection, count_sql, limit=1)
        if not result.success or not result.rows:
            logger.debug("count_query_failed", connection=connection.name, error=result.error)
            return None

        value = next(iter(result.rows[0].values()), None)
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @asynccontextmanager
    async def session(
        self,
        connection: ConnectionDescriptor,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[GatewaySession]:
        """
        打开事务会话

        退出时未提交的事务会被回滚，连接始终被释放。

        示例:
            ```python
            async with gateway.session(target) as session:
                await session.execute(sql, params)
                await session.commit()
            ```
        """
        driver = self._driver_factory(connection)
        try:
            await driver.connect(timeout=self.resolve_timeout(connection, timeout), autocommit=False)
            await driver.begin()
            session = GatewaySession(self, driver, connection)
            try:
                yield session
            finally:
                if not session.finished:
                    try:
                        await driver.rollback()
                    except Exception as e:
                        logger.warning("session_rollback_failed", connection=connection.name, error=str(e))
        finally:
            await self._release(driver)
