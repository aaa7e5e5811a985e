"""
驱动注册表 - 按引擎类型创建驱动

驱动模块按需导入，未使用的引擎不需要安装对应的客户端库。
"""

from typing import Callable

from db_reconcile.drivers.base import BaseEngineDriver
from db_reconcile.errors import UnsupportedEngineError
from db_reconcile.models.connection import ConnectionDescriptor, EngineKind

DriverFactory = Callable[[ConnectionDescriptor], BaseEngineDriver]


def get_driver(connection: ConnectionDescriptor) -> BaseEngineDriver:
    """
    创建连接对应的驱动实例

    异常:
        UnsupportedEngineError: 引擎类型不受支持
    """
    if connection.type in (EngineKind.MYSQL, EngineKind.MARIADB):
        from db_reconcile.drivers.mysql_driver import MySQLDriver
        return MySQLDriver(connection)
    if connection.type == EngineKind.POSTGRESQL:
        from db_reconcile.drivers.postgres_driver import PostgresDriver
        return PostgresDriver(connection)
    if connection.type == EngineKind.SQLITE:
        from db_reconcile.drivers.sqlite_driver import SQLiteDriver
        return SQLiteDriver(connection)
    raise UnsupportedEngineError(f"不支持的数据库类型: {connection.type}")
