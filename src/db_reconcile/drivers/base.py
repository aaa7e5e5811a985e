"""
引擎驱动抽象基类
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from db_reconcile.models.connection import ConnectionDescriptor
from db_reconcile.models.result import ColumnInfo


# 统计剩余行数时每批读取的行数
COUNT_CHUNK_SIZE = 1000


@dataclass
class DriverResult:
    """
    驱动执行结果

    属性:
        returns_rows: 语句是否产生结果集（游标有 description）
        columns: 列描述
        rows: 已读取的行（不超过请求的上限）
        row_count: 结果集总行数，或写操作影响的行数
    """
    returns_rows: bool
    columns: List[ColumnInfo] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0


class BaseEngineDriver(ABC):
    """
    数据库引擎驱动抽象基类

    每个实例只持有一个连接，由网关在单次调用（或会话）结束时关闭。
    """

    # 参数占位符
    placeholder = "%s"

    def __init__(self, connection: ConnectionDescriptor):
        """
        初始化驱动

        参数:
            connection: 连接描述（密码已解密）
        """
        self.connection = connection
        self.name = connection.name
        self.type = connection.type

    @abstractmethod
    async def connect(self, timeout: Optional[float] = None, autocommit: bool = True) -> None:
        """
        建立连接

        参数:
            timeout: 连接/语句超时（秒）
            autocommit: False 时用于会话，需显式提交
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """关闭连接"""
        raise NotImplementedError

    @abstractmethod
    async def execute(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> DriverResult:
        """
        执行单条语句

        参数:
            sql: SQL 语句
            params: 位置参数
            limit: 最多读取的行数
        """
        raise NotImplementedError

    async def begin(self) -> None:
        """开始事务（非自动提交连接上默认隐式开始）"""
        return None

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        raise NotImplementedError

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        raise NotImplementedError

    def _require_connection(self, handle: Any) -> Any:
        if handle is None:
            raise RuntimeError(f"{self.type.value} 未连接")
        return handle

    @staticmethod
    def _rows_to_dicts(names: List[str], rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
        """元组行转换为字典行（同名列以最后出现的为准）"""
        return [dict(zip(names, row)) for row in rows]

    @staticmethod
    def _columns_from_description(
        description: Sequence[Sequence[Any]],
        type_names: Mapping[Any, str],
    ) -> List[ColumnInfo]:
        """由 DB-API description 构建列描述"""
        columns = []
        for item in description:
            null_ok = item[6] if len(item) > 6 else None
            columns.append(ColumnInfo(
                name=str(item[0]),
                type=type_names.get(item[1], "unknown") if item[1] is not None else "unknown",
                nullable=True if null_ok is None else bool(null_ok),
            ))
        return columns
