"""
审计通知 - 数据变更的合规记录

审计是旁路通知：任何审计组件失败都只记录日志，不影响写入结果。
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from db_reconcile.models.sync import DataChange
from db_reconcile.utils.logging import get_logger

logger = get_logger(__name__)


class AuditSink(ABC):
    """审计组件抽象基类"""

    @abstractmethod
    async def record(self, change: DataChange) -> None:
        """
        记录一次数据变更

        参数:
            change: 变更通知
        """
        raise NotImplementedError


class LoggingAuditSink(AuditSink):
    """日志审计组件 - 通过 structlog 输出变更元数据（不含行数据）"""

    async def record(self, change: DataChange) -> None:
        """写入审计日志"""
        changed_columns = sorted((change.new_values or change.old_values or {}).keys())
        logger.info(
            "data_change",
            connection=change.connection_name,
            table=change.table_name,
            operation=change.operation.value,
            columns=changed_columns,
            user_id=change.user_id,
            occurred_at=change.occurred_at.isoformat(),
        )


class MemoryAuditSink(AuditSink):
    """内存审计组件 - 保存所有变更，便于测试和调用方检查"""

    def __init__(self):
        self.changes: List[DataChange] = []

    async def record(self, change: DataChange) -> None:
        """保存变更"""
        self.changes.append(change)


class AuditDispatcher:
    """审计分发器 - 将变更分发给所有审计组件"""

    def __init__(self, sinks: Optional[List[AuditSink]] = None):
        self._sinks: List[AuditSink] = list(sinks or [])

    @property
    def sinks(self) -> List[AuditSink]:
        """已注册的审计组件"""
        return list(self._sinks)

    def add_sink(self, sink: AuditSink) -> None:
        """添加审计组件"""
        self._sinks.append(sink)

    def remove_sink(self, sink: AuditSink) -> None:
        """移除审计组件"""
        if sink in self._sinks:
            self._sinks.remove(sink)

    async def notify(self, change: DataChange) -> None:
        """
        分发变更到所有审计组件

        参数:
            change: 变更通知
        """
        for sink in self._sinks:
            try:
                await sink.record(change)
            except Exception as e:
                logger.error(
                    "audit_record_failed",
                    sink_type=type(sink).__name__,
                    table=change.table_name,
                    operation=change.operation.value,
                    error=str(e)
                )


def default_audit_dispatcher() -> AuditDispatcher:
    """默认审计分发器（日志审计）"""
    return AuditDispatcher([LoggingAuditSink()])
