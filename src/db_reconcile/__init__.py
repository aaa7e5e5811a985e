"""
db-reconcile 跨库比对与访问控制引擎

对异构关系数据库安全地执行 SQL（有界、可分页的结果集），
按用户/表/列权限检查自由 SQL，按破坏性对语句分级，
并在两个连接之间计算和应用行级差异。
"""

from typing import Any

__version__ = "0.1.0"

# 延迟导入，避免循环依赖
__all__ = [
    "QueryGateway",
    "ReconcileService",
    "TableComparator",
    "SyncExecutor",
    "ConnectionDescriptor",
    "PermissionDescriptor",
    "classify",
    "evaluate",
    "load_config",
]


def __getattr__(name: str) -> Any:
    """延迟加载核心类"""
    if name == "QueryGateway":
        from db_reconcile.core.gateway import QueryGateway
        return QueryGateway
    elif name == "ReconcileService":
        from db_reconcile.core.service import ReconcileService
        return ReconcileService
    elif name == "TableComparator":
        from db_reconcile.core.comparator import TableComparator
        return TableComparator
    elif name == "SyncExecutor":
        from db_reconcile.core.sync_executor import SyncExecutor
        return SyncExecutor
    elif name == "ConnectionDescriptor":
        from db_reconcile.models.connection import ConnectionDescriptor
        return ConnectionDescriptor
    elif name == "PermissionDescriptor":
        from db_reconcile.models.permission import PermissionDescriptor
        return PermissionDescriptor
    elif name == "classify":
        from db_reconcile.core.classifier import classify
        return classify
    elif name == "evaluate":
        from db_reconcile.core.access_policy import evaluate
        return evaluate
    elif name == "load_config":
        from db_reconcile.config import load_config
        return load_config
    raise AttributeError(f"module 'db_reconcile' has no attribute '{name}'")
