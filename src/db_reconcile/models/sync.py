"""
同步模型 - 同步任务、预览、结果、审计变更
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from db_reconcile.models.connection import ConnectionDescriptor
from db_reconcile.models.diff import RowDiff
from db_reconcile.utils.converters import serialize_primary_key
from db_reconcile.utils.sql_builder import validate_identifier


class SyncScope(str, Enum):
    """同步范围"""
    SELECTED = "selected"  # 仅选中的行
    TABLE = "table"  # 整表


class SyncContent(str, Enum):
    """同步内容（结构同步仅透传，不在本引擎内执行）"""
    DATA = "data"
    STRUCTURE = "structure"
    BOTH = "both"


class ChangeOperation(str, Enum):
    """数据变更操作类型"""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class DataChange(BaseModel):
    """
    审计变更通知

    由同步执行器和请求服务在写入成功后发出，交给审计组件。
    """
    connection_name: str = Field(..., description="目标连接名称")
    table_name: str = Field(..., description="表名")
    operation: ChangeOperation = Field(..., description="操作类型")
    row_identifier: Optional[Dict[str, Any]] = Field(default=None, description="行标识（主键）")
    old_values: Optional[Dict[str, Any]] = Field(default=None, description="变更前的值")
    new_values: Optional[Dict[str, Any]] = Field(default=None, description="变更后的值")
    user_id: Optional[str] = Field(default=None, description="操作用户")
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="发生时间"
    )


class SyncJob(BaseModel):
    """
    同步任务

    属性:
        source: 源连接
        target: 目标连接
        table_name: 表名
        primary_key_columns: 主键列（至少一列）
        diffs: 差异列表（通常来自 TableComparator）
        scope: 同步范围
        content: 同步内容
        selected_keys: scope 为 selected 时必填，主键序列化字符串或主键字典
        user_id: 操作用户（写入审计）
        atomic: 是否在单个事务中执行，None 表示使用配置
        concurrency: 并发数，None 表示使用配置
    """
    source: ConnectionDescriptor
    target: ConnectionDescriptor
    table_name: str = Field(..., min_length=1)
    primary_key_columns: List[str] = Field(..., min_length=1)
    diffs: List[RowDiff] = Field(default_factory=list)
    scope: SyncScope = Field(default=SyncScope.TABLE)
    content: SyncContent = Field(default=SyncContent.DATA)
    selected_keys: Optional[List[Union[str, Dict[str, Any]]]] = Field(default=None)
    user_id: Optional[str] = Field(default=None)
    atomic: Optional[bool] = Field(default=None)
    concurrency: Optional[int] = Field(default=None, ge=1, le=32)

    @field_validator("table_name")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        """表名必须是合法标识符"""
        if not validate_identifier(v):
            raise ValueError(f"非法表名: {v}")
        return v

    @field_validator("primary_key_columns")
    @classmethod
    def validate_primary_key_columns(cls, v: List[str]) -> List[str]:
        """主键列必须是合法标识符"""
        invalid = [c for c in v if not validate_identifier(c)]
        if invalid:
            raise ValueError(f"非法主键列: {invalid}")
        return v

    @field_validator("selected_keys")
    @classmethod
    def normalize_selected_keys(cls, v: Optional[List[Any]]) -> Optional[List[str]]:
        """主键字典统一转为序列化字符串"""
        if v is None:
            return None
        return [k if isinstance(k, str) else serialize_primary_key(k) for k in v]

    @model_validator(mode="after")
    def validate_scope(self) -> "SyncJob":
        """selected 范围必须提供主键列表"""
        if self.scope == SyncScope.SELECTED and self.selected_keys is None:
            raise ValueError("scope 为 selected 时必须提供 selected_keys")
        return self


class SyncOperationCounts(BaseModel):
    """将要执行的操作数量（删除恒为 0）"""
    inserts: int = Field(default=0, ge=0)
    updates: int = Field(default=0, ge=0)
    deletes: int = Field(default=0, ge=0)


class SyncPreview(SyncOperationCounts):
    """
    同步预览

    属性:
        statements: 预览 SQL（参数已内联，仅用于展示）
        warnings: 警告信息
        can_execute: 是否可执行
        blocked_reason: 不可执行的原因
    """
    statements: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    can_execute: bool = Field(default=True)
    blocked_reason: Optional[str] = Field(default=None)


class SyncOutcome(BaseModel):
    """
    同步结果

    属性:
        success: 是否全部成功
        inserted_count: 成功插入行数
        updated_count: 成功更新行数
        deleted_count: 删除行数（恒为 0，不会自动删除）
        structure_changes_applied: 结构变更数（恒为 0，结构同步透传）
        errors: 逐行错误信息
        execution_time: 总耗时（毫秒）
        content: 请求的同步内容
        atomic: 是否以事务方式执行
        rolled_back: 事务是否已回滚
    """
    success: bool = Field(default=True)
    inserted_count: int = Field(default=0, ge=0)
    updated_count: int = Field(default=0, ge=0)
    deleted_count: int = Field(default=0, ge=0)
    structure_changes_applied: int = Field(default=0, ge=0)
    errors: List[str] = Field(default_factory=list)
    execution_time: float = Field(default=0.0, ge=0)
    content: SyncContent = Field(default=SyncContent.DATA)
    atomic: bool = Field(default=False)
    rolled_back: bool = Field(default=False)

    def add_error(self, message: str) -> None:
        """记录一行错误"""
        self.errors.append(message)
        self.success = False

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典，用于序列化"""
        return self.model_dump(mode="json")
