"""
权限描述模型 - 每个 (用户, 团队, 连接) 的有效访问策略

权限描述由外部组件计算后只读传入，核心从不修改。
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ViolationType(str, Enum):
    """访问违规类型"""
    TABLE = "table"
    COLUMN = "column"
    WRITE = "write"


class PermissionDescriptor(BaseModel):
    """
    有效权限

    属性:
        can_view: 是否可查看
        can_edit: 是否可写入
        allowed_tables: 允许访问的表（小写），None 表示不限制
        hidden_columns: 表名（小写） -> 隐藏列集合（小写）

    示例:
        ```python
        permission = PermissionDescriptor(
            can_view=True,
            can_edit=False,
            allowed_tables={"orders"},
            hidden_columns={"orders": {"card_number"}},
        )
        ```
    """
    model_config = ConfigDict(frozen=True)

    can_view: bool = Field(default=False, description="是否可查看")
    can_edit: bool = Field(default=False, description="是否可写入")
    allowed_tables: Optional[FrozenSet[str]] = Field(default=None, description="表白名单")
    hidden_columns: Dict[str, FrozenSet[str]] = Field(default_factory=dict, description="隐藏列")

    @field_validator("allowed_tables", mode="before")
    @classmethod
    def normalize_tables(cls, v: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
        """表名统一小写"""
        if v is None:
            return None
        return frozenset(str(t).lower() for t in v)

    @field_validator("hidden_columns", mode="before")
    @classmethod
    def normalize_hidden_columns(cls, v: Any) -> Dict[str, FrozenSet[str]]:
        """表名、列名统一小写，同名表合并"""
        if not v:
            return {}
        normalized: Dict[str, FrozenSet[str]] = {}
        for table, columns in dict(v).items():
            key = str(table).lower()
            normalized[key] = normalized.get(key, frozenset()) | frozenset(
                str(c).lower() for c in columns
            )
        return normalized

    def is_table_allowed(self, table: str) -> bool:
        """表是否在白名单中（不区分大小写）"""
        if self.allowed_tables is None:
            return True
        return table.lower() in self.allowed_tables

    def hidden_columns_for(self, table: str) -> FrozenSet[str]:
        """获取表的隐藏列集合"""
        return self.hidden_columns.get(table.lower(), frozenset())


class AccessVerdict(BaseModel):
    """
    访问检查结果

    属性:
        allowed: 是否允许
        reason: 拒绝原因（可读文本，不含被限制的数据）
        violation_type: 违规类型
    """
    allowed: bool = Field(..., description="是否允许")
    reason: Optional[str] = Field(default=None, description="拒绝原因")
    violation_type: Optional[ViolationType] = Field(default=None, description="违规类型")

    @classmethod
    def allow(cls) -> "AccessVerdict":
        """允许"""
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str, violation_type: Optional[ViolationType] = None) -> "AccessVerdict":
        """拒绝"""
        return cls(allowed=False, reason=reason, violation_type=violation_type)
