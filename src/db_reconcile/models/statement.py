"""
语句分类模型 - 危险等级与类型
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DangerLevel(str, Enum):
    """危险等级"""
    CRITICAL = "critical"  # 不可逆，需输入对象名确认
    WARNING = "warning"  # 可能造成大范围修改，需确认
    SAFE = "safe"


class DangerKind(str, Enum):
    """危险语句类型"""
    DROP_DATABASE = "drop_database"
    DROP_TABLE = "drop_table"
    DROP_INDEX = "drop_index"
    TRUNCATE = "truncate"
    DELETE_ALL = "delete_all"
    UPDATE_ALL = "update_all"
    ALTER_TABLE = "alter_table"


class StatementClassification(BaseModel):
    """
    语句分类结果

    属性:
        dangerous: 是否危险
        level: 危险等级
        kind: 危险类型（安全语句为 None）
        affected_object_name: 受影响的表或数据库名
        message: 提示信息
        requires_confirmation: 是否需要确认
        requires_typed_confirmation: 是否需要输入对象名确认（critical）
        contains_multiple_statements: 是否包含多条语句（次要信号，不影响等级）
    """
    dangerous: bool = Field(default=False)
    level: DangerLevel = Field(default=DangerLevel.SAFE)
    kind: Optional[DangerKind] = Field(default=None)
    affected_object_name: Optional[str] = Field(default=None)
    message: str = Field(default="")
    requires_confirmation: bool = Field(default=False)
    requires_typed_confirmation: bool = Field(default=False)
    contains_multiple_statements: bool = Field(default=False)

    @classmethod
    def safe(cls, contains_multiple_statements: bool = False) -> "StatementClassification":
        """安全语句"""
        return cls(contains_multiple_statements=contains_multiple_statements)
