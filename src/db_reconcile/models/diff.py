"""
行差异模型 - 按主键匹配的两侧行比对结果
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class RowDiffStatus(str, Enum):
    """行差异状态"""
    MATCH = "match"
    DIFFERENT = "different"
    SOURCE_ONLY = "source-only"
    TARGET_ONLY = "target-only"


class CellDiff(BaseModel):
    """单元格差异"""
    column: str = Field(..., description="列名")
    source_value: Any = Field(default=None, description="源端值")
    target_value: Any = Field(default=None, description="目标端值")


class RowDiff(BaseModel):
    """
    行差异

    属性:
        primary_key: 主键列 -> 值
        primary_key_string: 主键的规范化序列化（用于查找和排序）
        status: 差异状态
        cell_diffs: 单元格差异（仅 different 时非空）
        source_row: 源端原始行（用于展示和生成 INSERT）
        target_row: 目标端原始行
    """
    primary_key: Dict[str, Any] = Field(..., description="主键")
    primary_key_string: str = Field(..., description="主键序列化")
    status: RowDiffStatus = Field(..., description="差异状态")
    cell_diffs: List[CellDiff] = Field(default_factory=list, description="单元格差异")
    source_row: Optional[Dict[str, Any]] = Field(default=None, description="源端行")
    target_row: Optional[Dict[str, Any]] = Field(default=None, description="目标端行")

    @model_validator(mode="after")
    def validate_status_consistency(self) -> "RowDiff":
        """different 当且仅当存在单元格差异"""
        if self.status == RowDiffStatus.DIFFERENT and not self.cell_diffs:
            raise ValueError("different 状态必须包含 cell_diffs")
        if self.status != RowDiffStatus.DIFFERENT and self.cell_diffs:
            raise ValueError(f"{self.status.value} 状态不能包含 cell_diffs")
        return self


class ComparisonSummary(BaseModel):
    """比对统计"""
    total_rows: int = Field(default=0, ge=0)
    matching_rows: int = Field(default=0, ge=0)
    different_rows: int = Field(default=0, ge=0)
    source_only_rows: int = Field(default=0, ge=0)
    target_only_rows: int = Field(default=0, ge=0)


class TableComparisonResult(ComparisonSummary):
    """
    单表比对结果

    属性:
        source_connection: 源连接名称
        target_connection: 目标连接名称
        table_name: 表名
        primary_key_columns: 主键列
        columns: 参与比对的列
        total_source_rows: 源端读取行数
        total_target_rows: 目标端读取行数
        diffs: 行差异列表（按主键序列化排序）
        truncated: 任一侧达到比对上限
        error: 读取失败时的错误信息
    """
    source_connection: str = Field(default="")
    target_connection: str = Field(default="")
    table_name: str = Field(..., description="表名")
    primary_key_columns: List[str] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    total_source_rows: int = Field(default=0, ge=0)
    total_target_rows: int = Field(default=0, ge=0)
    diffs: List[RowDiff] = Field(default_factory=list)
    truncated: bool = Field(default=False)
    error: Optional[str] = Field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典，用于序列化"""
        return self.model_dump(mode="json")
