"""
查询结果模型 - 表格结果、分页结果、表结构信息
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class ColumnInfo(BaseModel):
    """
    结果列描述

    属性:
        name: 列名
        type: 引擎报告的类型标记
        nullable: 是否可为空
    """
    name: str = Field(..., description="列名")
    type: str = Field(default="unknown", description="引擎类型标记")
    nullable: bool = Field(default=True, description="是否可为空")


AFFECTED_ROWS_COLUMN = ColumnInfo(name="affected_rows", type="number", nullable=False)


class TabularResult(BaseModel):
    """
    规范化的表格结果

    属性:
        columns: 列描述（有序）
        rows: 行数据（列名 -> 值）
        row_count: 服务端可用行数，截断时可能大于 len(rows)
        execution_time: 执行耗时（毫秒），包含建立连接的时间
        error: 错误信息；设置时 columns 和 rows 必须为空
    """
    columns: List[ColumnInfo] = Field(default_factory=list, description="列描述")
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="行数据")
    row_count: int = Field(default=0, ge=0, description="行数")
    execution_time: float = Field(default=0.0, ge=0, description="执行耗时(毫秒)")
    error: Optional[str] = Field(default=None, description="错误信息")

    @model_validator(mode="after")
    def validate_error_shape(self) -> "TabularResult":
        """出错时不允许携带行或列"""
        if self.error is not None and (self.columns or self.rows):
            raise ValueError("error 结果不能包含 columns 或 rows")
        return self

    @property
    def success(self) -> bool:
        """是否执行成功"""
        return self.error is None

    @property
    def affected_rows(self) -> Optional[int]:
        """写操作影响行数（读操作返回 None）"""
        if len(self.columns) == 1 and self.columns[0].name == AFFECTED_ROWS_COLUMN.name and self.rows:
            return self.rows[0].get(AFFECTED_ROWS_COLUMN.name)
        return None

    @classmethod
    def failure(cls, error: str, execution_time: float = 0.0) -> "TabularResult":
        """构建错误结果"""
        return cls(error=error, execution_time=execution_time)

    @classmethod
    def mutation(cls, affected_rows: int, execution_time: float = 0.0) -> "TabularResult":
        """构建写操作结果（单行合成列 affected_rows）"""
        return cls(
            columns=[AFFECTED_ROWS_COLUMN],
            rows=[{AFFECTED_ROWS_COLUMN.name: affected_rows}],
            row_count=1,
            execution_time=execution_time,
        )

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典，用于序列化"""
        return self.model_dump()


class CursorData(BaseModel):
    """分页游标内容（对调用方不透明）"""
    offset: int = Field(..., ge=0, description="偏移量")
    limit: int = Field(..., ge=1, description="页大小")


class PaginatedResult(BaseModel):
    """
    分页查询结果

    属性:
        data: 当前页的行
        columns: 列描述
        cursor: 下一页游标，没有更多数据时为 None
        has_more: 是否还有下一页
        total_estimate: 总行数估计（仅首页且显式请求时）
        execution_time: 执行耗时（毫秒）
        error: 错误信息
    """
    data: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[ColumnInfo] = Field(default_factory=list)
    cursor: Optional[str] = Field(default=None)
    has_more: bool = Field(default=False)
    total_estimate: Optional[int] = Field(default=None)
    execution_time: float = Field(default=0.0, ge=0)
    error: Optional[str] = Field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典，用于序列化"""
        return self.model_dump()


class TableInfo(BaseModel):
    """表或视图信息"""
    name: str = Field(..., description="表名")
    schema_name: Optional[str] = Field(default=None, description="schema")
    type: Literal["table", "view"] = Field(default="table", description="对象类型")


class ColumnDefinition(BaseModel):
    """
    表结构中的列定义

    属性:
        name: 列名
        type: 声明类型
        nullable: 是否可为空
        default_value: 默认值表达式
        is_primary_key: 是否为主键列
        auto_increment: 是否自增
    """
    name: str = Field(..., description="列名")
    type: str = Field(default="", description="声明类型")
    nullable: bool = Field(default=True, description="是否可为空")
    default_value: Optional[str] = Field(default=None, description="默认值")
    is_primary_key: bool = Field(default=False, description="是否主键")
    auto_increment: bool = Field(default=False, description="是否自增")
