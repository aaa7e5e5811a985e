"""
请求模型 - 在任何 I/O 之前校验调用方输入
"""

from typing import Any, List, Mapping, Optional, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from db_reconcile.errors import RequestValidationError
from db_reconcile.models.sync import SyncContent, SyncScope
from db_reconcile.utils.sql_builder import validate_identifier

RequestT = TypeVar("RequestT", bound=BaseModel)


class PaginatedQueryRequest(BaseModel):
    """
    分页查询请求

    属性:
        connection_id: 连接 ID
        sql: SQL 文本
        cursor: 上一页返回的游标
        page_size: 页大小 (1-1000)
        team_id: 团队 ID（团队连接需要做权限检查）
        include_total: 首页是否返回总行数估计
    """
    connection_id: UUID
    sql: str = Field(..., min_length=1)
    cursor: Optional[str] = Field(default=None)
    page_size: int = Field(default=100, ge=1, le=1000)
    team_id: Optional[UUID] = Field(default=None)
    include_total: bool = Field(default=False)

    @field_validator("sql")
    @classmethod
    def validate_sql(cls, v: str) -> str:
        """SQL 不能为空白"""
        if not v.strip():
            raise ValueError("SQL query is required")
        return v


class CompareRequest(BaseModel):
    """表比对请求"""
    source_connection_id: UUID
    target_connection_id: UUID
    table_name: str = Field(..., min_length=1)
    team_id: Optional[UUID] = Field(default=None)

    @field_validator("table_name")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        """表名必须是合法标识符"""
        if not validate_identifier(v):
            raise ValueError("Invalid table name")
        return v


class SyncRequest(CompareRequest):
    """
    同步请求

    属性:
        scope: 同步范围
        content: 同步内容
        selected_keys: scope 为 selected 时必填的主键序列化字符串
        preview: 只生成预览 SQL，不执行
    """
    scope: SyncScope = Field(default=SyncScope.TABLE)
    content: SyncContent = Field(default=SyncContent.DATA)
    selected_keys: Optional[List[str]] = Field(default=None)
    preview: bool = Field(default=False)

    @model_validator(mode="after")
    def validate_selected_keys(self) -> "SyncRequest":
        """selected 范围必须提供主键列表"""
        if self.scope == SyncScope.SELECTED and not self.selected_keys:
            raise ValueError("selected_keys is required when scope is 'selected'")
        return self


def parse_request(model: Type[RequestT], payload: Mapping[str, Any]) -> RequestT:
    """
    校验请求数据

    异常:
        RequestValidationError: 携带字段级错误信息

    示例:
        ```python
        request = parse_request(PaginatedQueryRequest, body)
        ```
    """
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError.from_pydantic(e) from e
