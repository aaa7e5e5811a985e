"""
运行配置模型 - 使用 Pydantic 进行配置验证
"""

import os
import re
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from db_reconcile.models.connection import ConnectionDescriptor

# 单次查询返回行数的硬上限
HARD_MAX_ROWS = 10000


class GatewaySettings(BaseModel):
    """
    查询网关配置

    属性:
        max_rows: 单次查询最多返回的行数，默认且最大 10000
        default_timeout: 默认超时时间（秒），透传给驱动
    """
    max_rows: int = Field(default=HARD_MAX_ROWS, ge=1, le=HARD_MAX_ROWS, description="最大返回行数")
    default_timeout: float = Field(default=30.0, gt=0, description="默认超时(秒)")


class PaginationSettings(BaseModel):
    """
    分页配置

    属性:
        default_page_size: 默认页大小
        max_page_size: 最大页大小
    """
    default_page_size: int = Field(default=100, ge=1, description="默认页大小")
    max_page_size: int = Field(default=1000, ge=1, le=HARD_MAX_ROWS, description="最大页大小")

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "PaginationSettings":
        """默认页大小不能超过最大页大小"""
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size 不能大于 max_page_size")
        return self


class SyncSettings(BaseModel):
    """
    比对与同步配置

    属性:
        comparison_limit: 比对时每侧最多读取的行数
        atomic: 同步是否在单个事务中执行（任一行失败则整体回滚）
        concurrency: 非事务同步的并发语句数，1 表示按顺序执行
    """
    comparison_limit: int = Field(default=1000, ge=1, le=HARD_MAX_ROWS, description="比对行数上限")
    atomic: bool = Field(default=False, description="是否事务执行")
    concurrency: int = Field(default=1, ge=1, le=32, description="并发数")


class ReconcileConfig(BaseModel):
    """
    配置根对象

    属性:
        connections: 命名连接列表
        gateway: 查询网关配置
        pagination: 分页配置
        sync: 比对与同步配置
        log_level: 日志级别，默认 INFO
    """
    connections: List[ConnectionDescriptor] = Field(default_factory=list, description="连接列表")
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    pagination: PaginationSettings = Field(default_factory=PaginationSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    log_level: str = Field(default="INFO", description="日志级别")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """验证日志级别"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"日志级别必须是以下之一: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_connection_names_unique(self) -> "ReconcileConfig":
        """验证连接名称唯一"""
        names = [c.name for c in self.connections]
        if len(names) != len(set(names)):
            raise ValueError("连接名称必须唯一")
        return self

    def get_connection(self, name: str) -> Optional[ConnectionDescriptor]:
        """获取指定名称的连接"""
        for connection in self.connections:
            if connection.name == name:
                return connection
        return None


_ENV_PATTERN = re.compile(r"\$\{([^}:-]+)(?::-([^}]*))?\}")


def expand_env_vars(value: Any) -> Any:
    """
    递归展开值中的环境变量

    支持格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}
    """
    if isinstance(value, str):
        def replacer(match: "re.Match[str]") -> str:
            var_name = match.group(1)
            default_val = match.group(2)
            env_value = os.getenv(var_name)
            if env_value is None:
                if default_val is not None:
                    return default_val
                raise ValueError(f"环境变量 {var_name} 未设置且无默认值")
            return env_value

        return _ENV_PATTERN.sub(replacer, value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    return value
