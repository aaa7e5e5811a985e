"""
连接描述模型 - 目标数据库的连接信息

连接描述由调用方持有，核心只读取、从不持久化。
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class EngineKind(str, Enum):
    """数据库引擎类型（封闭集合）"""
    MYSQL = "mysql"
    MARIADB = "mariadb"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


DEFAULT_PORTS: Dict[EngineKind, Optional[int]] = {
    EngineKind.MYSQL: 3306,
    EngineKind.MARIADB: 3306,
    EngineKind.POSTGRESQL: 5432,
    EngineKind.SQLITE: None,
}


class TunnelConfig(BaseModel):
    """
    SSH 隧道配置

    核心只透传该配置，隧道的建立由外部组件负责。
    """
    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1, description="SSH 主机")
    port: int = Field(default=22, ge=1, le=65535, description="SSH 端口")
    username: str = Field(..., min_length=1, description="SSH 用户名")
    password: Optional[str] = Field(default=None, description="SSH 密码")
    private_key: Optional[str] = Field(default=None, description="私钥内容")
    passphrase: Optional[str] = Field(default=None, description="私钥口令")


class ConnectionDescriptor(BaseModel):
    """
    连接描述

    属性:
        name: 连接名称，用于日志和审计
        type: 引擎类型
        host: 主机地址（sqlite 忽略）
        port: 端口，为空时使用引擎默认端口
        database: 数据库名；sqlite 时为数据库文件路径
        username: 用户名
        password: 密码（已由凭据存储解密）
        schema_name: 目标 schema（postgresql 默认 public）
        ssl: 是否启用 TLS
        timeout: 超时时间（秒），透传给驱动
        tunnel: 可选的 SSH 隧道配置

    示例:
        ```python
        conn = ConnectionDescriptor(
            name="prod",
            type=EngineKind.MYSQL,
            host="db.example.com",
            database="shop",
            username="reader",
            password="secret",
        )
        assert conn.port == 3306
        ```
    """
    model_config = ConfigDict(frozen=True, title="Connection Descriptor")

    name: str = Field(default="default", min_length=1, description="连接名称")
    type: EngineKind = Field(..., description="引擎类型")
    host: str = Field(default="localhost", description="主机地址")
    port: Optional[int] = Field(default=None, ge=1, le=65535, description="端口")
    database: str = Field(..., min_length=1, description="数据库名或文件路径")
    username: str = Field(default="", description="用户名")
    password: str = Field(default="", repr=False, description="密码")
    schema_name: Optional[str] = Field(default=None, description="schema 名称")
    ssl: bool = Field(default=False, description="是否启用 TLS")
    timeout: Optional[float] = Field(default=None, gt=0, description="超时时间(秒)")
    tunnel: Optional[TunnelConfig] = Field(default=None, description="SSH 隧道配置")

    @model_validator(mode="before")
    @classmethod
    def set_default_port(cls, data: Any) -> Any:
        """未指定端口时使用引擎默认端口"""
        if isinstance(data, dict) and data.get("port") is None and data.get("type"):
            try:
                engine = EngineKind(data["type"])
            except ValueError:
                return data
            data = {**data, "port": DEFAULT_PORTS[engine]}
        return data

    @field_validator("database")
    @classmethod
    def validate_database(cls, v: str) -> str:
        """数据库名不能为空白"""
        if not v.strip():
            raise ValueError("database 不能为空")
        return v

    @property
    def is_mysql_family(self) -> bool:
        """是否为 MySQL/MariaDB"""
        return self.type in (EngineKind.MYSQL, EngineKind.MARIADB)

    def with_password(self, password: str) -> "ConnectionDescriptor":
        """返回替换了密码的新描述（原对象不可变）"""
        return self.model_copy(update={"password": password})
