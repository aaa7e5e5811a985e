"""
凭据存储 - 在连接描述进入网关前解密密码
"""

import os
from abc import ABC, abstractmethod

from db_reconcile.models.connection import ConnectionDescriptor


class CredentialStore(ABC):
    """凭据存储抽象基类"""

    @abstractmethod
    async def resolve(self, connection: ConnectionDescriptor) -> ConnectionDescriptor:
        """
        返回带有明文密码的连接描述

        参数:
            connection: 原始连接描述（密码可能是加密值或引用）
        """
        raise NotImplementedError


class PlainCredentialStore(CredentialStore):
    """明文凭据存储 - 原样返回（密码已由上层解密）"""

    async def resolve(self, connection: ConnectionDescriptor) -> ConnectionDescriptor:
        return connection


class EnvCredentialStore(CredentialStore):
    """
    环境变量凭据存储

    按连接名称读取 {prefix}{NAME}_PASSWORD，例如连接 prod 对应
    DB_RECONCILE_PROD_PASSWORD；变量不存在时保留原密码。
    """

    def __init__(self, prefix: str = "DB_RECONCILE_"):
        self.prefix = prefix

    def variable_name(self, connection: ConnectionDescriptor) -> str:
        """连接对应的环境变量名"""
        name = "".join(ch if ch.isalnum() else "_" for ch in connection.name).upper()
        return f"{self.prefix}{name}_PASSWORD"

    async def resolve(self, connection: ConnectionDescriptor) -> ConnectionDescriptor:
        password = os.getenv(self.variable_name(connection))
        if password is None:
            return connection
        return connection.with_password(password)
