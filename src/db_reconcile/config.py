"""
配置加载模块 - 支持 YAML 和环境变量
"""

import os
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from db_reconcile.errors import ConfigError
from db_reconcile.models.settings import ReconcileConfig, expand_env_vars

__all__ = [
    "ConfigError",
    "load_config",
    "load_config_from_string",
    "generate_config_template",
    "save_config_template",
]

# 环境变量覆盖: 变量名 -> (配置段, 字段)
ENV_OVERRIDES = {
    "DB_RECONCILE_MAX_QUERY_ROWS": ("gateway", "max_rows"),
    "DB_RECONCILE_QUERY_TIMEOUT": ("gateway", "default_timeout"),
}


def apply_env_overrides(raw_config: Dict[str, Any]) -> Dict[str, Any]:
    """应用环境变量覆盖（优先级高于配置文件）"""
    result = dict(raw_config)
    for env_name, (section, field) in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value is None or env_value.strip() == "":
            continue
        section_value = dict(result.get(section) or {})
        section_value[field] = env_value.strip()
        result[section] = section_value
    return result


def _build_config(raw_config: Any) -> ReconcileConfig:
    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("配置文件必须是一个对象")

    try:
        expanded_config = apply_env_overrides(expand_env_vars(raw_config))
        return ReconcileConfig(**expanded_config)
    except ValidationError as e:
        raise ConfigError(f"配置验证失败: {e}")
    except ValueError as e:
        raise ConfigError(str(e))


def load_config(path: str | Path) -> ReconcileConfig:
    """
    加载 YAML 配置文件

    支持环境变量替换，格式:
        - ${VAR_NAME}
        - ${VAR_NAME:-default_value}

    DB_RECONCILE_MAX_QUERY_ROWS、DB_RECONCILE_QUERY_TIMEOUT 会覆盖
    gateway 段的对应配置。

    参数:
        path: 配置文件路径

    返回:
        ReconcileConfig: 验证后的配置对象

    异常:
        ConfigError: 配置文件不存在、格式错误或验证失败

    示例:
        ```python
        config = load_config("reconcile.yaml")
        source = config.get_connection("prod")
        ```
    """
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"配置文件不存在: {config_path}")

    try:
        content = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"读取配置文件失败: {e}")

    return load_config_from_string(content)


def load_config_from_string(content: str) -> ReconcileConfig:
    """
    从字符串加载配置（用于测试）

    参数:
        content: YAML 配置字符串

    返回:
        ReconcileConfig: 验证后的配置对象
    """
    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"YAML 解析失败: {e}")

    return _build_config(raw_config)


def generate_config_template() -> str:
    """
    生成配置模板

    返回:
        str: YAML 配置模板
    """
    return '''# db-reconcile 配置

# 命名连接（密码建议通过环境变量注入）
connections:
  - name: "prod"
    type: "mysql"               # mysql / mariadb / postgresql / sqlite
    host: "db.example.com"
    port: 3306
    database: "shop"
    username: "${PROD_DB_USER}"
    password: "${PROD_DB_PASSWORD}"
    ssl: true

  - name: "staging"
    type: "postgresql"
    host: "localhost"
    database: "shop"
    schema_name: "public"
    username: "${STAGING_DB_USER:-postgres}"
    password: "${STAGING_DB_PASSWORD:-}"

  - name: "local"
    type: "sqlite"
    database: "./local.db"      # sqlite 使用文件路径

# 查询网关
gateway:
  max_rows: 10000               # 单次查询最多返回行数（上限 10000）
  default_timeout: 30           # 默认超时（秒）

# 分页
pagination:
  default_page_size: 100
  max_page_size: 1000

# 比对与同步
sync:
  comparison_limit: 1000        # 比对时每侧最多读取行数
  atomic: false                 # true: 单事务执行，任一行失败整体回滚
  concurrency: 1                # 非事务同步的并发语句数

log_level: "INFO"               # 日志级别 (DEBUG, INFO, WARNING, ERROR)
'''


def save_config_template(path: str | Path) -> None:
    """
    保存配置模板到文件

    参数:
        path: 输出文件路径
    """
    config_path = Path(path)
    config_path.write_text(generate_config_template(), encoding="utf-8")
