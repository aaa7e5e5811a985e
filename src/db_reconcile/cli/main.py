"""
CLI 命令行入口 - 使用 Click 框架
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional, Tuple

import click

from db_reconcile import __version__
from db_reconcile.collaborators.credentials import EnvCredentialStore
from db_reconcile.config import ConfigError, load_config, save_config_template
from db_reconcile.core.access_policy import evaluate
from db_reconcile.core.classifier import classify
from db_reconcile.core.service import ReconcileService
from db_reconcile.errors import (
    AccessDeniedError,
    ConfirmationRequiredError,
    ReconcileError,
    RequestValidationError,
)
from db_reconcile.models.connection import ConnectionDescriptor
from db_reconcile.models.permission import PermissionDescriptor
from db_reconcile.models.settings import ReconcileConfig
from db_reconcile.models.sync import SyncContent, SyncScope
from db_reconcile.utils.logging import bind_context, configure_logging, get_logger, set_log_level

logger = get_logger(__name__)

# 命令行操作者拥有完整权限；访问检查用 check-access 单独演练
OPERATOR_PERMISSION = PermissionDescriptor(can_view=True, can_edit=True)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _fail(message: str) -> None:
    click.echo(f"✗ {message}", err=True)
    sys.exit(1)


def _load(ctx: click.Context) -> ReconcileConfig:
    config_path = ctx.obj.get("config_path")
    if not config_path:
        _fail("需要通过 --config 指定配置文件")
    try:
        config = load_config(config_path)
    except ConfigError as e:
        _fail(f"配置错误: {e}")

    # 未显式指定 --log-level 时使用配置文件中的级别
    if not ctx.obj.get("log_level_explicit"):
        set_log_level(config.log_level)
    return config


def _connection(config: ReconcileConfig, name: str) -> ConnectionDescriptor:
    connection = config.get_connection(name)
    if connection is None:
        _fail(f"连接不存在: {name}")
    return connection


def _service(config: ReconcileConfig) -> ReconcileService:
    return ReconcileService.from_config(config, credentials=EnvCredentialStore())


def _parse_hidden(hide: Tuple[str, ...]) -> dict:
    hidden: dict = {}
    for item in hide:
        table, sep, column = item.rpartition(".")
        if not sep or not table or not column:
            raise click.BadParameter(f"格式应为 table.column: {item}", param_hint="--hide")
        hidden.setdefault(table, set()).add(column)
    return hidden


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="配置文件路径",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="WARNING",
    help="日志级别",
)
@click.version_option(version=__version__, prog_name="db-reconcile")
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: str) -> None:
    """
    db-reconcile 跨库比对与访问控制 CLI

    对 MySQL/MariaDB/PostgreSQL/SQLite 执行查询、检查访问策略、
    比对两个连接上的表并同步差异。
    """
    configure_logging(log_level=log_level, json_format=False)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["log_level"] = log_level
    ctx.obj["log_level_explicit"] = ctx.get_parameter_source("log_level") != click.core.ParameterSource.DEFAULT
    bind_context(command=ctx.invoked_subcommand)


@cli.command()
@click.argument("output_path", type=click.Path(), default="reconcile.yaml")
def init(output_path: str) -> None:
    """
    生成配置文件模板

    示例:
        db-reconcile init reconcile.yaml
    """
    path = Path(output_path)

    if path.exists():
        click.confirm(f"文件 {output_path} 已存在，是否覆盖？", abort=True)

    save_config_template(output_path)
    click.echo(f"✓ 配置模板已生成: {output_path}")


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
def validate(config_path: str) -> None:
    """
    验证配置文件

    示例:
        db-reconcile validate reconcile.yaml
    """
    try:
        config = load_config(config_path)
    except ConfigError as e:
        _fail(f"配置错误: {e}")

    click.echo("✓ 配置验证通过")
    click.echo(f"  连接数量: {len(config.connections)}")
    for connection in config.connections:
        click.echo(f"    - {connection.name} ({connection.type.value})")
    click.echo(f"  最大返回行数: {config.gateway.max_rows}")
    click.echo(f"  比对行数上限: {config.sync.comparison_limit}")


@cli.command("classify")
@click.argument("sql")
def classify_command(sql: str) -> None:
    """
    对语句做危险等级分类

    示例:
        db-reconcile classify "DROP TABLE users"
    """
    _echo_json(classify(sql).model_dump(mode="json"))


@cli.command("check-access")
@click.argument("sql")
@click.option("--can-view/--no-can-view", default=True, help="是否有查看权限")
@click.option("--can-edit/--no-can-edit", default=False, help="是否有写入权限")
@click.option("--table", "tables", multiple=True, help="允许访问的表（可多次指定，不指定则不限制）")
@click.option("--hide", multiple=True, help="隐藏列 table.column（可多次指定）")
def check_access(sql: str, can_view: bool, can_edit: bool, tables: Tuple[str, ...], hide: Tuple[str, ...]) -> None:
    """
    按权限检查 SQL

    示例:
        db-reconcile check-access "SELECT * FROM orders" --table orders --hide orders.card_number
    """
    permission = PermissionDescriptor(
        can_view=can_view,
        can_edit=can_edit,
        allowed_tables=set(tables) if tables else None,
        hidden_columns=_parse_hidden(hide),
    )
    verdict = evaluate(sql, permission)
    _echo_json(verdict.model_dump(mode="json"))
    if not verdict.allowed:
        sys.exit(2)


@cli.command()
@click.argument("connection_name")
@click.argument("sql")
@click.option("--cursor", help="上一页返回的游标")
@click.option("--page-size", type=click.IntRange(1, 1000), help="页大小")
@click.option("--include-total", is_flag=True, help="首页返回总行数估计")
@click.pass_context
def query(
    ctx: click.Context,
    connection_name: str,
    sql: str,
    cursor: Optional[str],
    page_size: Optional[int],
    include_total: bool,
) -> None:
    """
    分页执行查询

    示例:
        db-reconcile -c reconcile.yaml query local "SELECT * FROM users" --page-size 50
    """
    config = _load(ctx)
    connection = _connection(config, connection_name)
    service = _service(config)

    result = asyncio.run(service.run_paginated_query(
        connection,
        sql,
        OPERATOR_PERMISSION,
        cursor=cursor,
        page_size=page_size,
        include_total=include_total,
    ))
    _echo_json(result.to_dict())
    if result.error:
        sys.exit(1)


@cli.command()
@click.argument("connection_name")
@click.argument("sql")
@click.option("--confirm", "confirmation", help="critical 语句需输入受影响的对象名")
@click.option("--yes", "-y", "acknowledged", is_flag=True, help="确认执行 warning 级别语句")
@click.pass_context
def execute(
    ctx: click.Context,
    connection_name: str,
    sql: str,
    confirmation: Optional[str],
    acknowledged: bool,
) -> None:
    """
    执行单条语句（危险语句需要确认）

    示例:
        db-reconcile -c reconcile.yaml execute local "DELETE FROM logs" --yes
        db-reconcile -c reconcile.yaml execute local "DROP TABLE tmp" --confirm tmp
    """
    config = _load(ctx)
    connection = _connection(config, connection_name)
    service = _service(config)

    try:
        result = asyncio.run(service.execute_statement(
            connection,
            sql,
            OPERATOR_PERMISSION,
            confirmation=confirmation,
            acknowledged=acknowledged,
        ))
    except ConfirmationRequiredError as e:
        classification = e.classification
        hint = "--confirm <对象名>" if classification.requires_typed_confirmation else "--yes"
        _fail(f"{classification.message}（使用 {hint} 确认）")
    except AccessDeniedError as e:
        _fail(f"访问被拒绝: {e.reason}")

    _echo_json(result.to_dict())
    if result.error:
        sys.exit(1)


@cli.command()
@click.argument("source_name")
@click.argument("target_name")
@click.argument("table_name")
@click.option("--show-diffs", is_flag=True, help="输出完整的行差异")
@click.pass_context
def compare(ctx: click.Context, source_name: str, target_name: str, table_name: str, show_diffs: bool) -> None:
    """
    比对两个连接上的同名表

    示例:
        db-reconcile -c reconcile.yaml compare prod staging users
    """
    config = _load(ctx)
    source = _connection(config, source_name)
    target = _connection(config, target_name)
    service = _service(config)

    try:
        result = asyncio.run(service.compare(source, target, table_name))
    except RequestValidationError as e:
        _fail(e.message)

    if result.error:
        _fail(result.error)

    click.echo(f"表: {result.table_name}  ({result.source_connection} -> {result.target_connection})")
    click.echo(f"  主键: {', '.join(result.primary_key_columns)}")
    click.echo(f"  总行数: {result.total_rows}")
    click.echo(f"  一致: {result.matching_rows}")
    click.echo(f"  不同: {result.different_rows}")
    click.echo(f"  仅源端: {result.source_only_rows}")
    click.echo(f"  仅目标端: {result.target_only_rows}")
    if result.truncated:
        click.echo(f"  ⚠ 已截断: 每侧最多读取 {config.sync.comparison_limit} 行")
    if show_diffs:
        _echo_json([d.model_dump(mode="json") for d in result.diffs])


@cli.command()
@click.argument("source_name")
@click.argument("target_name")
@click.argument("table_name")
@click.option("--preview", is_flag=True, help="只生成预览 SQL，不执行")
@click.option("--key", "keys", multiple=True, help="只同步指定主键（序列化字符串，可多次指定）")
@click.option(
    "--content",
    type=click.Choice([c.value for c in SyncContent]),
    default=SyncContent.DATA.value,
    help="同步内容（结构同步仅透传）",
)
@click.option("--atomic/--no-atomic", default=None, help="是否在单个事务中执行（默认使用配置）")
@click.option("--concurrency", type=click.IntRange(1, 32), help="并发语句数（默认使用配置）")
@click.pass_context
def sync(
    ctx: click.Context,
    source_name: str,
    target_name: str,
    table_name: str,
    preview: bool,
    keys: Tuple[str, ...],
    content: str,
    atomic: Optional[bool],
    concurrency: Optional[int],
) -> None:
    """
    将源端差异同步到目标端（不会删除目标端多出的行）

    示例:
        db-reconcile -c reconcile.yaml sync prod staging users --preview
        db-reconcile -c reconcile.yaml sync prod staging users --key '[["id",1]]' --atomic
    """
    config = _load(ctx)
    source = _connection(config, source_name)
    target = _connection(config, target_name)
    service = _service(config)

    try:
        asyncio.run(_run_sync(
            service,
            source,
            target,
            table_name,
            preview=preview,
            keys=keys,
            content=SyncContent(content),
            atomic=atomic,
            concurrency=concurrency,
        ))
    except RequestValidationError as e:
        _fail(e.message)
    except ReconcileError as e:
        _fail(f"同步失败: {e}")


# ============================================================================
# 异步执行函数
# ============================================================================

async def _run_sync(
    service: ReconcileService,
    source: ConnectionDescriptor,
    target: ConnectionDescriptor,
    table_name: str,
    preview: bool,
    keys: Tuple[str, ...],
    content: SyncContent,
    atomic: Optional[bool],
    concurrency: Optional[int],
) -> None:
    """比对后预览或执行同步"""
    job = await service.prepare_sync(
        source,
        target,
        table_name,
        scope=SyncScope.SELECTED if keys else SyncScope.TABLE,
        content=content,
        selected_keys=list(keys) if keys else None,
        atomic=atomic,
        concurrency=concurrency,
    )

    if preview:
        result = service.preview_sync(job)
        click.echo(f"插入: {result.inserts}  更新: {result.updates}  删除: {result.deletes}")
        for warning in result.warnings:
            click.echo(f"⚠ {warning}")
        if result.blocked_reason:
            click.echo(f"不可执行: {result.blocked_reason}")
        for statement in result.statements:
            click.echo(statement)
        return

    outcome = await service.sync(job)
    _echo_json(outcome.to_dict())
    if not outcome.success:
        sys.exit(1)


if __name__ == "__main__":
    cli()
