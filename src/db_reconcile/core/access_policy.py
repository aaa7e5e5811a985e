"""
访问策略评估 - 按权限描述检查自由 SQL

检查顺序（第一个违规即返回）:
    1. 查看权限
    2. 写权限（写语句）
    3. 表白名单
    4. 隐藏列（SELECT * 直接拒绝）

提取偏向多匹配：归属不明的列按属于每张被引用的表处理。
表名、列名比较不区分大小写。
"""

from typing import List, Optional

from db_reconcile.models.permission import AccessVerdict, PermissionDescriptor, ViolationType
from db_reconcile.utils.logging import get_logger
from db_reconcile.utils.sql_parser import (
    columns_for_table,
    extract_table_references,
    is_write_query,
    selects_all_columns,
)

logger = get_logger(__name__)

NO_PERMISSION_REASON = "No permission assigned for this connection"
NO_VIEW_REASON = "You do not have view permission for this connection"
NO_EDIT_REASON = "You do not have edit permission for this connection"


def evaluate(sql: str, permission: Optional[PermissionDescriptor]) -> AccessVerdict:
    """
    评估 SQL 是否被允许执行

    参数:
        sql: 原始 SQL 文本
        permission: 有效权限；None 表示没有分配权限

    返回:
        AccessVerdict（拒绝原因不包含被限制的数据）

    示例:
        >>> permission = PermissionDescriptor(can_view=True, allowed_tables={"orders"})
        >>> evaluate("SELECT * FROM customers", permission).violation_type
        <ViolationType.TABLE: 'table'>
    """
    if permission is None:
        return AccessVerdict.deny(NO_PERMISSION_REASON)

    if not permission.can_view:
        return AccessVerdict.deny(NO_VIEW_REASON)

    if is_write_query(sql) and not permission.can_edit:
        logger.info("access_denied", violation_type=ViolationType.WRITE.value)
        return AccessVerdict.deny(NO_EDIT_REASON, ViolationType.WRITE)

    tables = extract_table_references(sql)

    for table in tables:
        if not permission.is_table_allowed(table):
            logger.info("access_denied", violation_type=ViolationType.TABLE.value, table=table)
            return AccessVerdict.deny(
                f"You do not have access to table: {table}",
                ViolationType.TABLE,
            )

    for table in tables:
        hidden = permission.hidden_columns_for(table)
        if not hidden:
            continue

        if selects_all_columns(sql, table):
            logger.info("access_denied", violation_type=ViolationType.COLUMN.value, table=table)
            return AccessVerdict.deny(
                f"Cannot use SELECT * on table {table} because some columns are restricted. "
                "Please specify columns explicitly.",
                ViolationType.COLUMN,
            )

        for column in sorted(columns_for_table(sql, table)):
            if column in hidden:
                logger.info("access_denied", violation_type=ViolationType.COLUMN.value, table=table)
                return AccessVerdict.deny(
                    f"You do not have access to column: {table}.{column}",
                    ViolationType.COLUMN,
                )

    return AccessVerdict.allow()


def filter_allowed_tables(tables: List[str], permission: Optional[PermissionDescriptor]) -> List[str]:
    """过滤出有权查看的表"""
    if permission is None or not permission.can_view:
        return []
    return [table for table in tables if permission.is_table_allowed(table)]


def filter_allowed_columns(
    table: str,
    columns: List[str],
    permission: Optional[PermissionDescriptor],
) -> List[str]:
    """过滤掉隐藏列"""
    if permission is None or not permission.can_view:
        return []
    hidden = permission.hidden_columns_for(table)
    return [column for column in columns if column.lower() not in hidden]
