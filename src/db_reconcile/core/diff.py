"""
行差异计算 - 按主键匹配两侧的行并逐列比较

结果按主键序列化字符串排序，相同输入多次计算结果一致。
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from db_reconcile.models.diff import (
    CellDiff,
    ComparisonSummary,
    RowDiff,
    RowDiffStatus,
    TableComparisonResult,
)
from db_reconcile.utils.converters import serialize_primary_key, values_equal

Row = Mapping[str, Any]


def extract_primary_key(row: Row, primary_key_columns: Sequence[str]) -> Dict[str, Any]:
    """提取行的主键值（缺失列视为 None）"""
    return {column: row.get(column) for column in primary_key_columns}


def compare_cells(source_row: Row, target_row: Row, columns: Sequence[str]) -> List[CellDiff]:
    """逐列比较，返回不相等的列"""
    diffs = []
    for column in columns:
        source_value = source_row.get(column)
        target_value = target_row.get(column)
        if not values_equal(source_value, target_value):
            diffs.append(CellDiff(column=column, source_value=source_value, target_value=target_value))
    return diffs


def _index_rows(rows: Sequence[Row], primary_key_columns: Sequence[str]) -> Dict[str, Row]:
    # 主键重复时以最后一行为准
    return {
        serialize_primary_key(extract_primary_key(row, primary_key_columns)): row
        for row in rows
    }


def calculate_row_diffs(
    primary_key_columns: Sequence[str],
    source_rows: Sequence[Row],
    target_rows: Sequence[Row],
    columns: Sequence[str],
) -> List[RowDiff]:
    """
    计算行差异

    参数:
        primary_key_columns: 主键列；为空时无法匹配行，返回空列表
        source_rows: 源端行
        target_rows: 目标端行
        columns: 参与比较的列

    返回:
        按主键序列化字符串排序的 RowDiff 列表，数量等于两侧主键并集大小

    示例:
        >>> diffs = calculate_row_diffs(["id"], [{"id": 1, "name": "A"}], [{"id": 1, "name": "B"}], ["id", "name"])
        >>> diffs[0].status, diffs[0].cell_diffs[0].column
        (<RowDiffStatus.DIFFERENT: 'different'>, 'name')
    """
    if not primary_key_columns:
        return []

    source_map = _index_rows(source_rows, primary_key_columns)
    target_map = _index_rows(target_rows, primary_key_columns)

    diffs: List[RowDiff] = []
    for key in sorted(set(source_map) | set(target_map)):
        source_row = source_map.get(key)
        target_row = target_map.get(key)
        cell_diffs: List[CellDiff] = []

        if source_row is not None and target_row is not None:
            cell_diffs = compare_cells(source_row, target_row, columns)
            status = RowDiffStatus.DIFFERENT if cell_diffs else RowDiffStatus.MATCH
        elif source_row is not None:
            status = RowDiffStatus.SOURCE_ONLY
        else:
            status = RowDiffStatus.TARGET_ONLY

        present_row = source_row if source_row is not None else target_row
        diffs.append(RowDiff(
            primary_key=extract_primary_key(present_row, primary_key_columns),
            primary_key_string=key,
            status=status,
            cell_diffs=cell_diffs,
            source_row=dict(source_row) if source_row is not None else None,
            target_row=dict(target_row) if target_row is not None else None,
        ))

    return diffs


def calculate_comparison_summary(diffs: Sequence[RowDiff]) -> ComparisonSummary:
    """统计各状态的行数"""
    counts = {status: 0 for status in RowDiffStatus}
    for diff in diffs:
        counts[diff.status] += 1

    return ComparisonSummary(
        total_rows=len(diffs),
        matching_rows=counts[RowDiffStatus.MATCH],
        different_rows=counts[RowDiffStatus.DIFFERENT],
        source_only_rows=counts[RowDiffStatus.SOURCE_ONLY],
        target_only_rows=counts[RowDiffStatus.TARGET_ONLY],
    )


def create_table_comparison_result(
    source_connection: str,
    target_connection: str,
    table_name: str,
    primary_key_columns: Sequence[str],
    source_rows: Sequence[Row],
    target_rows: Sequence[Row],
    columns: Sequence[str],
    truncated: bool = False,
    error: Optional[str] = None,
) -> TableComparisonResult:
    """计算差异并组装完整的比对结果"""
    diffs = calculate_row_diffs(primary_key_columns, source_rows, target_rows, columns)
    summary = calculate_comparison_summary(diffs)

    return TableComparisonResult(
        source_connection=source_connection,
        target_connection=target_connection,
        table_name=table_name,
        primary_key_columns=list(primary_key_columns),
        columns=list(columns),
        total_source_rows=len(source_rows),
        total_target_rows=len(target_rows),
        diffs=diffs,
        truncated=truncated,
        error=error,
        **summary.model_dump(),
    )


def diffs_to_status_map(diffs: Sequence[RowDiff]) -> Dict[str, RowDiffStatus]:
    """主键字符串 -> 状态"""
    return {diff.primary_key_string: diff.status for diff in diffs}


def diffs_to_cell_diff_map(diffs: Sequence[RowDiff]) -> Dict[str, Set[str]]:
    """主键字符串 -> 有差异的列集合（只包含 different 的行）"""
    return {
        diff.primary_key_string: {cell.column for cell in diff.cell_diffs}
        for diff in diffs
        if diff.cell_diffs
    }
