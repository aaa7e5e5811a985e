"""
同步执行器 - 将行差异应用到目标连接

只处理两类差异:
- source-only: 按源端行生成 INSERT
- different: 按主键生成 UPDATE，只更新有差异的列

target-only 的行永远不会被删除。
"""

import asyncio
import time
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from db_reconcile.collaborators.audit import AuditDispatcher, default_audit_dispatcher
from db_reconcile.core.gateway import GatewaySession, QueryGateway
from db_reconcile.errors import IdentifierError
from db_reconcile.models.diff import RowDiff, RowDiffStatus
from db_reconcile.models.settings import SyncSettings
from db_reconcile.models.sync import (
    ChangeOperation,
    DataChange,
    SyncContent,
    SyncJob,
    SyncOperationCounts,
    SyncOutcome,
    SyncPreview,
    SyncScope,
)
from db_reconcile.models.result import TabularResult
from db_reconcile.utils.logging import get_logger
from db_reconcile.utils.sql_builder import (
    Statement,
    build_insert,
    build_update,
    render_for_display,
)

logger = get_logger(__name__)

ROLLBACK_MESSAGE = "Transaction rolled back; no rows were applied"
STRUCTURE_PASSTHROUGH_WARNING = "Structure changes are not applied by the sync executor; only data is synchronized"
MISSING_SOURCE_ROW = "Source row is missing; nothing to insert"


class PlannedChange(NamedTuple):
    """一行待执行的变更"""
    diff: RowDiff
    operation: ChangeOperation
    statement: Statement
    old_values: Optional[Dict[str, Any]]
    new_values: Dict[str, Any]


class PlanError(NamedTuple):
    """无法生成语句的行"""
    diff: RowDiff
    operation: ChangeOperation
    error: str


def filter_diffs(
    diffs: Sequence[RowDiff],
    scope: SyncScope,
    selected_keys: Optional[Sequence[str]] = None,
) -> List[RowDiff]:
    """按同步范围过滤差异（保持原顺序）"""
    if scope == SyncScope.SELECTED:
        selected = set(selected_keys or [])
        return [d for d in diffs if d.primary_key_string in selected]
    return list(diffs)


def count_sync_operations(
    diffs: Sequence[RowDiff],
    scope: SyncScope,
    selected_keys: Optional[Sequence[str]] = None,
) -> SyncOperationCounts:
    """
    统计将要执行的操作数量

    删除恒为 0：同步从不删除目标端多出的行。
    """
    in_scope = filter_diffs(diffs, scope, selected_keys)
    return SyncOperationCounts(
        inserts=sum(1 for d in in_scope if d.status == RowDiffStatus.SOURCE_ONLY),
        updates=sum(1 for d in in_scope if d.status == RowDiffStatus.DIFFERENT),
        deletes=0,
    )


def error_message(operation: ChangeOperation, primary_key_string: str, error: str) -> str:
    """逐行错误信息"""
    return f"{operation.value.title()} error for PK {primary_key_string}: {error}"


def plan_changes(
    table_name: str,
    primary_key_columns: Sequence[str],
    diffs: Sequence[RowDiff],
    engine: Any,
) -> Tuple[List[PlannedChange], List[PlanError]]:
    """
    为差异生成参数化语句

    UPDATE 只依赖 cell_diffs 和主键；缺少源端行的 source-only 差异、
    列名不合法的行作为 PlanError 返回。

    返回:
        (待执行变更, 生成失败的行)，均保持差异列表顺序
    """
    planned: List[PlannedChange] = []
    failed: List[PlanError] = []

    for diff in diffs:
        if diff.status == RowDiffStatus.SOURCE_ONLY:
            operation = ChangeOperation.INSERT
            if diff.source_row is None:
                failed.append(PlanError(diff, operation, MISSING_SOURCE_ROW))
                continue
            new_values = dict(diff.source_row)
            old_values = None
        elif diff.status == RowDiffStatus.DIFFERENT and diff.cell_diffs:
            operation = ChangeOperation.UPDATE
            new_values = {cell.column: cell.source_value for cell in diff.cell_diffs}
            old_values = dict(diff.target_row) if diff.target_row is not None else None
        else:
            continue

        try:
            if operation == ChangeOperation.INSERT:
                statement = build_insert(table_name, new_values, engine)
            else:
                statement = build_update(table_name, new_values, primary_key_columns, diff.primary_key, engine)
        except (IdentifierError, ValueError) as e:
            failed.append(PlanError(diff, operation, str(e)))
            continue

        planned.append(PlannedChange(diff, operation, statement, old_values, new_values))

    return planned, failed


def generate_sync_sql(
    table_name: str,
    primary_key_columns: Sequence[str],
    diffs: Sequence[RowDiff],
    scope: SyncScope,
    selected_keys: Optional[Sequence[str]],
    engine: Any,
) -> List[str]:
    """
    生成预览 SQL（不执行）

    每行变更输出一条注释和一条参数已内联的语句:
        -- INSERT for PK: [["id",3]]
        INSERT INTO "users" ("id", "name") VALUES (3, 'c');
    """
    planned, _ = plan_changes(table_name, primary_key_columns, filter_diffs(diffs, scope, selected_keys), engine)
    return _render_statements(planned, engine)


def _render_statements(planned: Sequence[PlannedChange], engine: Any) -> List[str]:
    statements: List[str] = []
    for change in planned:
        statements.append(f"-- {change.operation.value} for PK: {change.diff.primary_key_string}")
        statements.append(render_for_display(change.statement, engine) + ";")
    return statements


class SyncExecutor:
    """
    同步执行器

    属性:
        gateway: 查询网关（所有写入都经过网关）
        settings: 同步配置（默认事务模式、并发数）
        audit: 审计分发器

    示例:
        ```python
        executor = SyncExecutor(QueryGateway())
        preview = executor.preview(job)
        if preview.can_execute:
            outcome = await executor.execute(job)
        ```
    """

    def __init__(
        self,
        gateway: QueryGateway,
        settings: Optional[SyncSettings] = None,
        audit: Optional[AuditDispatcher] = None,
    ):
        self.gateway = gateway
        self.settings = settings or SyncSettings()
        self.audit = audit or default_audit_dispatcher()

    def _is_atomic(self, job: SyncJob) -> bool:
        return self.settings.atomic if job.atomic is None else job.atomic

    def _concurrency(self, job: SyncJob) -> int:
        return job.concurrency or self.settings.concurrency

    def preview(self, job: SyncJob) -> SyncPreview:
        """
        生成同步预览

        参数:
            job: 同步任务

        返回:
            SyncPreview（语句仅用于展示）
        """
        engine = job.target.type
        in_scope = filter_diffs(job.diffs, job.scope, job.selected_keys)
        counts = count_sync_operations(job.diffs, job.scope, job.selected_keys)
        planned, failed = plan_changes(job.table_name, job.primary_key_columns, in_scope, engine)

        warnings: List[str] = []
        if job.source.type != job.target.type:
            warnings.append(
                f"Source ({job.source.type.value}) and target ({job.target.type.value}) engines differ; "
                "values are copied as read from the source"
            )
        if job.content != SyncContent.DATA:
            warnings.append(STRUCTURE_PASSTHROUGH_WARNING)
        if job.scope == SyncScope.SELECTED:
            unmatched = len(set(job.selected_keys or []) - {d.primary_key_string for d in job.diffs})
            if unmatched:
                warnings.append(f"{unmatched} selected key(s) do not match any row difference")
        target_only = sum(1 for d in in_scope if d.status == RowDiffStatus.TARGET_ONLY)
        if target_only:
            warnings.append(f"{target_only} row(s) exist only in the target and will not be deleted")

        blocked_reason = None
        if failed:
            blocked_reason = error_message(failed[0].operation, failed[0].diff.primary_key_string, failed[0].error)
        elif not planned:
            blocked_reason = "No rows to synchronize"

        return SyncPreview(
            **counts.model_dump(),
            statements=_render_statements(planned, engine),
            warnings=warnings,
            can_execute=blocked_reason is None,
            blocked_reason=blocked_reason,
        )

    async def execute(self, job: SyncJob) -> SyncOutcome:
        """
        执行同步

        非事务模式下逐行独立提交，单行失败不影响其余行；
        事务模式下任一行失败即整体回滚。

        参数:
            job: 同步任务

        返回:
            SyncOutcome（从不抛出引擎错误）
        """
        start = time.perf_counter()
        atomic = self._is_atomic(job)
        outcome = SyncOutcome(content=job.content, atomic=atomic)

        in_scope = filter_diffs(job.diffs, job.scope, job.selected_keys)
        planned, failed = plan_changes(job.table_name, job.primary_key_columns, in_scope, job.target.type)

        logger.info(
            "sync_started",
            source=job.source.name,
            target=job.target.name,
            table=job.table_name,
            candidates=len(planned) + len(failed),
            atomic=atomic,
            content=job.content.value,
        )

        for item in failed:
            outcome.add_error(error_message(item.operation, item.diff.primary_key_string, item.error))

        if atomic:
            if failed:
                outcome.add_error(ROLLBACK_MESSAGE)
            elif planned:
                await self._execute_atomic(job, planned, outcome)
        else:
            await self._execute_independent(job, planned, outcome)

        outcome.execution_time = round((time.perf_counter() - start) * 1000, 3)
        logger.info(
            "sync_completed",
            table=job.table_name,
            target=job.target.name,
            inserted=outcome.inserted_count,
            updated=outcome.updated_count,
            errors=len(outcome.errors),
            rolled_back=outcome.rolled_back,
            execution_time=outcome.execution_time,
        )
        return outcome

    async def _execute_independent(self, job: SyncJob, planned: List[PlannedChange], outcome: SyncOutcome) -> None:
        concurrency = self._concurrency(job)

        if concurrency <= 1:
            results = []
            for change in planned:
                results.append(await self._apply(job, change))
        else:
            semaphore = asyncio.Semaphore(concurrency)

            async def run(change: PlannedChange) -> TabularResult:
                async with semaphore:
                    return await self._apply(job, change)

            results = await asyncio.gather(*(run(change) for change in planned))

        # 按差异列表顺序汇总
        for change, result in zip(planned, results):
            self._record(outcome, change, result)

        for change, result in zip(planned, results):
            if result.success:
                await self._notify(job, change)

    async def _apply(self, job: SyncJob, change: PlannedChange) -> TabularResult:
        sql, params = change.statement
        return await self.gateway.execute(job.target, sql, params=params)

    async def _execute_atomic(self, job: SyncJob, planned: List[PlannedChange], outcome: SyncOutcome) -> None:
        try:
            async with self.gateway.session(job.target) as session:
                if await self._apply_in_session(session, planned, outcome):
                    await session.commit()
                else:
                    await session.rollback()
        except Exception as e:
            logger.warning("sync_transaction_failed", table=job.table_name, target=job.target.name, error=str(e))
            outcome.add_error(f"Transaction error: {e}")
            outcome.inserted_count = 0
            outcome.updated_count = 0

        if not outcome.success:
            outcome.inserted_count = 0
            outcome.updated_count = 0
            outcome.rolled_back = True
            outcome.add_error(ROLLBACK_MESSAGE)
            return

        for change in planned:
            await self._notify(job, change)

    async def _apply_in_session(
        self,
        session: GatewaySession,
        planned: List[PlannedChange],
        outcome: SyncOutcome,
    ) -> bool:
        for change in planned:
            sql, params = change.statement
            result = await session.execute(sql, params)
            self._record(outcome, change, result)
            if not result.success:
                return False
        return True

    def _record(self, outcome: SyncOutcome, change: PlannedChange, result: TabularResult) -> None:
        if not result.success:
            logger.warning("sync_row_failed", operation=change.operation.value, error=result.error)
            outcome.add_error(error_message(change.operation, change.diff.primary_key_string, result.error))
        elif change.operation == ChangeOperation.INSERT:
            outcome.inserted_count += 1
        else:
            outcome.updated_count += 1

    async def _notify(self, job: SyncJob, change: PlannedChange) -> None:
        await self.audit.notify(DataChange(
            connection_name=job.target.name,
            table_name=job.table_name,
            operation=change.operation,
            row_identifier=change.diff.primary_key,
            old_values=change.old_values,
            new_values=change.new_values,
            user_id=job.user_id,
        ))
