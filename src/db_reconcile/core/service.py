"""
请求服务 - 请求处理层调用核心的入口

控制流: 凭据解析 -> 访问策略 -> 语句分类 -> 查询网关 / 比对 / 同步
"""

from typing import List, Optional, Sequence, Union

from db_reconcile.collaborators.audit import AuditDispatcher, default_audit_dispatcher
from db_reconcile.collaborators.credentials import CredentialStore, PlainCredentialStore
from db_reconcile.collaborators.schema import GatewaySchemaIntrospector, SchemaIntrospector
from db_reconcile.core import access_policy, classifier
from db_reconcile.core.comparator import TableComparator
from db_reconcile.core.gateway import QueryGateway
from db_reconcile.core.sync_executor import SyncExecutor
from db_reconcile.errors import AccessDeniedError, ComparisonFailedError, ConfirmationRequiredError
from db_reconcile.models.connection import ConnectionDescriptor
from db_reconcile.models.diff import TableComparisonResult
from db_reconcile.models.permission import AccessVerdict, PermissionDescriptor
from db_reconcile.models.result import PaginatedResult, TabularResult
from db_reconcile.models.settings import ReconcileConfig, SyncSettings
from db_reconcile.models.statement import DangerLevel, StatementClassification
from db_reconcile.models.sync import (
    ChangeOperation,
    DataChange,
    SyncContent,
    SyncJob,
    SyncOutcome,
    SyncPreview,
    SyncScope,
)
from db_reconcile.utils.logging import get_logger
from db_reconcile.utils.sql_parser import extract_table_references, leading_keyword

logger = get_logger(__name__)

# 写语句首关键字 -> 审计操作类型
_AUDIT_OPERATIONS = {
    "INSERT": ChangeOperation.INSERT,
    "REPLACE": ChangeOperation.INSERT,
    "UPDATE": ChangeOperation.UPDATE,
    "DELETE": ChangeOperation.DELETE,
}


class ReconcileService:
    """
    请求服务

    组合凭据存储、访问策略、语句分类、查询网关、表比对和同步执行器。
    访问拒绝和确认要求在任何 I/O 之前以异常抛出；引擎错误内联在结果中返回。

    示例:
        ```python
        service = ReconcileService.from_config(load_config("config.yaml"))
        page = await service.run_paginated_query(connection, "SELECT * FROM orders", permission)
        ```
    """

    def __init__(
        self,
        gateway: Optional[QueryGateway] = None,
        credentials: Optional[CredentialStore] = None,
        audit: Optional[AuditDispatcher] = None,
        introspector: Optional[SchemaIntrospector] = None,
        sync_settings: Optional[SyncSettings] = None,
    ):
        self.gateway = gateway or QueryGateway()
        self.credentials = credentials or PlainCredentialStore()
        self.audit = audit or default_audit_dispatcher()
        self.introspector = introspector or GatewaySchemaIntrospector(self.gateway)
        self.sync_settings = sync_settings or SyncSettings()
        self.comparator = TableComparator(self.gateway, self.introspector, self.sync_settings)
        self.executor = SyncExecutor(self.gateway, self.sync_settings, self.audit)

    @classmethod
    def from_config(
        cls,
        config: ReconcileConfig,
        credentials: Optional[CredentialStore] = None,
        audit: Optional[AuditDispatcher] = None,
    ) -> "ReconcileService":
        """从配置创建服务"""
        gateway = QueryGateway(config.gateway, config.pagination)
        return cls(gateway, credentials=credentials, audit=audit, sync_settings=config.sync)

    async def _resolve(self, connection: ConnectionDescriptor) -> ConnectionDescriptor:
        return await self.credentials.resolve(connection)

    def check_access(self, sql: str, permission: Optional[PermissionDescriptor]) -> AccessVerdict:
        """
        访问检查，拒绝时抛出 AccessDeniedError

        异常:
            AccessDeniedError: 携带原因和违规类型
        """
        verdict = access_policy.evaluate(sql, permission)
        if not verdict.allowed:
            violation = verdict.violation_type.value if verdict.violation_type else None
            raise AccessDeniedError(verdict.reason or "Access denied", violation)
        return verdict

    async def run_paginated_query(
        self,
        connection: ConnectionDescriptor,
        sql: str,
        permission: Optional[PermissionDescriptor],
        cursor: Optional[str] = None,
        page_size: Optional[int] = None,
        include_total: bool = False,
    ) -> PaginatedResult:
        """
        访问检查后分页执行查询

        异常:
            AccessDeniedError: 访问策略拒绝
        """
        self.check_access(sql, permission)
        resolved = await self._resolve(connection)
        return await self.gateway.execute_paginated(
            resolved,
            sql,
            cursor=cursor,
            page_size=page_size,
            include_total=include_total,
        )

    def require_confirmation(
        self,
        sql: str,
        confirmation: Optional[str] = None,
        acknowledged: bool = False,
    ) -> StatementClassification:
        """
        危险语句确认

        critical 语句要求 confirmation 与受影响对象名一致；
        warning 语句要求 acknowledged 为 True。

        异常:
            ConfirmationRequiredError: 未满足确认要求
        """
        classification = classifier.classify(sql)
        if classification.level == DangerLevel.CRITICAL:
            if confirmation is None or confirmation != classification.affected_object_name:
                raise ConfirmationRequiredError(classification)
        elif classification.level == DangerLevel.WARNING and not acknowledged:
            raise ConfirmationRequiredError(classification)
        return classification

    async def execute_statement(
        self,
        connection: ConnectionDescriptor,
        sql: str,
        permission: Optional[PermissionDescriptor],
        confirmation: Optional[str] = None,
        acknowledged: bool = False,
        user_id: Optional[str] = None,
    ) -> TabularResult:
        """
        执行单条语句（访问检查 + 危险确认）

        异常:
            AccessDeniedError: 访问策略拒绝
            ConfirmationRequiredError: 危险语句未确认
        """
        self.check_access(sql, permission)
        classification = self.require_confirmation(sql, confirmation, acknowledged)

        resolved = await self._resolve(connection)
        result = await self.gateway.execute(resolved, sql)

        operation = _AUDIT_OPERATIONS.get(leading_keyword(sql) or "")
        if operation is not None and result.success and result.affected_rows:
            tables = extract_table_references(sql)
            await self.audit.notify(DataChange(
                connection_name=connection.name,
                table_name=tables[0] if tables else "",
                operation=operation,
                user_id=user_id,
            ))

        if classification.dangerous:
            logger.info(
                "dangerous_statement_executed",
                connection=connection.name,
                kind=classification.kind.value if classification.kind else None,
                success=result.success,
            )
        return result

    async def compare(
        self,
        source: ConnectionDescriptor,
        target: ConnectionDescriptor,
        table_name: str,
    ) -> TableComparisonResult:
        """比对两个连接上的同名表"""
        resolved_source = await self._resolve(source)
        resolved_target = await self._resolve(target)
        return await self.comparator.compare(resolved_source, resolved_target, table_name)

    async def prepare_sync(
        self,
        source: ConnectionDescriptor,
        target: ConnectionDescriptor,
        table_name: str,
        scope: SyncScope = SyncScope.TABLE,
        content: SyncContent = SyncContent.DATA,
        selected_keys: Optional[Sequence[Union[str, dict]]] = None,
        user_id: Optional[str] = None,
        atomic: Optional[bool] = None,
        concurrency: Optional[int] = None,
    ) -> SyncJob:
        """
        重新比对并生成同步任务

        异常:
            ComparisonFailedError: 任一侧读取失败
        """
        comparison = await self.compare(source, target, table_name)
        if comparison.error is not None:
            raise ComparisonFailedError(comparison.error)

        return SyncJob(
            source=source,
            target=target,
            table_name=comparison.table_name,
            primary_key_columns=comparison.primary_key_columns,
            diffs=comparison.diffs,
            scope=scope,
            content=content,
            selected_keys=list(selected_keys) if selected_keys is not None else None,
            user_id=user_id,
            atomic=atomic,
            concurrency=concurrency,
        )

    def preview_sync(self, job: SyncJob) -> SyncPreview:
        """生成同步预览（不执行）"""
        return self.executor.preview(job)

    async def sync(self, job: SyncJob) -> SyncOutcome:
        """执行同步任务"""
        resolved = job.model_copy(update={
            "source": await self._resolve(job.source),
            "target": await self._resolve(job.target),
        })
        return await self.executor.execute(resolved)

    async def list_tables(
        self,
        connection: ConnectionDescriptor,
        permission: Optional[PermissionDescriptor],
    ) -> List[str]:
        """列出当前权限可见的表"""
        resolved = await self._resolve(connection)
        tables = await self.introspector.list_tables(resolved)
        return access_policy.filter_allowed_tables([t.name for t in tables], permission)
