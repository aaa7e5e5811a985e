"""
请求服务单元测试 (unittest)
"""

import os
import unittest
from unittest import IsolatedAsyncioTestCase, mock
from unittest.mock import AsyncMock, MagicMock

from db_reconcile.collaborators.audit import AuditDispatcher, MemoryAuditSink
from db_reconcile.collaborators.credentials import EnvCredentialStore
from db_reconcile.core.service import ReconcileService
from db_reconcile.errors import AccessDeniedError, ComparisonFailedError, ConfirmationRequiredError
from db_reconcile.models.diff import RowDiffStatus, TableComparisonResult
from db_reconcile.models.permission import PermissionDescriptor
from db_reconcile.models.result import PaginatedResult, TableInfo, TabularResult
from db_reconcile.models.statement import DangerLevel
from db_reconcile.models.sync import ChangeOperation, SyncOutcome, SyncScope
from db_reconcile.models.settings import ReconcileConfig

from conftest import create_mock_gateway, make_row_diff, mysql_connection

READER = PermissionDescriptor(can_view=True, can_edit=False)
EDITOR = PermissionDescriptor(can_view=True, can_edit=True)


def make_service(gateway=None, sink=None, **kwargs) -> ReconcileService:
    return ReconcileService(
        gateway or create_mock_gateway(),
        audit=AuditDispatcher([sink] if sink else []),
        introspector=MagicMock(),
        **kwargs,
    )


class TestAccessAndConfirmation(IsolatedAsyncioTestCase):
    """访问检查与危险确认测试"""

    async def test_denied_before_io(self):
        """测试访问拒绝发生在任何 I/O 之前"""
        gateway = create_mock_gateway()
        service = make_service(gateway)

        with self.assertRaises(AccessDeniedError) as ctx:
            await service.run_paginated_query(mysql_connection(), "DELETE FROM users WHERE id = 1", READER)

        self.assertEqual(ctx.exception.violation_type, "write")
        gateway.execute_paginated.assert_not_awaited()
        gateway.execute.assert_not_awaited()

    async def test_no_permission(self):
        """测试未分配权限"""
        service = make_service()
        with self.assertRaises(AccessDeniedError) as ctx:
            await service.execute_statement(mysql_connection(), "SELECT 1", None)
        self.assertIsNone(ctx.exception.violation_type)

    async def test_paginated_query_passthrough(self):
        """测试分页参数透传给网关"""
        gateway = create_mock_gateway()
        gateway.execute_paginated = AsyncMock(return_value=PaginatedResult(data=[{"id": 1}]))
        service = make_service(gateway)

        result = await service.run_paginated_query(
            mysql_connection(), "SELECT id FROM users", READER, cursor="abc", page_size=10, include_total=True,
        )

        self.assertEqual(result.data, [{"id": 1}])
        kwargs = gateway.execute_paginated.await_args.kwargs
        self.assertEqual((kwargs["cursor"], kwargs["page_size"], kwargs["include_total"]), ("abc", 10, True))

    def test_critical_requires_object_name(self):
        """测试 critical 语句需要输入对象名"""
        service = make_service()
        with self.assertRaises(ConfirmationRequiredError):
            service.require_confirmation("DROP TABLE users")
        with self.assertRaises(ConfirmationRequiredError):
            service.require_confirmation("DROP TABLE users", confirmation="orders", acknowledged=True)
        classification = service.require_confirmation("DROP TABLE users", confirmation="users")
        self.assertEqual(classification.level, DangerLevel.CRITICAL)

    def test_warning_requires_acknowledgement(self):
        """测试 warning 语句需要确认"""
        service = make_service()
        with self.assertRaises(ConfirmationRequiredError) as ctx:
            service.require_confirmation("DELETE FROM logs")
        self.assertFalse(ctx.exception.classification.requires_typed_confirmation)
        self.assertTrue(service.require_confirmation("DELETE FROM logs", acknowledged=True).dangerous)

    def test_safe_statement(self):
        """测试安全语句无需确认"""
        service = make_service()
        self.assertFalse(service.require_confirmation("UPDATE users SET name = 'a' WHERE id = 1").dangerous)

    async def test_confirmation_checked_before_io(self):
        """测试未确认时不执行"""
        gateway = create_mock_gateway()
        service = make_service(gateway)
        with self.assertRaises(ConfirmationRequiredError):
            await service.execute_statement(mysql_connection(), "TRUNCATE TABLE logs", EDITOR)
        gateway.execute.assert_not_awaited()


class TestExecuteStatement(IsolatedAsyncioTestCase):
    """单条语句执行测试"""

    async def test_mutation_audited(self):
        """测试写操作成功后发出审计"""
        sink = MemoryAuditSink()
        gateway = create_mock_gateway([TabularResult.mutation(2)])
        service = make_service(gateway, sink)

        result = await service.execute_statement(
            mysql_connection(), "UPDATE users SET name = 'a' WHERE id IN (1, 2)", EDITOR, user_id="u-7",
        )

        self.assertEqual(result.affected_rows, 2)
        self.assertEqual(len(sink.changes), 1)
        change = sink.changes[0]
        self.assertEqual((change.table_name, change.operation, change.user_id), ("users", ChangeOperation.UPDATE, "u-7"))
        self.assertEqual(change.connection_name, "prod")

    async def test_no_audit_when_nothing_changed(self):
        """测试影响 0 行或读操作不发出审计"""
        sink = MemoryAuditSink()
        gateway = create_mock_gateway([TabularResult.mutation(0), TabularResult()])
        service = make_service(gateway, sink)

        await service.execute_statement(mysql_connection(), "DELETE FROM users WHERE id = 5", EDITOR)
        await service.execute_statement(mysql_connection(), "SELECT * FROM users", EDITOR)

        self.assertEqual(sink.changes, [])

    async def test_engine_error_inline(self):
        """测试引擎错误内联返回"""
        sink = MemoryAuditSink()
        gateway = create_mock_gateway([TabularResult.failure("Table 'shop.nope' doesn't exist")])
        service = make_service(gateway, sink)

        result = await service.execute_statement(mysql_connection(), "INSERT INTO nope (a) VALUES (1)", EDITOR)

        self.assertFalse(result.success)
        self.assertEqual(sink.changes, [])

    async def test_credentials_resolved(self):
        """测试执行前解析凭据"""
        gateway = create_mock_gateway([TabularResult()])
        service = make_service(gateway, credentials=EnvCredentialStore())

        with mock.patch.dict(os.environ, {"DB_RECONCILE_PROD_PASSWORD": "from-env"}, clear=False):
            await service.execute_statement(mysql_connection(), "SELECT 1", READER)

        connection = gateway.execute.await_args.args[0]
        self.assertEqual(connection.password, "from-env")


class TestCompareAndSync(IsolatedAsyncioTestCase):
    """比对与同步入口测试"""

    async def test_prepare_sync(self):
        """测试由比对结果生成同步任务"""
        service = make_service()
        diffs = [make_row_diff({"id": 1}, RowDiffStatus.SOURCE_ONLY, source_row={"id": 1})]
        service.comparator.compare = AsyncMock(return_value=TableComparisonResult(
            table_name="Users",
            primary_key_columns=["id"],
            diffs=diffs,
        ))

        job = await service.prepare_sync(
            mysql_connection("a"), mysql_connection("b"), "users",
            scope=SyncScope.SELECTED, selected_keys=[{"id": 1}], atomic=True,
        )

        self.assertEqual(job.table_name, "Users")
        self.assertEqual(job.selected_keys, ['[["id",1]]'])
        self.assertTrue(job.atomic)
        self.assertEqual(service.preview_sync(job).inserts, 1)

    async def test_prepare_sync_comparison_failed(self):
        """测试比对失败时不生成任务"""
        service = make_service()
        service.comparator.compare = AsyncMock(return_value=TableComparisonResult(
            table_name="users",
            error="Target query failed: no such table: users",
        ))

        with self.assertRaises(ComparisonFailedError):
            await service.prepare_sync(mysql_connection("a"), mysql_connection("b"), "users")

    async def test_sync_resolves_credentials(self):
        """测试同步前解析两侧凭据"""
        service = make_service(credentials=EnvCredentialStore())
        service.comparator.compare = AsyncMock(return_value=TableComparisonResult(
            table_name="users", primary_key_columns=["id"],
        ))
        service.executor.execute = AsyncMock(return_value=SyncOutcome())
        job = await service.prepare_sync(mysql_connection("a"), mysql_connection("b"), "users")

        with mock.patch.dict(os.environ, {"DB_RECONCILE_B_PASSWORD": "target-secret"}, clear=False):
            await service.sync(job)

        resolved = service.executor.execute.await_args.args[0]
        self.assertEqual(resolved.target.password, "target-secret")
        self.assertEqual(job.target.password, "test")

    async def test_list_tables_filtered(self):
        """测试表列表按权限过滤"""
        service = make_service()
        service.introspector.list_tables = AsyncMock(return_value=[
            TableInfo(name="orders"), TableInfo(name="Users"), TableInfo(name="secrets"),
        ])
        permission = PermissionDescriptor(can_view=True, allowed_tables={"orders", "users"})

        self.assertEqual(await service.list_tables(mysql_connection(), permission), ["orders", "Users"])
        self.assertEqual(await service.list_tables(mysql_connection(), None), [])


class TestFromConfig(unittest.TestCase):
    """从配置构建服务测试"""

    def test_from_config(self):
        """测试配置传递到网关与同步器"""
        config = ReconcileConfig(gateway={"max_rows": 50}, sync={"comparison_limit": 10, "concurrency": 4})
        service = ReconcileService.from_config(config)

        self.assertEqual(service.gateway.settings.max_rows, 50)
        self.assertEqual(service.comparator.settings.comparison_limit, 10)
        self.assertEqual(service.executor.settings.concurrency, 4)


if __name__ == "__main__":
    unittest.main()
