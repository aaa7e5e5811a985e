"""
同步执行器单元测试 (unittest)
"""

import asyncio
import unittest
from contextlib import asynccontextmanager
from typing import List
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock

from db_reconcile.collaborators.audit import AuditDispatcher, MemoryAuditSink
from db_reconcile.core.sync_executor import (
    MISSING_SOURCE_ROW,
    ROLLBACK_MESSAGE,
    STRUCTURE_PASSTHROUGH_WARNING,
    SyncExecutor,
    count_sync_operations,
    error_message,
    filter_diffs,
    generate_sync_sql,
    plan_changes,
)
from db_reconcile.models.connection import EngineKind
from db_reconcile.models.diff import RowDiffStatus
from db_reconcile.models.result import TabularResult
from db_reconcile.models.settings import SyncSettings
from db_reconcile.models.sync import ChangeOperation, SyncContent, SyncJob, SyncScope

from conftest import create_mock_gateway, make_row_diff, mysql_connection, sqlite_connection


def sample_diffs():
    """一行仅源端、一行不同、一行仅目标端、一行一致"""
    return [
        make_row_diff(
            {"id": 1},
            RowDiffStatus.SOURCE_ONLY,
            source_row={"id": 1, "name": "a", "email": "a@x.com"},
        ),
        make_row_diff(
            {"id": 2},
            RowDiffStatus.DIFFERENT,
            source_row={"id": 2, "name": "b2", "email": "b@x.com"},
            target_row={"id": 2, "name": "b", "email": "b@x.com"},
            cell_diffs=[{"column": "name", "source_value": "b2", "target_value": "b"}],
        ),
        make_row_diff(
            {"id": 3},
            RowDiffStatus.TARGET_ONLY,
            target_row={"id": 3, "name": "c", "email": None},
        ),
        make_row_diff(
            {"id": 4},
            RowDiffStatus.MATCH,
            source_row={"id": 4, "name": "d", "email": None},
            target_row={"id": 4, "name": "d", "email": None},
        ),
    ]


def make_job(**kwargs) -> SyncJob:
    data = {
        "source": sqlite_connection("/tmp/source.db", "source"),
        "target": sqlite_connection("/tmp/target.db", "target"),
        "table_name": "users",
        "primary_key_columns": ["id"],
        "diffs": sample_diffs(),
    }
    data.update(kwargs)
    return SyncJob(**data)


class FakeSession:
    """按给定结果依次返回的会话"""

    def __init__(self, results: List[TabularResult]):
        self.results = list(results)
        self.executed = []
        self.committed = False
        self.rolled_back = False

    async def execute(self, sql, params=None, limit=None):
        self.executed.append((sql, params))
        return self.results.pop(0)

    async def commit(self):
        self.committed = True

    async def rollback(self):
        self.rolled_back = True


def attach_session(gateway, session: FakeSession):
    """给 mock 网关挂上事务会话"""

    @asynccontextmanager
    async def fake_session(connection, timeout=None):
        yield session

    gateway.session = fake_session
    return gateway


class TestPlanning(unittest.TestCase):
    """语句生成测试"""

    def test_count_operations(self):
        """测试操作计数（删除恒为 0）"""
        counts = count_sync_operations(sample_diffs(), SyncScope.TABLE)
        self.assertEqual((counts.inserts, counts.updates, counts.deletes), (1, 1, 0))

    def test_count_selected(self):
        """测试选中范围计数"""
        counts = count_sync_operations(sample_diffs(), SyncScope.SELECTED, ['[["id",2]]'])
        self.assertEqual((counts.inserts, counts.updates), (0, 1))

    def test_filter_keeps_order(self):
        """测试过滤保持原顺序"""
        keys = ['[["id",4]]', '[["id",1]]']
        filtered = filter_diffs(sample_diffs(), SyncScope.SELECTED, keys)
        self.assertEqual([d.primary_key["id"] for d in filtered], [1, 4])

    def test_plan_changes(self):
        """测试只为 source-only 和 different 生成语句"""
        planned, failed = plan_changes("users", ["id"], sample_diffs(), EngineKind.SQLITE)

        self.assertEqual(failed, [])
        self.assertEqual([c.operation for c in planned], [ChangeOperation.INSERT, ChangeOperation.UPDATE])

        insert_sql, insert_params = planned[0].statement
        self.assertEqual(insert_sql, 'INSERT INTO "users" ("id", "name", "email") VALUES (?, ?, ?)')
        self.assertEqual(insert_params, [1, "a", "a@x.com"])
        self.assertIsNone(planned[0].old_values)

        update_sql, update_params = planned[1].statement
        self.assertEqual(update_sql, 'UPDATE "users" SET "name" = ? WHERE "id" = ?')
        self.assertEqual(update_params, ["b2", 2])
        self.assertEqual(planned[1].new_values, {"name": "b2"})
        self.assertEqual(planned[1].old_values["name"], "b")

    def test_plan_mysql_placeholders(self):
        """测试 MySQL 使用反引号和 %s"""
        planned, _ = plan_changes("users", ["id"], sample_diffs()[:1], EngineKind.MYSQL)
        self.assertEqual(planned[0].statement[0], "INSERT INTO `users` (`id`, `name`, `email`) VALUES (%s, %s, %s)")

    def test_plan_invalid_column(self):
        """测试非法列名成为逐行错误"""
        diffs = [make_row_diff({"id": 9}, RowDiffStatus.SOURCE_ONLY, source_row={"id": 9, "bad name": 1})]
        planned, failed = plan_changes("users", ["id"], diffs, EngineKind.SQLITE)
        self.assertEqual(planned, [])
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].operation, ChangeOperation.INSERT)

    def test_source_only_without_row_is_error(self):
        """测试缺少源端行的 source-only 差异成为逐行错误"""
        diffs = [make_row_diff({"id": 5}, RowDiffStatus.SOURCE_ONLY)]
        planned, failed = plan_changes("users", ["id"], diffs, EngineKind.SQLITE)
        self.assertEqual(planned, [])
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].operation, ChangeOperation.INSERT)
        self.assertEqual(failed[0].error, MISSING_SOURCE_ROW)

    def test_update_from_cell_diffs_only(self):
        """测试不携带原始行的 different 差异仍按 cell_diffs 生成 UPDATE"""
        diffs = [make_row_diff(
            {"id": 2},
            RowDiffStatus.DIFFERENT,
            cell_diffs=[{"column": "name", "source_value": "b2", "target_value": "b"}],
        )]
        planned, failed = plan_changes("users", ["id"], diffs, EngineKind.SQLITE)

        self.assertEqual(failed, [])
        self.assertEqual(planned[0].statement, ('UPDATE "users" SET "name" = ? WHERE "id" = ?', ["b2", 2]))
        self.assertIsNone(planned[0].old_values)

    def test_error_message(self):
        """测试逐行错误信息格式"""
        self.assertEqual(
            error_message(ChangeOperation.UPDATE, '[["id",2]]', "locked"),
            'Update error for PK [["id",2]]: locked',
        )

    def test_generate_sync_sql(self):
        """测试预览 SQL 内联参数"""
        statements = generate_sync_sql("users", ["id"], sample_diffs(), SyncScope.TABLE, None, EngineKind.SQLITE)
        self.assertEqual(statements, [
            '-- INSERT for PK: [["id",1]]',
            "INSERT INTO \"users\" (\"id\", \"name\", \"email\") VALUES (1, 'a', 'a@x.com');",
            '-- UPDATE for PK: [["id",2]]',
            "UPDATE \"users\" SET \"name\" = 'b2' WHERE \"id\" = 2;",
        ])


class TestPreview(unittest.TestCase):
    """同步预览测试"""

    def setUp(self):
        self.executor = SyncExecutor(create_mock_gateway())

    def test_preview_counts_and_statements(self):
        """测试预览统计和语句"""
        preview = self.executor.preview(make_job())
        self.assertEqual((preview.inserts, preview.updates, preview.deletes), (1, 1, 0))
        self.assertEqual(len(preview.statements), 4)
        self.assertTrue(preview.can_execute)
        self.assertTrue(any("will not be deleted" in w for w in preview.warnings))

    def test_preview_nothing_to_do(self):
        """测试没有可同步的行"""
        preview = self.executor.preview(make_job(diffs=sample_diffs()[2:]))
        self.assertFalse(preview.can_execute)
        self.assertEqual(preview.blocked_reason, "No rows to synchronize")

    def test_preview_cross_engine_warning(self):
        """测试跨引擎警告"""
        preview = self.executor.preview(make_job(target=mysql_connection("target")))
        self.assertTrue(any("engines differ" in w for w in preview.warnings))
        self.assertTrue(preview.statements[1].startswith("INSERT INTO `users`"))

    def test_preview_structure_passthrough(self):
        """测试结构同步只给出警告"""
        preview = self.executor.preview(make_job(content=SyncContent.BOTH))
        self.assertIn(STRUCTURE_PASSTHROUGH_WARNING, preview.warnings)

    def test_preview_unmatched_keys(self):
        """测试未匹配的选中主键"""
        job = make_job(scope=SyncScope.SELECTED, selected_keys=['[["id",1]]', '[["id",99]]'])
        preview = self.executor.preview(job)
        self.assertEqual(preview.inserts, 1)
        self.assertTrue(any("1 selected key(s)" in w for w in preview.warnings))

    def test_preview_blocked_by_invalid_column(self):
        """测试非法列名阻止执行"""
        diffs = [make_row_diff({"id": 9}, RowDiffStatus.SOURCE_ONLY, source_row={"id": 9, "bad name": 1})]
        preview = self.executor.preview(make_job(diffs=diffs))
        self.assertFalse(preview.can_execute)
        self.assertTrue(preview.blocked_reason.startswith('Insert error for PK [["id",9]]'))


class TestExecuteIndependent(IsolatedAsyncioTestCase):
    """非事务同步测试"""

    async def test_success_and_audit(self):
        """测试成功执行并发出审计"""
        gateway = create_mock_gateway()
        sink = MemoryAuditSink()
        executor = SyncExecutor(gateway, audit=AuditDispatcher([sink]))

        outcome = await executor.execute(make_job(user_id="u-1"))

        self.assertTrue(outcome.success)
        self.assertEqual((outcome.inserted_count, outcome.updated_count, outcome.deleted_count), (1, 1, 0))
        self.assertEqual(gateway.execute.await_count, 2)
        self.assertEqual([c.operation for c in sink.changes], [ChangeOperation.INSERT, ChangeOperation.UPDATE])
        self.assertEqual(sink.changes[0].row_identifier, {"id": 1})
        self.assertEqual(sink.changes[0].user_id, "u-1")
        self.assertEqual(sink.changes[1].new_values, {"name": "b2"})
        self.assertEqual(sink.changes[1].connection_name, "target")

    async def test_row_errors_isolated(self):
        """测试单行失败不影响其他行"""
        gateway = create_mock_gateway([
            TabularResult.failure("UNIQUE constraint failed: users.id"),
            TabularResult.mutation(1),
        ])
        sink = MemoryAuditSink()
        executor = SyncExecutor(gateway, audit=AuditDispatcher([sink]))

        outcome = await executor.execute(make_job())

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.inserted_count, 0)
        self.assertEqual(outcome.updated_count, 1)
        self.assertEqual(outcome.errors, ['Insert error for PK [["id",1]]: UNIQUE constraint failed: users.id'])
        self.assertEqual([c.operation for c in sink.changes], [ChangeOperation.UPDATE])

    async def test_missing_source_row_reported(self):
        """测试缺少源端行时记录错误，其余行照常执行"""
        diffs = [
            make_row_diff({"id": 7}, RowDiffStatus.SOURCE_ONLY),
            make_row_diff(
                {"id": 2},
                RowDiffStatus.DIFFERENT,
                cell_diffs=[{"column": "name", "source_value": "b2", "target_value": "b"}],
            ),
        ]
        gateway = create_mock_gateway()
        executor = SyncExecutor(gateway)

        outcome = await executor.execute(make_job(diffs=diffs))

        self.assertFalse(outcome.success)
        self.assertEqual((outcome.inserted_count, outcome.updated_count), (0, 1))
        self.assertEqual(outcome.errors, [error_message(ChangeOperation.INSERT, '[["id",7]]', MISSING_SOURCE_ROW)])
        self.assertEqual(gateway.execute.await_count, 1)

    async def test_selected_scope(self):
        """测试只同步选中行"""
        gateway = create_mock_gateway()
        executor = SyncExecutor(gateway, audit=AuditDispatcher())

        outcome = await executor.execute(make_job(scope=SyncScope.SELECTED, selected_keys=[{"id": 2}]))

        self.assertEqual((outcome.inserted_count, outcome.updated_count), (0, 1))
        sql = gateway.execute.await_args.args[1]
        self.assertTrue(sql.startswith('UPDATE "users"'))

    async def test_concurrency_keeps_order(self):
        """测试并发执行时结果按差异顺序汇总"""
        diffs = [
            make_row_diff({"id": i}, RowDiffStatus.SOURCE_ONLY, source_row={"id": i, "name": str(i)})
            for i in range(1, 6)
        ]

        async def slow_execute(connection, sql, params=None, **kwargs):
            await asyncio.sleep(0.01 * (6 - params[0]))
            if params[0] in (2, 4):
                return TabularResult.failure(f"failed {params[0]}")
            return TabularResult.mutation(1)

        gateway = create_mock_gateway()
        gateway.execute = AsyncMock(side_effect=slow_execute)
        executor = SyncExecutor(gateway, audit=AuditDispatcher())

        outcome = await executor.execute(make_job(diffs=diffs, concurrency=5))

        self.assertEqual(outcome.inserted_count, 3)
        self.assertEqual(outcome.errors, [
            'Insert error for PK [["id",2]]: failed 2',
            'Insert error for PK [["id",4]]: failed 4',
        ])

    async def test_target_only_never_deleted(self):
        """测试仅目标端的行不会被删除"""
        gateway = create_mock_gateway()
        executor = SyncExecutor(gateway, audit=AuditDispatcher())

        outcome = await executor.execute(make_job(diffs=sample_diffs()[2:]))

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.deleted_count, 0)
        gateway.execute.assert_not_awaited()

    async def test_settings_default_atomic(self):
        """测试任务未指定时使用配置"""
        gateway = attach_session(create_mock_gateway(), FakeSession([TabularResult.mutation(1)] * 2))
        executor = SyncExecutor(gateway, settings=SyncSettings(atomic=True), audit=AuditDispatcher())

        outcome = await executor.execute(make_job())

        self.assertTrue(outcome.atomic)
        gateway.execute.assert_not_awaited()


class TestExecuteAtomic(IsolatedAsyncioTestCase):
    """事务同步测试"""

    async def test_commit(self):
        """测试全部成功后提交"""
        session = FakeSession([TabularResult.mutation(1), TabularResult.mutation(1)])
        gateway = attach_session(create_mock_gateway(), session)
        sink = MemoryAuditSink()
        executor = SyncExecutor(gateway, audit=AuditDispatcher([sink]))

        outcome = await executor.execute(make_job(atomic=True))

        self.assertTrue(outcome.success)
        self.assertTrue(session.committed)
        self.assertFalse(session.rolled_back)
        self.assertEqual((outcome.inserted_count, outcome.updated_count), (1, 1))
        self.assertEqual(len(sink.changes), 2)

    async def test_rollback_on_failure(self):
        """测试任一行失败整体回滚，不发出审计"""
        session = FakeSession([TabularResult.mutation(1), TabularResult.failure("deadlock")])
        gateway = attach_session(create_mock_gateway(), session)
        sink = MemoryAuditSink()
        executor = SyncExecutor(gateway, audit=AuditDispatcher([sink]))

        outcome = await executor.execute(make_job(atomic=True))

        self.assertFalse(outcome.success)
        self.assertTrue(outcome.rolled_back)
        self.assertTrue(session.rolled_back)
        self.assertFalse(session.committed)
        self.assertEqual((outcome.inserted_count, outcome.updated_count), (0, 0))
        self.assertIn('Update error for PK [["id",2]]: deadlock', outcome.errors)
        self.assertEqual(outcome.errors[-1], ROLLBACK_MESSAGE)
        self.assertEqual(sink.changes, [])

    async def test_commit_failure(self):
        """测试提交失败"""
        session = FakeSession([TabularResult.mutation(1), TabularResult.mutation(1)])
        session.commit = AsyncMock(side_effect=RuntimeError("disk full"))
        gateway = attach_session(create_mock_gateway(), session)
        executor = SyncExecutor(gateway, audit=AuditDispatcher())

        outcome = await executor.execute(make_job(atomic=True))

        self.assertFalse(outcome.success)
        self.assertTrue(outcome.rolled_back)
        self.assertIn("Transaction error: disk full", outcome.errors)
        self.assertEqual(outcome.inserted_count, 0)

    async def test_plan_error_blocks_transaction(self):
        """测试生成语句失败时不开启事务"""
        diffs = [make_row_diff({"id": 9}, RowDiffStatus.SOURCE_ONLY, source_row={"id": 9, "bad name": 1})]
        session = FakeSession([])
        gateway = attach_session(create_mock_gateway(), session)
        executor = SyncExecutor(gateway, audit=AuditDispatcher())

        outcome = await executor.execute(make_job(diffs=diffs, atomic=True))

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.errors[-1], ROLLBACK_MESSAGE)
        self.assertEqual(session.executed, [])


if __name__ == "__main__":
    unittest.main()
