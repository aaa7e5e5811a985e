"""
访问策略单元测试 (unittest)
"""

import unittest

from db_reconcile.core.access_policy import (
    NO_EDIT_REASON,
    NO_PERMISSION_REASON,
    NO_VIEW_REASON,
    evaluate,
    filter_allowed_columns,
    filter_allowed_tables,
)
from db_reconcile.models.permission import PermissionDescriptor, ViolationType


class TestEvaluate(unittest.TestCase):
    """访问检查测试"""

    def setUp(self):
        self.orders_only = PermissionDescriptor(
            can_view=True,
            can_edit=False,
            allowed_tables={"orders"},
            hidden_columns={},
        )

    def test_no_permission(self):
        """测试没有分配权限"""
        verdict = evaluate("SELECT 1", None)
        self.assertFalse(verdict.allowed)
        self.assertEqual(verdict.reason, NO_PERMISSION_REASON)

    def test_no_view_permission(self):
        """测试没有查看权限"""
        verdict = evaluate("SELECT * FROM orders", PermissionDescriptor(can_view=False, can_edit=True))
        self.assertFalse(verdict.allowed)
        self.assertEqual(verdict.reason, NO_VIEW_REASON)
        self.assertIsNone(verdict.violation_type)

    def test_write_without_edit(self):
        """测试只读用户执行 UPDATE"""
        verdict = evaluate("UPDATE orders SET total=0", self.orders_only)
        self.assertFalse(verdict.allowed)
        self.assertEqual(verdict.violation_type, ViolationType.WRITE)
        self.assertEqual(verdict.reason, NO_EDIT_REASON)

    def test_write_hidden_in_second_statement(self):
        """测试第二条语句是写操作"""
        verdict = evaluate("SELECT * FROM orders; DELETE FROM orders", self.orders_only)
        self.assertEqual(verdict.violation_type, ViolationType.WRITE)

    def test_table_not_allowed(self):
        """测试访问白名单外的表"""
        verdict = evaluate("SELECT * FROM customers", self.orders_only)
        self.assertFalse(verdict.allowed)
        self.assertEqual(verdict.violation_type, ViolationType.TABLE)
        self.assertIn("customers", verdict.reason)

    def test_join_table_not_allowed(self):
        """测试 JOIN 中的表也受白名单限制"""
        verdict = evaluate(
            "SELECT o.id FROM orders o JOIN customers c ON o.customer_id = c.id",
            self.orders_only,
        )
        self.assertEqual(verdict.violation_type, ViolationType.TABLE)

    def test_subquery_in_function_call_not_allowed(self):
        """测试函数参数中的子查询同样受白名单限制"""
        verdict = evaluate("SELECT ARRAY(SELECT ssn FROM customers)", self.orders_only)
        self.assertFalse(verdict.allowed)
        self.assertEqual(verdict.violation_type, ViolationType.TABLE)

        verdict = evaluate("SELECT id, to_json(SELECT ssn FROM customers) FROM orders", self.orders_only)
        self.assertFalse(verdict.allowed)
        self.assertIn("customers", verdict.reason)

    def test_extract_argument_allowed(self):
        """测试 EXTRACT(YEAR FROM col) 不被当作表"""
        self.assertTrue(evaluate("SELECT EXTRACT(YEAR FROM created_at) FROM orders", self.orders_only).allowed)

    def test_table_check_case_insensitive(self):
        """测试表名不区分大小写"""
        self.assertTrue(evaluate("SELECT id FROM ORDERS", self.orders_only).allowed)

    def test_unrestricted_tables(self):
        """测试 allowed_tables 为 None 时不限制"""
        permission = PermissionDescriptor(can_view=True)
        self.assertTrue(evaluate("SELECT * FROM anything", permission).allowed)

    def test_write_allowed_with_edit(self):
        """测试有写权限时允许写操作"""
        permission = PermissionDescriptor(can_view=True, can_edit=True, allowed_tables={"orders"})
        self.assertTrue(evaluate("UPDATE orders SET total = 0 WHERE id = 1", permission).allowed)

    def test_cte_name_is_not_a_table(self):
        """测试 CTE 名称不参与白名单检查"""
        verdict = evaluate(
            "WITH recent AS (SELECT id FROM orders) SELECT id FROM recent",
            self.orders_only,
        )
        self.assertTrue(verdict.allowed)


class TestHiddenColumns(unittest.TestCase):
    """隐藏列测试"""

    def setUp(self):
        self.permission = PermissionDescriptor(
            can_view=True,
            hidden_columns={"Customers": {"SSN"}},
        )

    def test_select_star_denied(self):
        """测试有隐藏列的表不能 SELECT *"""
        verdict = evaluate("SELECT * FROM customers", self.permission)
        self.assertFalse(verdict.allowed)
        self.assertEqual(verdict.violation_type, ViolationType.COLUMN)
        self.assertIn("specify columns explicitly", verdict.reason)

    def test_qualified_star_denied(self):
        """测试 c.* 也被拒绝"""
        verdict = evaluate(
            "SELECT c.* FROM customers c JOIN orders o ON o.customer_id = c.id",
            self.permission,
        )
        self.assertEqual(verdict.violation_type, ViolationType.COLUMN)

    def test_count_star_allowed(self):
        """测试 COUNT(*) 不算选择全部列"""
        self.assertTrue(evaluate("SELECT COUNT(*) FROM customers", self.permission).allowed)

    def test_hidden_column_in_select_list(self):
        """测试选择隐藏列"""
        verdict = evaluate("SELECT name, ssn FROM customers", self.permission)
        self.assertFalse(verdict.allowed)
        self.assertEqual(verdict.violation_type, ViolationType.COLUMN)
        self.assertEqual(verdict.reason, "You do not have access to column: customers.ssn")

    def test_hidden_column_in_where(self):
        """测试 WHERE 中引用隐藏列"""
        verdict = evaluate("SELECT name FROM customers WHERE ssn = '123'", self.permission)
        self.assertEqual(verdict.violation_type, ViolationType.COLUMN)

    def test_hidden_column_quoted_identifier(self):
        """测试引号标识符"""
        verdict = evaluate('SELECT "SSN" FROM customers', self.permission)
        self.assertEqual(verdict.violation_type, ViolationType.COLUMN)

    def test_ambiguous_column_matches_every_table(self):
        """测试归属不明的列视为属于所有表"""
        verdict = evaluate(
            "SELECT ssn FROM orders o JOIN customers c ON o.customer_id = c.id",
            self.permission,
        )
        self.assertEqual(verdict.violation_type, ViolationType.COLUMN)

    def test_column_qualified_with_other_table_allowed(self):
        """测试限定为其他表的同名列"""
        verdict = evaluate(
            "SELECT o.ssn FROM orders o JOIN customers c ON o.customer_id = c.id",
            self.permission,
        )
        self.assertTrue(verdict.allowed)

    def test_visible_columns_allowed(self):
        """测试只选择可见列"""
        self.assertTrue(evaluate("SELECT id, name FROM customers", self.permission).allowed)


class TestFilters(unittest.TestCase):
    """表、列过滤测试"""

    def test_filter_allowed_tables(self):
        """测试过滤表"""
        permission = PermissionDescriptor(can_view=True, allowed_tables={"orders"})
        self.assertEqual(filter_allowed_tables(["Orders", "customers"], permission), ["Orders"])
        self.assertEqual(filter_allowed_tables(["orders"], None), [])

    def test_filter_allowed_columns(self):
        """测试过滤隐藏列"""
        permission = PermissionDescriptor(can_view=True, hidden_columns={"users": {"password"}})
        self.assertEqual(
            filter_allowed_columns("USERS", ["id", "Password", "name"], permission),
            ["id", "name"],
        )


if __name__ == "__main__":
    unittest.main()
