"""
SQL 解析器单元测试 (unittest)
"""

import unittest

from db_reconcile.utils.sql_parser import (
    ColumnReference,
    columns_for_table,
    contains_multiple_statements,
    extract_column_references,
    extract_table_references,
    is_write_query,
    leading_keyword,
    selects_all_columns,
    split_statements,
)


class TestStatements(unittest.TestCase):
    """语句拆分与写操作识别测试"""

    def test_split_statements(self):
        """测试拆分（字符串中的分号不拆分）"""
        self.assertEqual(
            split_statements("SELECT 1; -- note\nSELECT 'a;b';"),
            ["SELECT 1", "SELECT 'a;b'"],
        )
        self.assertEqual(split_statements("  ;  "), [])

    def test_contains_multiple_statements(self):
        """测试多语句检测"""
        self.assertTrue(contains_multiple_statements("SELECT 1; SELECT 2"))
        self.assertFalse(contains_multiple_statements("SELECT 1;"))

    def test_leading_keyword(self):
        """测试首个关键字"""
        self.assertEqual(leading_keyword("  insert into t values (1)"), "INSERT")
        self.assertEqual(leading_keyword("-- comment\nDELETE FROM t"), "DELETE")
        self.assertEqual(leading_keyword("(SELECT 1)"), "SELECT")
        self.assertIsNone(leading_keyword(""))

    def test_is_write_query(self):
        """测试写操作识别"""
        for sql in (
            "INSERT INTO t VALUES (1)",
            "update t set a = 1",
            "DELETE FROM t",
            "DROP TABLE t",
            "ALTER TABLE t ADD c INT",
            "CREATE TABLE t (id INT)",
            "TRUNCATE t",
            "REPLACE INTO t VALUES (1)",
            "SELECT 1; DELETE FROM t",
            "WITH x AS (SELECT 1) DELETE FROM t",
        ):
            self.assertTrue(is_write_query(sql), sql)

        for sql in ("SELECT * FROM updates", "SELECT 'DELETE FROM t'", "-- DROP TABLE t\nSELECT 1", ""):
            self.assertFalse(is_write_query(sql), sql)


class TestTableReferences(unittest.TestCase):
    """表名提取测试"""

    def test_from_and_join(self):
        """测试 FROM、JOIN 和 schema 限定名"""
        self.assertEqual(
            extract_table_references("SELECT * FROM orders o JOIN public.Customers c ON o.cid = c.id"),
            ["orders", "customers"],
        )

    def test_comma_separated(self):
        """测试逗号分隔的表列表"""
        self.assertEqual(
            extract_table_references("SELECT * FROM a, b AS bb WHERE a.id = bb.id"),
            ["a", "b"],
        )

    def test_write_statements(self):
        """测试 INSERT/UPDATE/DELETE"""
        self.assertEqual(extract_table_references("INSERT INTO logs (msg) VALUES ('x')"), ["logs"])
        self.assertEqual(extract_table_references("UPDATE users SET name = 'x'"), ["users"])
        self.assertEqual(extract_table_references("DELETE FROM sessions WHERE id = 1"), ["sessions"])

    def test_subquery(self):
        """测试子查询中的表"""
        self.assertEqual(
            extract_table_references("SELECT * FROM orders WHERE cid IN (SELECT id FROM customers)"),
            ["orders", "customers"],
        )

    def test_quoted_names(self):
        """测试引号标识符"""
        self.assertEqual(extract_table_references('SELECT * FROM "Order Items"'), ["order items"])
        self.assertEqual(extract_table_references("SELECT * FROM `users`"), ["users"])

    def test_function_from_is_not_table(self):
        """测试函数参数中的 FROM"""
        self.assertEqual(
            extract_table_references("SELECT EXTRACT(YEAR FROM created_at) FROM events"),
            ["events"],
        )

    def test_subquery_inside_function_call(self):
        """测试函数调用参数里的子查询"""
        self.assertEqual(
            extract_table_references("SELECT ARRAY(SELECT ssn FROM customers)"),
            ["customers"],
        )
        self.assertEqual(
            extract_table_references("SELECT id, to_json(SELECT ssn FROM customers) FROM orders"),
            ["customers", "orders"],
        )

    def test_from_argument_with_subquery(self):
        """测试 SUBSTRING/TRIM 中出现 SELECT 时 FROM 仍是表"""
        self.assertEqual(
            extract_table_references("SELECT SUBSTRING(SELECT ssn FROM customers) FROM orders"),
            ["customers", "orders"],
        )
        self.assertEqual(
            extract_table_references("SELECT TRIM(' ' FROM name) FROM orders"),
            ["orders"],
        )

    def test_cte_excluded(self):
        """测试 CTE 名称不计入"""
        self.assertEqual(
            extract_table_references("WITH recent AS (SELECT * FROM orders) SELECT * FROM recent"),
            ["orders"],
        )


class TestColumnReferences(unittest.TestCase):
    """列名提取测试"""

    def test_qualified_and_unqualified(self):
        """测试限定列和非限定列"""
        self.assertEqual(
            extract_column_references("SELECT o.total FROM orders o WHERE status = 'x'"),
            [ColumnReference("orders", "total"), ColumnReference(None, "status")],
        )

    def test_alias_and_function_skipped(self):
        """测试列别名和函数名不算列"""
        refs = extract_column_references("SELECT lower(email) AS mail FROM users")
        self.assertEqual(refs, [ColumnReference(None, "email")])

    def test_columns_for_table(self):
        """测试归属不明的列属于每张表"""
        sql = "SELECT a.x, b.y, z FROM ta a JOIN tb b ON a.id = b.id"
        self.assertEqual(columns_for_table(sql, "ta"), {"x", "z", "id"})
        self.assertEqual(columns_for_table(sql, "TB"), {"y", "z", "id"})

    def test_unknown_qualifier(self):
        """测试未知限定符视为归属不明"""
        self.assertEqual(
            extract_column_references("SELECT q.secret FROM users"),
            [ColumnReference(None, "secret")],
        )


class TestSelectsAllColumns(unittest.TestCase):
    """SELECT * 检测测试"""

    def test_star(self):
        """测试 SELECT * 与 t.*"""
        self.assertTrue(selects_all_columns("SELECT * FROM users"))
        self.assertTrue(selects_all_columns("SELECT DISTINCT * FROM users", "users"))
        self.assertTrue(selects_all_columns("SELECT id, * FROM users", "users"))
        self.assertTrue(selects_all_columns("SELECT u.* FROM users u", "users"))

    def test_star_for_other_table(self):
        """测试其他表的 t.*"""
        sql = "SELECT o.* , u.name FROM orders o JOIN users u ON u.id = o.uid"
        self.assertFalse(selects_all_columns(sql, "users"))
        self.assertTrue(selects_all_columns(sql, "orders"))

    def test_count_star(self):
        """测试 COUNT(*) 和乘法"""
        self.assertFalse(selects_all_columns("SELECT COUNT(*) FROM users"))
        self.assertFalse(selects_all_columns("SELECT price * qty FROM items"))


if __name__ == "__main__":
    unittest.main()
