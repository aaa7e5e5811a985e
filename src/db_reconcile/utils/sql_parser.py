"""
SQL 解析工具 - 语句拆分、写操作识别、表名和列名提取

基于 sqlparse 的词法分析，不是完整的语法解析器。提取规则偏向多匹配：
无法确定归属的列视为属于所有被引用的表。
"""

from typing import Dict, Iterator, List, NamedTuple, Optional, Set

import sqlparse
from sqlparse import lexer
from sqlparse import tokens as T

# 写操作关键字（语句首个关键字）
WRITE_KEYWORDS = frozenset({
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE", "TRUNCATE", "REPLACE",
    "MERGE", "RENAME", "GRANT", "REVOKE",
})

# 不会被当作表名或列名的未加引号单词
RESERVED_WORDS = frozenset({
    "select", "from", "where", "and", "or", "not", "in", "is", "null", "like", "ilike",
    "between", "join", "inner", "left", "right", "full", "outer", "cross", "natural",
    "on", "using", "as", "group", "order", "by", "having", "limit", "offset", "union",
    "intersect", "except", "all", "distinct", "insert", "into", "values", "update",
    "set", "delete", "replace", "truncate", "drop", "alter", "create", "table", "with",
    "recursive", "case", "when", "then", "else", "end", "asc", "desc", "exists", "true",
    "false", "returning", "if", "lateral", "over", "partition", "window", "fetch",
    "only", "for", "of", "nulls", "escape", "interval", "any", "some", "collate",
    "default", "top", "ignore",
})

_TABLE_TRIGGERS = frozenset({"from", "join", "into", "update", "table", "using", "truncate"})
_TABLE_MODIFIERS = frozenset({
    "table", "if", "not", "exists", "only", "ignore", "lateral", "low_priority", "quick",
})

# 参数中带 FROM 的函数，如 EXTRACT(YEAR FROM col)、TRIM(x FROM col)
_FROM_ARGUMENT_FUNCTIONS = frozenset({"extract", "trim", "substring", "overlay", "position"})

# 词法单元类别
WORD = "word"  # 未加引号的单词（已小写）
QUOTED = "quoted"  # 引号/反引号标识符（已去引号并小写）
LITERAL = "literal"  # 字符串、数字、参数占位符
PUNCT = "punct"
STAR = "star"
OTHER = "other"


class SqlToken(NamedTuple):
    """简化后的词法单元"""
    kind: str
    value: str


class ColumnReference(NamedTuple):
    """
    列引用

    属性:
        table: 归属的表（小写）；None 表示无法确定，视为属于所有表
        column: 列名（小写）
    """
    table: Optional[str]
    column: str


def strip_comments(sql: str) -> str:
    """移除 SQL 注释"""
    return sqlparse.format(sql, strip_comments=True).strip()


def collapse_whitespace(sql: str) -> str:
    """将连续空白压缩为单个空格"""
    return " ".join(sql.split())


def split_statements(sql: str) -> List[str]:
    """
    拆分多条语句（忽略注释和空语句，去掉结尾分号）

    示例:
        >>> split_statements("SELECT 1; -- note\\nSELECT 'a;b';")
        ['SELECT 1', "SELECT 'a;b'"]
    """
    statements = []
    for statement in sqlparse.split(strip_comments(sql)):
        cleaned = statement.strip().rstrip(";").strip()
        if cleaned:
            statements.append(cleaned)
    return statements


def contains_multiple_statements(sql: str) -> bool:
    """是否包含多条语句（结尾分号不算）"""
    return len(split_statements(sql)) > 1


def tokenize(sql: str) -> List[SqlToken]:
    """
    将 SQL 转换为简化的词法单元序列

    跳过空白和注释；sqlparse 识别的多词关键字（如 ORDER BY、LEFT JOIN）
    保留为一个以空格分隔的单词。
    """
    result: List[SqlToken] = []
    for ttype, value in lexer.tokenize(sql):
        if ttype in T.Whitespace or ttype in T.Comment:
            continue
        if ttype in T.Name.Placeholder:
            result.append(SqlToken(LITERAL, value))
        elif ttype in T.String.Symbol or (ttype in T.Name and value[:1] in "`\"["):
            result.append(SqlToken(QUOTED, value.strip("`\"[]").lower()))
        elif ttype in T.Literal:
            result.append(SqlToken(LITERAL, value))
        elif ttype in T.Keyword or ttype in T.Name:
            result.append(SqlToken(WORD, collapse_whitespace(value.lower())))
        elif ttype in T.Punctuation:
            result.append(SqlToken(PUNCT, value))
        elif value == "*":
            result.append(SqlToken(STAR, value))
        else:
            result.append(SqlToken(OTHER, value))
    return result


def leading_keyword(statement: str) -> Optional[str]:
    """
    获取语句首个关键字（大写）

    示例:
        >>> leading_keyword("  (select 1)")
        'SELECT'
    """
    for token in tokenize(statement):
        if token.kind == WORD:
            return token.value.split()[0].upper()
        if token.kind == PUNCT and token.value == "(":
            continue
        return None
    return None


def is_write_query(sql: str) -> bool:
    """
    判断是否为写操作

    任意一条语句以写关键字开头即视为写操作；WITH 语句中出现写关键字
    也视为写操作。

    示例:
        >>> is_write_query("SELECT 1; DROP TABLE users")
        True
        >>> is_write_query("WITH t AS (SELECT 1) SELECT * FROM t")
        False
    """
    for statement in split_statements(sql):
        keyword = leading_keyword(statement)
        if keyword in WRITE_KEYWORDS:
            return True
        if keyword == "WITH":
            parsed = sqlparse.parse(statement)
            if parsed and parsed[0].get_type() in WRITE_KEYWORDS:
                return True
            if any(
                token.kind == WORD and token.value.split()[0].upper() in WRITE_KEYWORDS
                for token in tokenize(statement)
            ):
                return True
    return False


# ============================================================================
# 表名、列名提取
# ============================================================================

def _is_name(token: SqlToken) -> bool:
    if token.kind == QUOTED:
        return bool(token.value)
    return token.kind == WORD and " " not in token.value and token.value not in RESERVED_WORDS


def _is_modifier(token: SqlToken) -> bool:
    return token.kind == WORD and all(part in _TABLE_MODIFIERS for part in token.value.split())


def _is_punct(token: Optional[SqlToken], *values: str) -> bool:
    return token is not None and token.kind == PUNCT and token.value in values


class _Scan:
    """一次扫描的结果：表、别名、CTE 名以及被表名占用的位置"""

    def __init__(self, tokens: List[SqlToken]):
        self.tokens = tokens
        self.tables: List[str] = []
        self.aliases: Dict[str, str] = {}
        self.ctes: Set[str] = set()
        self.consumed: Set[int] = set()

    def add_table(self, table: str) -> None:
        if table not in self.tables:
            self.tables.append(table)

    def resolve(self, qualifier: str) -> Optional[str]:
        """限定符解析为表名；未知限定符返回 None（归属所有表）"""
        if qualifier in self.aliases:
            return self.aliases[qualifier]
        if qualifier in self.tables:
            return qualifier
        return None

    def token_at(self, index: int) -> Optional[SqlToken]:
        if 0 <= index < len(self.tokens):
            return self.tokens[index]
        return None


class _Paren:
    """括号层级：name 为函数名（分组括号为 None），has_select 表示本层出现过 SELECT"""

    def __init__(self, name: Optional[str]):
        self.name = name
        self.has_select = False


def _cte_names(tokens: List[SqlToken]) -> Set[str]:
    """收集 WITH 子句中定义的 CTE 名称"""
    names: Set[str] = set()
    seen_with = False
    for index, token in enumerate(tokens):
        if token.kind == WORD and token.value.split()[0] == "with":
            seen_with = True
            continue
        if not seen_with or not _is_name(token) or index == 0:
            continue
        previous = tokens[index - 1]
        following = tokens[index + 1:index + 3]
        if (
            (_is_punct(previous, ",") or (previous.kind == WORD and previous.value in ("with", "recursive")))
            and len(following) == 2
            and following[0] == SqlToken(WORD, "as")
            and _is_punct(following[1], "(")
        ):
            names.add(token.value)
    return names


def _is_table_trigger(scan: _Scan, index: int, paren_stack: List[_Paren]) -> bool:
    token = scan.tokens[index]
    if token.kind != WORD:
        return False
    keyword = token.value.split()[-1]
    if keyword not in _TABLE_TRIGGERS:
        return False
    if keyword == "from" and paren_stack:
        current = paren_stack[-1]
        if current.name in _FROM_ARGUMENT_FUNCTIONS and not current.has_select:
            return False
    if keyword == "update":
        previous = scan.token_at(index - 1)
        return previous is None or _is_punct(previous, ";", ")")
    return True


def _read_name(scan: _Scan, index: int) -> int:
    """读取可能带 schema 限定的名称，返回名称之后的位置；不是名称时原样返回"""
    token = scan.token_at(index)
    if token is None or not _is_name(token):
        return index
    index += 1
    while _is_punct(scan.token_at(index), ".") and scan.token_at(index + 1) is not None \
            and scan.token_at(index + 1).kind in (WORD, QUOTED):
        index += 2
    return index


def _read_table_list(scan: _Scan, index: int) -> int:
    """读取触发词之后的表名列表（含别名、逗号分隔）"""
    while True:
        while scan.token_at(index) is not None and _is_modifier(scan.tokens[index]):
            index += 1

        start = index
        index = _read_name(scan, index)
        if index == start:
            return index

        scan.consumed.update(range(start, index))
        table = scan.tokens[index - 1].value
        is_cte = table in scan.ctes
        if not is_cte:
            scan.add_table(table)

        probe = index
        if scan.token_at(probe) == SqlToken(WORD, "as"):
            probe += 1
        alias = scan.token_at(probe)
        if alias is not None and _is_name(alias) and not _is_punct(scan.token_at(probe + 1), ".", "("):
            if not is_cte:
                scan.aliases[alias.value] = table
            scan.consumed.update(range(index, probe + 1))
            index = probe + 1

        if not _is_punct(scan.token_at(index), ","):
            return index
        index += 1


def _scan(sql: str) -> _Scan:
    scan = _Scan(tokenize(sql))
    scan.ctes = _cte_names(scan.tokens)

    paren_stack: List[_Paren] = []
    index = 0
    while index < len(scan.tokens):
        token = scan.tokens[index]
        if _is_punct(token, "("):
            previous = scan.token_at(index - 1)
            name = previous.value if previous is not None and previous.kind == WORD and _is_name(previous) else None
            paren_stack.append(_Paren(name))
        elif _is_punct(token, ")"):
            if paren_stack:
                paren_stack.pop()
        elif token.kind == WORD and token.value.split()[0] == "select":
            if paren_stack:
                paren_stack[-1].has_select = True
        elif _is_table_trigger(scan, index, paren_stack):
            index = _read_table_list(scan, index + 1)
            continue
        index += 1

    return scan


def extract_table_references(sql: str) -> List[str]:
    """
    提取语句引用的表名（小写，按出现顺序去重）

    识别 FROM、JOIN、INSERT INTO、UPDATE、DELETE FROM 以及 DDL 中的
    TABLE 之后的名称；schema 限定名只保留表名部分，CTE 名称不计入。

    示例:
        >>> extract_table_references("SELECT * FROM orders o JOIN public.Customers c ON o.cid = c.id")
        ['orders', 'customers']
    """
    return list(_scan(sql).tables)


def _column_references(scan: _Scan) -> Iterator[ColumnReference]:
    for index, token in enumerate(scan.tokens):
        if index in scan.consumed or not _is_name(token) or token.value in scan.ctes:
            continue

        following = scan.token_at(index + 1)
        previous = scan.token_at(index - 1)
        if _is_punct(following, "(", "."):
            continue  # 函数名或限定符
        if previous == SqlToken(WORD, "as"):
            continue  # 列别名

        table = None
        if _is_punct(previous, "."):
            qualifier = scan.token_at(index - 2)
            if qualifier is not None and qualifier.kind in (WORD, QUOTED):
                table = scan.resolve(qualifier.value)

        yield ColumnReference(table, token.value)


def extract_column_references(sql: str) -> List[ColumnReference]:
    """
    提取语句中的列引用

    所有不是表名、别名、函数名、关键字的标识符都视为列引用，
    覆盖 SELECT 列表、WHERE、JOIN ON、SET、ORDER BY 等位置。

    示例:
        >>> extract_column_references("SELECT o.total FROM orders o WHERE status = 'x'")
        [ColumnReference(table='orders', column='total'), ColumnReference(table=None, column='status')]
    """
    return list(_column_references(_scan(sql)))


def columns_for_table(sql: str, table: str) -> Set[str]:
    """获取可能属于指定表的列名集合（含无法确定归属的列）"""
    target = table.lower()
    return {
        ref.column
        for ref in extract_column_references(sql)
        if ref.table is None or ref.table == target
    }


def _star_targets(scan: _Scan) -> Iterator[Optional[str]]:
    for index, token in enumerate(scan.tokens):
        if token.kind != STAR:
            continue
        previous = scan.token_at(index - 1)
        if previous is None:
            continue
        if _is_punct(previous, "."):
            qualifier = scan.token_at(index - 2)
            if qualifier is not None and qualifier.kind in (WORD, QUOTED):
                yield scan.resolve(qualifier.value)
        elif _is_punct(previous, ",") or (
            previous.kind == WORD and previous.value.split()[-1] in ("select", "distinct", "all", "returning")
        ):
            yield None


def selects_all_columns(sql: str, table: Optional[str] = None) -> bool:
    """
    语句是否选择了全部列（SELECT * 或 t.*）

    参数:
        table: 只检查该表；None 表示任意表。COUNT(*) 不算。
    """
    target = table.lower() if table else None
    for star_table in _star_targets(_scan(sql)):
        if star_table is None or target is None or star_table == target:
            return True
    return False
