"""
值转换器 - 跨引擎行比对时的值规范化

不同驱动对同一列可能返回不同的 Python 类型（Decimal/float、datetime/str、
dict/JSON 字符串），比对和主键序列化前统一在这里处理。
"""

import json
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

# 规范化函数类型
NormalizerFunc = Callable[[Any], Any]


def _number(value: Any) -> Any:
    """整数值统一为 int，其余为 float"""
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _temporal(value: Any) -> Any:
    """日期时间转为 ISO 字符串"""
    return value.isoformat()


def _binary(value: Any) -> Any:
    """二进制转为十六进制字符串"""
    return bytes(value).hex()


def _mapping(value: Any) -> Any:
    """递归规范化字典"""
    return {str(k): normalize_value(v) for k, v in value.items()}


def _sequence(value: Any) -> Any:
    """递归规范化列表"""
    return [normalize_value(v) for v in value]


# 规范化注册表（按顺序匹配，bool 必须先于数值）
NORMALIZER_REGISTRY: List[Tuple[Tuple[type, ...], NormalizerFunc]] = [
    ((bool,), lambda v: v),
    ((int, float, Decimal), _number),
    ((datetime, date, time), _temporal),
    ((bytes, bytearray, memoryview), _binary),
    ((UUID,), str),
    ((dict,), _mapping),
    ((list, tuple), _sequence),
    ((str,), lambda v: v),
]


def normalize_value(value: Any) -> Any:
    """
    将值转换为可稳定 JSON 编码的规范形式

    参数:
        value: 驱动返回的原始值

    返回:
        JSON 兼容的值

    示例:
        >>> normalize_value(Decimal("3.00"))
        3
        >>> normalize_value(datetime(2024, 1, 1, 8, 30))
        '2024-01-01T08:30:00'
    """
    if value is None:
        return None
    for types, func in NORMALIZER_REGISTRY:
        if isinstance(value, types):
            return func(value)
    return str(value)


def serialize_primary_key(primary_key: Dict[str, Any]) -> str:
    """
    主键规范化序列化

    按列名排序后稳定编码，列的顺序不影响结果。

    示例:
        >>> serialize_primary_key({"b": 2, "a": 1})
        '[["a",1],["b",2]]'
    """
    pairs = [[column, normalize_value(primary_key[column])] for column in sorted(primary_key)]
    return json.dumps(pairs, ensure_ascii=False, separators=(",", ":"))


def deserialize_primary_key(primary_key_string: str) -> Dict[str, Any]:
    """反序列化主键字符串"""
    return {column: value for column, value in json.loads(primary_key_string)}


# ============================================================================
# 类型感知的相等比较
# ============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal))


def _to_decimal(value: Any) -> Optional[Decimal]:
    try:
        if isinstance(value, float):
            return Decimal(repr(value))
        return Decimal(int(value)) if isinstance(value, bool) else Decimal(value)
    except (InvalidOperation, ValueError):
        return None


def _to_datetime(value: Any) -> Optional[datetime]:
    """转换为 datetime，无时区视为 UTC"""
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime.combine(value, time())
    elif isinstance(value, str):
        try:
            result = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def _parse_json(value: Any) -> Any:
    if isinstance(value, (str, bytes, bytearray)):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def values_equal(a: Any, b: Any) -> bool:
    """
    比较两个单元格值

    规则:
        - None 只与 None 相等
        - 数值按值比较（Decimal("1.50") == 1.5）
        - 日期时间按时间点比较，ISO 字符串与 datetime 可互相比较
        - 字典/列表结构化比较，JSON 字符串会先解析
        - 二进制按字节比较
        - 其余类型不同即不相等

    示例:
        >>> values_equal(Decimal("10.0"), 10)
        True
        >>> values_equal("2024-01-01 00:00:00", datetime(2024, 1, 1))
        True
        >>> values_equal("1", 1)
        False
    """
    if a is None or b is None:
        return a is None and b is None

    if _is_number(a) and _is_number(b):
        left, right = _to_decimal(a), _to_decimal(b)
        if left is None or right is None:
            return False
        return left == right

    if isinstance(a, (datetime, date)) or isinstance(b, (datetime, date)):
        if isinstance(a, time) or isinstance(b, time):
            return a == b
        left_dt, right_dt = _to_datetime(a), _to_datetime(b)
        if left_dt is None or right_dt is None:
            return False
        return left_dt == right_dt

    if isinstance(a, (bytes, bytearray, memoryview)) and isinstance(b, (bytes, bytearray, memoryview)):
        return bytes(a) == bytes(b)

    if isinstance(a, (dict, list, tuple)) or isinstance(b, (dict, list, tuple)):
        left_obj, right_obj = _parse_json(a), _parse_json(b)
        if isinstance(left_obj, dict) and isinstance(right_obj, dict):
            if set(left_obj) != set(right_obj):
                return False
            return all(values_equal(left_obj[k], right_obj[k]) for k in left_obj)
        if isinstance(left_obj, (list, tuple)) and isinstance(right_obj, (list, tuple)):
            if len(left_obj) != len(right_obj):
                return False
            return all(values_equal(x, y) for x, y in zip(left_obj, right_obj))
        return False

    if isinstance(a, str) != isinstance(b, str):
        return False

    return a == b
