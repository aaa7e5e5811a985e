"""
异常定义 - 校验错误、访问错误、确认错误

引擎错误（驱动、连接、SQL 语法）不在此处：它们以 TabularResult.error
的形式内联返回，不会抛出到调用方。
"""

from typing import Any, Dict, List, Optional


class ReconcileError(Exception):
    """db-reconcile 基础异常"""
    pass


class ConfigError(ReconcileError):
    """配置错误"""
    pass


class RequestValidationError(ReconcileError):
    """
    请求校验失败（在任何 I/O 之前抛出）

    属性:
        details: 字段名 -> 错误消息列表
    """

    def __init__(self, message: str, details: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @classmethod
    def from_pydantic(cls, exc: Any) -> "RequestValidationError":
        """从 pydantic ValidationError 构建字段级错误信息"""
        details: Dict[str, List[str]] = {}
        for error in exc.errors():
            field = ".".join(str(part) for part in error.get("loc", ())) or "__root__"
            details.setdefault(field, []).append(error.get("msg", "invalid"))
        return cls("Validation failed", details)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典，用于响应序列化"""
        return {"error": self.message, "details": self.details}


class UnsupportedEngineError(ReconcileError, ValueError):
    """不支持的数据库引擎类型"""
    pass


class IdentifierError(ReconcileError, ValueError):
    """非法的表名或列名"""
    pass


class SchemaIntrospectionError(ReconcileError):
    """表结构查询失败"""
    pass


class AccessDeniedError(ReconcileError):
    """
    访问策略拒绝

    只携带原因和违规类型，不携带被限制的数据。
    """

    def __init__(self, reason: str, violation_type: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.violation_type = violation_type


class ConfirmationRequiredError(ReconcileError):
    """
    危险语句需要用户确认

    属性:
        classification: 语句分类结果（StatementClassification）
    """

    def __init__(self, classification: Any):
        super().__init__(classification.message or "Confirmation required")
        self.classification = classification


class ComparisonFailedError(ReconcileError):
    """比对未能完成（读取任一侧失败），无法据此生成同步任务"""
    pass
