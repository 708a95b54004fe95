"""分析引擎错误类型"""

from typing import Optional


class AnalyticsError(Exception):
    """分析引擎错误基类"""


class UnauthorizedAccessError(AnalyticsError):
    """未授权访问：未知/停用的表、未知字段或不允许的操作符"""

    def __init__(self, message: str, identifier: str):
        super().__init__(message)
        self.identifier = identifier


class QueryValidationError(AnalyticsError, ValueError):
    """请求参数校验失败"""

    def __init__(self, message: str, parameter: Optional[str] = None):
        super().__init__(message)
        self.parameter = parameter


class ConfigurationError(AnalyticsError):
    """数据源配置错误（缺少必需的列角色）"""

    def __init__(self, message: str, data_source_id: Optional[int] = None, role: Optional[str] = None):
        super().__init__(message)
        self.data_source_id = data_source_id
        self.role = role


class QueryExecutionError(AnalyticsError):
    """查询执行错误（不包含 SQL 文本与底层驱动错误）"""

    def __init__(self, message: str, operation: str):
        super().__init__(message)
        self.operation = operation
