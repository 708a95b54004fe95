"""安全防护工具"""

import math
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from analytics_engine.core.constants import ARRAY_OPERATORS, KNOWN_SAFE_VALUES
from analytics_engine.core.errors import QueryValidationError
from analytics_engine.utils.logger import log


class SecurityValidator:
    """安全校验器"""

    # SQL 标识符（表名、schema 名、列名）
    IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

    # 无需清理的安全字符
    SAFE_STRING_PATTERN = re.compile(r"^[a-zA-Z0-9 \-_.,()&]+$")

    # 日期格式 YYYY-MM-DD
    DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

    # 需要剔除的危险字符：引号、分号、反斜杠、控制字符
    DANGEROUS_CHARS = re.compile(r"['\";\\\x00-\x1f\x7f]")

    @classmethod
    def validate_identifier(cls, name: str) -> bool:
        """
        验证标识符安全性

        Args:
            name: 表名/列名

        Returns:
            是否安全
        """
        if not isinstance(name, str) or not cls.IDENTIFIER_PATTERN.match(name):
            log.warning(f"不安全的标识符: {name!r}")
            return False
        return True

    @classmethod
    def is_valid_date_string(cls, value: str) -> bool:
        """验证是否为合法的 YYYY-MM-DD 日期"""
        if not cls.DATE_PATTERN.match(value):
            return False
        try:
            return date.fromisoformat(value).isoformat() == value
        except ValueError:
            return False

    @classmethod
    def is_safe_string(cls, value: str) -> bool:
        """仅包含安全字符"""
        return bool(cls.SAFE_STRING_PATTERN.match(value))

    @classmethod
    def sanitize_string_value(cls, value: str, allowed_values: Optional[Iterable[Any]] = None) -> str:
        """
        清理字符串值

        合法日期、安全字符串、列配置中的允许值以及已知枚举值原样返回，
        其余字符串剔除危险字符。

        Args:
            value: 原始值
            allowed_values: 列配置的允许值

        Returns:
            清理后的值
        """
        if cls.is_valid_date_string(value) or cls.is_safe_string(value):
            return value
        if allowed_values is not None and value in {str(v) for v in allowed_values}:
            return value
        if value in KNOWN_SAFE_VALUES:
            return value

        cleaned = cls.DANGEROUS_CHARS.sub("", value)
        if cleaned != value:
            log.warning(f"过滤值包含危险字符，已清理: {cleaned!r}")
        return cleaned

    @classmethod
    def sanitize_single_value(
        cls,
        value: Any,
        parameter: str,
        allowed_values: Optional[Iterable[Any]] = None
    ) -> Any:
        """按类型清理单个值"""
        if isinstance(value, str):
            return cls.sanitize_string_value(value, allowed_values)
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                raise QueryValidationError(f"数值必须为有限数: {parameter}", parameter=parameter)
            return value
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        raise QueryValidationError(
            f"不支持的过滤值类型 {type(value).__name__}: {parameter}",
            parameter=parameter
        )

    @classmethod
    def sanitize_value(
        cls,
        value: Any,
        operator: str,
        parameter: str,
        allowed_values: Optional[Iterable[Any]] = None
    ) -> Any:
        """
        按操作符校验值的形状并清理

        Args:
            value: 原始值
            operator: 标准操作符
            parameter: 参数名（用于错误信息）
            allowed_values: 列配置的允许值

        Returns:
            清理后的值（in/not_in/between 返回列表）
        """
        if value is None:
            return None

        if operator in ARRAY_OPERATORS:
            if not isinstance(value, (list, tuple)):
                raise QueryValidationError(f"{operator} 操作符需要数组值: {parameter}", parameter=parameter)
            return [cls.sanitize_single_value(v, parameter, allowed_values) for v in value]

        if operator == "between":
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise QueryValidationError(f"between 操作符需要长度为2的数组: {parameter}", parameter=parameter)
            return [cls.sanitize_single_value(v, parameter, allowed_values) for v in value]

        if isinstance(value, (list, tuple, dict)):
            raise QueryValidationError(f"{operator} 操作符需要标量值: {parameter}", parameter=parameter)

        return cls.sanitize_single_value(value, parameter, allowed_values)

    @classmethod
    def validate_query_complexity(cls, query_params: Dict[str, Any], max_filters: int, max_series: int) -> bool:
        """
        验证查询复杂度

        Args:
            query_params: 查询参数
            max_filters: 最大筛选条件数
            max_series: 最大序列数

        Returns:
            是否在允许范围内
        """
        if len(query_params.get("advanced_filters") or []) > max_filters:
            log.warning("过滤条件过多")
            return False

        if len(query_params.get("multiple_series") or []) > max_series:
            log.warning("序列数量过多")
            return False

        if len(query_params.get("order_by") or []) > max_filters:
            log.warning("排序规则过多")
            return False

        return True

    @classmethod
    def mask_list(cls, values: Iterable[Any], limit: int = 5) -> List[Any]:
        """截断日志中的长列表"""
        items = sorted(values)
        if len(items) > limit:
            return items[:limit] + [f"...(+{len(items) - limit})"]
        return items
