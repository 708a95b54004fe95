"""系统常量定义"""

from typing import Dict, Set

# 过滤操作符白名单（操作符 → SQL 运算符）
ALLOWED_FILTER_OPERATORS: Dict[str, str] = {
    "eq": "=",
    "neq": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "in": "IN",
    "not_in": "NOT IN",
    "like": "ILIKE",
    "between": "BETWEEN",
}

# 需要数组值的操作符
ARRAY_OPERATORS: Set[str] = {"in", "not_in"}

# 高级筛选操作符别名（前端筛选器 → 标准操作符）
ADVANCED_OPERATOR_ALIASES: Dict[str, str] = {
    "equals": "eq",
    "not_equals": "neq",
    "greater_than": "gt",
    "greater_than_or_equal": "gte",
    "less_than": "lt",
    "less_than_or_equal": "lte",
    "contains": "like",
    "starts_with": "like",
    "ends_with": "like",
}

# LIKE 模式模板
LIKE_PATTERNS: Dict[str, str] = {
    "contains": "%{}%",
    "starts_with": "{}%",
    "ends_with": "%{}",
}

# 已知安全的枚举值（度量名称、频率）
KNOWN_SAFE_VALUES: Set[str] = {
    "Charges by Provider",
    "Payments by Provider",
    "Daily",
    "Weekly",
    "Monthly",
    "Quarterly",
    "Yearly",
}

# 权限范围
PERMISSION_SCOPES: Set[str] = {"own", "organization", "all"}

# 时间频率 → 周期单位
FREQUENCY_UNITS: Dict[str, str] = {
    "daily": "day",
    "weekly": "week",
    "monthly": "month",
    "quarterly": "quarter",
    "yearly": "year",
    "annual": "year",
}

# 周期对比类型
COMPARISON_TYPES: Set[str] = {
    "month_over_month",
    "quarter_over_quarter",
    "year_over_year",
    "same_period_last_year",
    "custom_period",
}

# 度量类型
CURRENCY_MEASURE_TYPE = "currency"
DEFAULT_MEASURE_TYPE = "number"

# 日期列名偏好
PREFERRED_DATE_COLUMNS: Set[str] = {"date_value", "date_index"}

# 自适应 TTL 系数
TTL_VERY_OLD_DATA_DAYS = 180
TTL_OLD_DATA_DAYS = 90
TTL_VERY_OLD_MULTIPLIER = 4.0
TTL_OLD_MULTIPLIER = 2.0
TTL_LARGE_RESULT_ROWS = 1000
TTL_LARGE_RESULT_MULTIPLIER = 2.0
TTL_SLOW_QUERY_MS = 1000
TTL_SLOW_QUERY_MULTIPLIER = 1.5
TTL_RECENT_DATA_DAYS = 7
TTL_RECENT_DATA_MULTIPLIER = 0.5

# 最大限制
MAX_CHART_SERIES = 20
