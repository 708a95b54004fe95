"""周期对比：对比区间计算与标签"""

import calendar
from datetime import date, timedelta
from typing import Tuple

from analytics_engine.core.constants import COMPARISON_TYPES, FREQUENCY_UNITS
from analytics_engine.core.errors import QueryValidationError
from analytics_engine.models.query import PeriodComparisonConfig

# 周期单位 → (月数, 天数)
_UNIT_SHIFTS = {
    "day": (0, 1),
    "week": (0, 7),
    "month": (1, 0),
    "quarter": (3, 0),
    "year": (12, 0),
}

_UNIT_LABELS = {
    "day": "Day",
    "week": "Week",
    "month": "Month",
    "quarter": "Quarter",
    "year": "Year",
}


def _parse_date(value: str, parameter: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise QueryValidationError(f"日期格式无效（需要 YYYY-MM-DD）: {parameter}={value!r}", parameter=parameter) from None


def _frequency_unit(frequency: str) -> str:
    unit = FREQUENCY_UNITS.get((frequency or "").strip().lower())
    if unit is None:
        raise QueryValidationError(f"不支持的时间频率: {frequency}", parameter="frequency")
    return unit


def _is_month_end(d: date) -> bool:
    return d.day == calendar.monthrange(d.year, d.month)[1]


def shift_months(d: date, months: int, keep_month_end: bool = False) -> date:
    """
    按月平移日期

    目标月份天数不足时截断到月末；keep_month_end 为真且原日期是月末时，
    结果同样对齐到目标月月末。
    """
    index = d.year * 12 + (d.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    if keep_month_end and _is_month_end(d):
        return date(year, month, last_day)
    return date(year, month, min(d.day, last_day))


def _comparison_shift(frequency: str, config: PeriodComparisonConfig) -> Tuple[int, int]:
    """返回 (月数, 天数) 的回退量"""
    comparison_type = config.comparison_type
    if comparison_type not in COMPARISON_TYPES:
        raise QueryValidationError(f"不支持的对比类型: {comparison_type}", parameter="comparison_type")

    if comparison_type == "month_over_month":
        return 1, 0
    if comparison_type == "quarter_over_quarter":
        return 3, 0
    if comparison_type == "year_over_year":
        # 日/周粒度回退 52 周，保持星期对齐
        if _frequency_unit(frequency) in ("day", "week"):
            return 0, 364
        return 12, 0
    if comparison_type == "same_period_last_year":
        return 12, 0

    offset = config.custom_period_offset
    if offset is None or offset < 1:
        raise QueryValidationError("自定义对比周期偏移量必须 >= 1", parameter="custom_period_offset")
    months, days = _UNIT_SHIFTS[_frequency_unit(frequency)]
    return months * offset, days * offset


def calculate_comparison_date_range(
    start_date: str,
    end_date: str,
    frequency: str,
    config: PeriodComparisonConfig
) -> Tuple[str, str]:
    """
    计算对比区间

    Args:
        start_date: 当前区间开始日期
        end_date: 当前区间结束日期
        frequency: 时间频率
        config: 周期对比配置

    Returns:
        (对比开始日期, 对比结束日期)
    """
    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")
    if start > end:
        raise QueryValidationError("开始日期不能晚于结束日期", parameter="start_date")

    months, days = _comparison_shift(frequency, config)
    if months:
        comparison_start = shift_months(start, -months)
        comparison_end = shift_months(end, -months, keep_month_end=True)
    else:
        comparison_start = start - timedelta(days=days)
        comparison_end = end - timedelta(days=days)

    return comparison_start.isoformat(), comparison_end.isoformat()


def generate_comparison_label(frequency: str, config: PeriodComparisonConfig) -> str:
    """对比序列标签"""
    comparison_type = config.comparison_type
    if comparison_type == "month_over_month":
        return "Previous Month"
    if comparison_type == "quarter_over_quarter":
        return "Previous Quarter"
    if comparison_type == "year_over_year":
        return "Previous Year"
    if comparison_type == "same_period_last_year":
        return "Same Period Last Year"
    if comparison_type == "custom_period":
        offset = config.custom_period_offset or 1
        unit = _UNIT_LABELS.get(FREQUENCY_UNITS.get((frequency or "").strip().lower(), ""), "Period")
        return f"{offset} {unit}{'s' if offset != 1 else ''} Ago"
    return "Comparison Period"
