"""周期对比测试"""

import pytest
from datetime import date

from analytics_engine.core.errors import QueryValidationError
from analytics_engine.engines.period_comparison import (
    calculate_comparison_date_range,
    generate_comparison_label,
    shift_months
)
from analytics_engine.models import PeriodComparisonConfig


def _config(comparison_type, offset=None):
    return PeriodComparisonConfig(enabled=True, comparison_type=comparison_type, custom_period_offset=offset)


def test_shift_months_clamps_day():
    assert shift_months(date(2024, 3, 31), -1) == date(2024, 2, 29)
    assert shift_months(date(2024, 1, 15), -3) == date(2023, 10, 15)
    assert shift_months(date(2024, 2, 29), -12) == date(2023, 2, 28)
    assert shift_months(date(2024, 4, 30), -1, keep_month_end=True) == date(2024, 3, 31)


@pytest.mark.parametrize("comparison_type,frequency,start,end,expected", [
    ("month_over_month", "Monthly", "2024-06-01", "2024-06-30", ("2024-05-01", "2024-05-31")),
    ("month_over_month", "Monthly", "2024-03-01", "2024-03-31", ("2024-02-01", "2024-02-29")),
    ("quarter_over_quarter", "Quarterly", "2024-04-01", "2024-06-30", ("2024-01-01", "2024-03-31")),
    ("year_over_year", "Monthly", "2024-01-01", "2024-12-31", ("2023-01-01", "2023-12-31")),
    ("year_over_year", "Weekly", "2024-06-03", "2024-06-09", ("2023-06-05", "2023-06-11")),
    ("same_period_last_year", "Weekly", "2024-06-03", "2024-06-09", ("2023-06-03", "2023-06-09")),
    ("year_over_year", "daily", "2024-03-01", "2024-03-01", ("2023-03-03", "2023-03-03")),
])
def test_comparison_ranges(comparison_type, frequency, start, end, expected):
    config = _config(comparison_type)
    assert calculate_comparison_date_range(start, end, frequency, config) == expected


@pytest.mark.parametrize("frequency,offset,expected", [
    ("Daily", 3, ("2024-06-07", "2024-06-27")),
    ("Weekly", 2, ("2024-05-27", "2024-06-16")),
    ("Monthly", 2, ("2024-04-10", "2024-04-30")),
    ("Quarterly", 1, ("2024-03-10", "2024-03-31")),
    ("Annual", 1, ("2023-06-10", "2023-06-30")),
])
def test_custom_period(frequency, offset, expected):
    config = _config("custom_period", offset)
    assert calculate_comparison_date_range("2024-06-10", "2024-06-30", frequency, config) == expected


def test_custom_period_requires_positive_offset():
    for offset in (None, 0, -1):
        with pytest.raises(QueryValidationError):
            calculate_comparison_date_range("2024-06-01", "2024-06-30", "Monthly", _config("custom_period", offset))


@pytest.mark.parametrize("start,end,frequency,comparison_type", [
    ("2024-13-01", "2024-12-31", "Monthly", "month_over_month"),
    ("2024-06-30", "2024-06-01", "Monthly", "month_over_month"),
    ("2024-06-01", "2024-06-30", "Hourly", "year_over_year"),
    ("2024-06-01", "2024-06-30", "Monthly", "week_over_week"),
])
def test_invalid_inputs(start, end, frequency, comparison_type):
    with pytest.raises(QueryValidationError):
        calculate_comparison_date_range(start, end, frequency, _config(comparison_type))


def test_labels():
    assert generate_comparison_label("Monthly", _config("month_over_month")) == "Previous Month"
    assert generate_comparison_label("Quarterly", _config("quarter_over_quarter")) == "Previous Quarter"
    assert generate_comparison_label("Monthly", _config("year_over_year")) == "Previous Year"
    assert generate_comparison_label("Monthly", _config("same_period_last_year")) == "Same Period Last Year"
    assert generate_comparison_label("Weekly", _config("custom_period", 3)) == "3 Weeks Ago"
    assert generate_comparison_label("Monthly", _config("custom_period", 1)) == "1 Month Ago"
