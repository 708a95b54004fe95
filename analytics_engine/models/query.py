"""查询相关模型"""

from typing import List, Optional, Any, Dict, Literal, Union
from pydantic import BaseModel, ConfigDict, Field


class ChartFilter(BaseModel):
    """过滤条件"""
    field: str = Field(..., description="列名")
    operator: str = Field("eq", description="操作符: eq, neq, gt, gte, lt, lte, in, not_in, like, between")
    value: Any = Field(None, description="过滤值：标量、数组（in/not_in）或二元区间（between）")


class SortSpec(BaseModel):
    """排序规则"""
    field: str = Field(..., description="排序列名")
    direction: Literal["asc", "desc"] = Field("asc", description="排序方向")


class SeriesConfig(BaseModel):
    """多序列配置"""
    id: str = Field(..., description="序列ID")
    measure: str = Field(..., description="度量名称")
    label: Optional[str] = Field(None, description="序列标签")
    aggregation: str = Field("sum", description="聚合方式")
    color: Optional[str] = Field(None, description="序列颜色")


class PeriodComparisonConfig(BaseModel):
    """周期对比配置"""
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = Field(False, description="是否启用")
    comparison_type: Optional[str] = Field(
        None,
        alias="comparisonType",
        description="对比类型: month_over_month, quarter_over_quarter, year_over_year, same_period_last_year, custom_period"
    )
    custom_period_offset: Optional[int] = Field(None, alias="customPeriodOffset", description="自定义偏移周期数（>=1）")


class AnalyticsQueryParams(BaseModel):
    """分析查询请求"""
    data_source_id: Optional[int] = Field(None, description="数据源ID")
    measure: Optional[str] = Field(None, description="度量名称")
    frequency: Optional[str] = Field(None, description="时间频率")
    practice: Optional[str] = Field(None, description="诊所名称")
    practice_primary: Optional[str] = Field(None, description="主诊所")
    practice_uid: Optional[int] = Field(None, description="诊所ID")
    provider_name: Optional[str] = Field(None, description="医生名称")
    start_date: Optional[str] = Field(None, description="开始日期 YYYY-MM-DD")
    end_date: Optional[str] = Field(None, description="结束日期 YYYY-MM-DD")
    advanced_filters: List[ChartFilter] = Field(default_factory=list, description="高级筛选条件")
    order_by: List[SortSpec] = Field(default_factory=list, description="排序规则")
    axis_mapping: Optional[Dict[str, str]] = Field(None, description="坐标轴字段映射")
    limit: Optional[int] = Field(None, ge=1, le=10000, description="返回行数限制")
    multiple_series: Optional[List[SeriesConfig]] = Field(None, description="多序列配置")
    period_comparison: Optional[PeriodComparisonConfig] = Field(None, description="周期对比配置")


class AnalyticsQueryResult(BaseModel):
    """分析查询结果"""
    data: List[Dict[str, Any]] = Field(default_factory=list, description="结果数据行")
    total_count: Union[int, float] = Field(0, description="合计（currency 求和，其余计数）")
    query_time_ms: float = Field(0.0, description="执行耗时（毫秒）")
    cache_hit: bool = Field(False, description="是否命中缓存")
