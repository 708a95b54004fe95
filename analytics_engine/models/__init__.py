"""数据模型包"""

from analytics_engine.models.data_source import (
    ColumnConfig,
    DataSourceConfig,
    ColumnMapping
)
from analytics_engine.models.query import (
    ChartFilter,
    SortSpec,
    SeriesConfig,
    PeriodComparisonConfig,
    AnalyticsQueryParams,
    AnalyticsQueryResult
)
from analytics_engine.models.security import SecurityContext
from analytics_engine.models.cache import CacheEntry, CacheStats, CacheWarmResult

__all__ = [
    # Data source
    "ColumnConfig",
    "DataSourceConfig",
    "ColumnMapping",
    # Query
    "ChartFilter",
    "SortSpec",
    "SeriesConfig",
    "PeriodComparisonConfig",
    "AnalyticsQueryParams",
    "AnalyticsQueryResult",
    # Security
    "SecurityContext",
    # Cache
    "CacheEntry",
    "CacheStats",
    "CacheWarmResult",
]
