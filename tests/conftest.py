"""测试共享夹具"""

import asyncio
from typing import Any, Dict, List, Sequence

import pytest

from analytics_engine.core.config import Settings
from analytics_engine.engines.column_mapper import ColumnMapper
from analytics_engine.engines.config_resolver import ConfigResolver
from analytics_engine.engines.data_source_store import InMemoryDataSourceStore
from analytics_engine.engines.query_builder import AnalyticsQueryBuilder
from analytics_engine.engines.result_cache import ResultCache
from analytics_engine.models import ColumnConfig, DataSourceConfig, SecurityContext


def make_measures_source(data_source_id: int = 1, is_active: bool = True) -> DataSourceConfig:
    """ih.agg_app_measures 数据源"""
    columns = [
        ColumnConfig(id=1, column_name="date_index", data_type="date", is_date_field=True, is_filterable=True, sort_order=1),
        ColumnConfig(id=2, column_name="measure_value", data_type="numeric", is_measure=True, sort_order=2),
        ColumnConfig(id=3, column_name="measure_type", is_measure_type=True, sort_order=3),
        ColumnConfig(id=4, column_name="frequency", is_time_period=True, is_filterable=True, sort_order=4,
                     allowed_values=["Daily", "Weekly", "Monthly", "Quarterly", "Yearly"]),
        ColumnConfig(id=5, column_name="measure", is_filterable=True, is_dimension=True, sort_order=5),
        ColumnConfig(id=6, column_name="practice", is_filterable=True, is_groupable=True, sort_order=6),
        ColumnConfig(id=7, column_name="practice_primary", is_filterable=True, sort_order=7),
        ColumnConfig(id=8, column_name="practice_uid", data_type="integer", is_filterable=True, sort_order=8),
        ColumnConfig(id=9, column_name="provider_name", is_filterable=True, is_groupable=True, sort_order=9),
        ColumnConfig(id=10, column_name="provider_uid", data_type="integer", is_filterable=True, sort_order=10),
    ]
    return DataSourceConfig(
        id=data_source_id,
        name="App Measures",
        schema_name="ih",
        table_name="agg_app_measures",
        is_active=is_active,
        columns=columns
    )


class RecordingExecutor:
    """记录调用的假执行器：普通查询返回 rows，合计查询返回 totals"""

    def __init__(self, rows: List[Dict[str, Any]] = None, totals: List[Dict[str, Any]] = None, delay: float = 0):
        self.rows = rows if rows is not None else []
        self.totals = totals if totals is not None else []
        self.delay = delay
        self.calls: List[tuple] = []

    async def fetch(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        self.calls.append((sql, list(params)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if sql.startswith("SELECT CASE WHEN"):
            return [dict(r) for r in self.totals]
        return [dict(r) for r in self.rows]


class FakeClock:
    """可控时钟"""

    def __init__(self, now: float = 1_717_200_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        duckdb_path=tmp_path / "duckdb" / "analytics.db",
        log_file=tmp_path / "logs" / "analytics.log"
    )


@pytest.fixture
def measures_source() -> DataSourceConfig:
    return make_measures_source()


@pytest.fixture
def store(measures_source) -> InMemoryDataSourceStore:
    return InMemoryDataSourceStore([measures_source])


@pytest.fixture
def resolver(store) -> ConfigResolver:
    return ConfigResolver(store)


@pytest.fixture
def mapper(resolver) -> ColumnMapper:
    return ColumnMapper(resolver)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(test_settings, clock) -> ResultCache:
    return ResultCache(test_settings, clock=clock)


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor(
        rows=[
            {"date_index": "2024-01-31", "measure_value": 1200.5, "measure_type": "currency",
             "frequency": "Monthly", "measure": "Charges by Provider", "practice_uid": 42, "provider_uid": 7},
            {"date_index": "2024-02-29", "measure_value": 800.0, "measure_type": "currency",
             "frequency": "Monthly", "measure": "Charges by Provider", "practice_uid": 42, "provider_uid": None},
        ],
        totals=[{"total": 2000.5, "measure_type": "currency"}]
    )


@pytest.fixture
def builder(resolver, mapper, executor, cache, test_settings) -> AnalyticsQueryBuilder:
    return AnalyticsQueryBuilder(resolver, mapper, executor, cache=cache, config=test_settings)


@pytest.fixture
def practice_context() -> SecurityContext:
    return SecurityContext(user_id="u1", accessible_practices={42})
