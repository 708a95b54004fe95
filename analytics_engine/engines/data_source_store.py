"""Data Source Store - 数据源配置存储（只读查询接口）"""

import json
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

import duckdb

from analytics_engine.models.data_source import ColumnConfig, DataSourceConfig
from analytics_engine.utils.logger import log


class DataSourceStore(Protocol):
    """数据源配置持久化存储的查询接口"""

    def find_by_id(self, data_source_id: int) -> Optional[DataSourceConfig]:
        ...

    def find_by_table(self, table_name: str, schema_name: str) -> Optional[DataSourceConfig]:
        ...


class InMemoryDataSourceStore:
    """内存数据源存储（管理流程与测试使用）"""

    def __init__(self, configs: Iterable[DataSourceConfig] = ()):
        self._lock = threading.Lock()
        self._configs: Dict[int, DataSourceConfig] = {c.id: c for c in configs}

    def upsert(self, config: DataSourceConfig) -> None:
        """新增或更新数据源配置"""
        with self._lock:
            self._configs[config.id] = config

    def remove(self, data_source_id: int) -> None:
        """删除数据源配置"""
        with self._lock:
            self._configs.pop(data_source_id, None)

    def find_by_id(self, data_source_id: int) -> Optional[DataSourceConfig]:
        with self._lock:
            config = self._configs.get(data_source_id)
        return config.model_copy(deep=True) if config else None

    def find_by_table(self, table_name: str, schema_name: str) -> Optional[DataSourceConfig]:
        with self._lock:
            candidates = [
                c for c in self._configs.values()
                if c.table_name == table_name and c.schema_name == schema_name
            ]
        # 同名表可能对应多个数据源，优先返回启用的
        candidates.sort(key=lambda c: (not c.is_active, c.id))
        return candidates[0].model_copy(deep=True) if candidates else None


class DuckDBDataSourceStore:
    """
    基于 DuckDB 的数据源配置存储

    读取 chart_data_sources 与 chart_data_source_columns 两张表。
    """

    DATA_SOURCE_COLUMNS = (
        "data_source_id, data_source_name, data_source_description, "
        "schema_name, table_name, data_source_type, is_active"
    )

    COLUMN_COLUMNS = (
        "column_id, column_name, display_name, column_description, data_type, "
        "is_filterable, is_groupable, is_measure, is_dimension, is_date_field, "
        "is_measure_type, is_time_period, format_type, default_aggregation, "
        "sort_order, example_value, allowed_values"
    )

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """获取 DuckDB 连接"""
        return duckdb.connect(str(self.db_path))

    def find_by_id(self, data_source_id: int) -> Optional[DataSourceConfig]:
        sql = f"SELECT {self.DATA_SOURCE_COLUMNS} FROM chart_data_sources WHERE data_source_id = ?"
        return self._load_one(sql, [data_source_id])

    def find_by_table(self, table_name: str, schema_name: str) -> Optional[DataSourceConfig]:
        sql = (
            f"SELECT {self.DATA_SOURCE_COLUMNS} FROM chart_data_sources "
            "WHERE table_name = ? AND schema_name = ? "
            "ORDER BY is_active DESC, data_source_id ASC LIMIT 1"
        )
        return self._load_one(sql, [table_name, schema_name])

    def _load_one(self, sql: str, params: List) -> Optional[DataSourceConfig]:
        conn = self._get_connection()
        try:
            row = conn.execute(sql, params).fetchone()
            if row is None:
                return None
            columns = conn.execute(
                f"SELECT {self.COLUMN_COLUMNS} FROM chart_data_source_columns "
                "WHERE data_source_id = ? ORDER BY sort_order ASC, column_id ASC",
                [row[0]]
            ).fetchall()
        finally:
            conn.close()

        config = DataSourceConfig(
            id=row[0],
            name=row[1],
            description=row[2],
            schema_name=row[3],
            table_name=row[4],
            data_source_type=row[5] or "measure-based",
            is_active=bool(row[6]),
            columns=[self._to_column_config(c) for c in columns]
        )
        log.debug(f"已加载数据源配置: {config.id} ({config.qualified_name}), {len(config.columns)} 列")
        return config

    @staticmethod
    def _to_column_config(row) -> ColumnConfig:
        allowed_values = json.loads(row[16]) if row[16] else None
        return ColumnConfig(
            id=row[0],
            column_name=row[1],
            display_name=row[2] or row[1],
            description=row[3],
            data_type=row[4] or "text",
            is_filterable=bool(row[5]),
            is_groupable=bool(row[6]),
            is_measure=bool(row[7]),
            is_dimension=bool(row[8]),
            is_date_field=bool(row[9]),
            is_measure_type=bool(row[10]),
            is_time_period=bool(row[11]),
            format_type=row[12],
            default_aggregation=row[13],
            sort_order=row[14] or 0,
            example_value=row[15],
            allowed_values=allowed_values
        )
