"""Config Resolver - 数据源配置解析（带缓存）"""

import threading
from typing import Callable, Dict, List, Optional, Tuple

from analytics_engine.engines.data_source_store import DataSourceStore
from analytics_engine.models.data_source import ColumnConfig, DataSourceConfig
from analytics_engine.utils.logger import log


class ConfigResolver:
    """
    数据源配置解析器

    按 ID 与 (schema, table) 两个索引缓存配置。管理流程修改配置后必须调用
    invalidate()；失效时通知已注册的监听者（列映射缓存随之清理）。
    """

    def __init__(self, store: DataSourceStore):
        self.store = store
        self._lock = threading.RLock()
        self._by_id: Dict[int, DataSourceConfig] = {}
        self._by_table: Dict[Tuple[str, str], int] = {}
        self._listeners: List[Callable[[Optional[int]], None]] = []

    def add_invalidation_listener(self, listener: Callable[[Optional[int]], None]) -> None:
        """注册失效监听（参数为数据源ID，None 表示全部）"""
        self._listeners.append(listener)

    def get_data_source_config_by_id(self, data_source_id: int) -> Optional[DataSourceConfig]:
        """
        按ID获取数据源配置

        Args:
            data_source_id: 数据源ID

        Returns:
            配置；不存在或查询失败返回 None
        """
        with self._lock:
            cached = self._by_id.get(data_source_id)
        if cached is not None:
            return cached

        try:
            config = self.store.find_by_id(data_source_id)
        except Exception as e:
            log.error(f"加载数据源配置失败: id={data_source_id} - {e}")
            return None

        if config is None:
            log.warning(f"数据源不存在: id={data_source_id}")
            return None

        self._remember(config)
        return config

    def get_data_source_config(self, table_name: str, schema_name: str) -> Optional[DataSourceConfig]:
        """
        按表名获取数据源配置（已弃用，优先使用 data_source_id）

        Args:
            table_name: 表名
            schema_name: Schema 名称

        Returns:
            配置；不存在或查询失败返回 None
        """
        with self._lock:
            data_source_id = self._by_table.get((schema_name, table_name))
            cached = self._by_id.get(data_source_id) if data_source_id is not None else None
        if cached is not None:
            return cached

        try:
            config = self.store.find_by_table(table_name, schema_name)
        except Exception as e:
            log.error(f"加载数据源配置失败: {schema_name}.{table_name} - {e}")
            return None

        if config is None:
            log.warning(f"数据源不存在: {schema_name}.{table_name}")
            return None

        self._remember(config)
        return config

    def _remember(self, config: DataSourceConfig) -> None:
        with self._lock:
            self._by_id[config.id] = config
            self._by_table[(config.schema_name, config.table_name)] = config.id

    def invalidate(self, data_source_id: Optional[int] = None) -> None:
        """
        清除缓存

        Args:
            data_source_id: 数据源ID；为空时清除全部
        """
        with self._lock:
            if data_source_id is None:
                self._by_id.clear()
                self._by_table.clear()
            else:
                self._by_id.pop(data_source_id, None)
                stale = [k for k, v in self._by_table.items() if v == data_source_id]
                for key in stale:
                    del self._by_table[key]

        for listener in self._listeners:
            listener(data_source_id)

        target = "全部" if data_source_id is None else f"id={data_source_id}"
        log.info(f"数据源配置缓存已清除: {target}")

    def get_allowed_fields(self, config: DataSourceConfig) -> List[str]:
        """字段白名单"""
        return config.column_names()

    def get_filterable_fields(self, data_source_id: int) -> List[ColumnConfig]:
        config = self.get_data_source_config_by_id(data_source_id)
        return config.filterable_columns() if config else []

    def get_groupable_fields(self, data_source_id: int) -> List[ColumnConfig]:
        config = self.get_data_source_config_by_id(data_source_id)
        return config.groupable_columns() if config else []

    def get_measure_fields(self, data_source_id: int) -> List[ColumnConfig]:
        config = self.get_data_source_config_by_id(data_source_id)
        return config.measure_columns() if config else []

    def get_dimension_fields(self, data_source_id: int) -> List[ColumnConfig]:
        config = self.get_data_source_config_by_id(data_source_id)
        return config.dimension_columns() if config else []
