"""Column Mapper - 列角色映射与行访问器"""

import threading
from typing import Any, Dict, Iterable, List, Optional, Union

from analytics_engine.core.constants import (
    CURRENCY_MEASURE_TYPE,
    DEFAULT_MEASURE_TYPE,
    PREFERRED_DATE_COLUMNS
)
from analytics_engine.core.errors import ConfigurationError
from analytics_engine.engines.config_resolver import ConfigResolver
from analytics_engine.models.data_source import ColumnConfig, ColumnMapping, DataSourceConfig
from analytics_engine.utils.logger import log


class MeasureAccessor:
    """按列映射读取单行数据的访问器"""

    def __init__(self, row: Dict[str, Any], mapping: ColumnMapping):
        self.row = row
        self.mapping = mapping

    def get_date(self) -> str:
        value = self.row.get(self.mapping.date_field)
        if value is None:
            return ""
        if hasattr(value, "isoformat"):
            return value.isoformat()
        return str(value)

    def get_measure_value(self) -> float:
        value = self.row.get(self.mapping.measure_field)
        if value is None:
            return 0.0
        if isinstance(value, bool):
            return float(value)
        if isinstance(value, (int, float)):
            return float(value)
        try:
            return float(str(value).strip())
        except ValueError:
            raise ValueError(f"度量值不是数字: {self.mapping.measure_field}={value!r}") from None

    def get_measure_type(self) -> str:
        value = self.row.get(self.mapping.measure_type_field)
        return str(value) if value else DEFAULT_MEASURE_TYPE

    def get_time_period(self) -> Optional[str]:
        value = self.row.get(self.mapping.time_period_field)
        return str(value) if value is not None else None

    def get_practice_uid(self) -> Optional[int]:
        return self._get_optional_int(self.mapping.practice_field)

    def get_provider_uid(self) -> Optional[int]:
        return self._get_optional_int(self.mapping.provider_field)

    def get_raw(self, field: str) -> Any:
        """非常用字段的原始值"""
        return self.row.get(field)

    def _get_optional_int(self, field: Optional[str]) -> Optional[int]:
        if not field:
            return None
        value = self.row.get(field)
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None


def calculate_total(rows: Iterable[Dict[str, Any]], mapping: ColumnMapping) -> Union[int, float]:
    """
    客户端合计：currency 类型求和，其余类型计数

    与 SQL 合计查询使用同一规则。
    """
    total = 0.0
    for row in rows:
        accessor = MeasureAccessor(row, mapping)
        if accessor.get_measure_type() == CURRENCY_MEASURE_TYPE:
            total += accessor.get_measure_value()
        else:
            total += 1
    return normalize_total(total)


def normalize_total(value: Any) -> Union[int, float]:
    """整数值返回 int，其余返回 float"""
    if value is None:
        return 0
    number = float(value)
    return int(number) if number.is_integer() else number


class ColumnMapper:
    """列映射服务（按数据源ID缓存）"""

    def __init__(self, config_resolver: ConfigResolver):
        self.config_resolver = config_resolver
        self._lock = threading.Lock()
        self._mappings: Dict[int, ColumnMapping] = {}
        config_resolver.add_invalidation_listener(self.invalidate)

    def get_mapping(self, data_source_id: int) -> ColumnMapping:
        """
        获取数据源的列映射

        Args:
            data_source_id: 数据源ID

        Returns:
            ColumnMapping

        Raises:
            ConfigurationError: 数据源不存在或缺少必需的列角色
        """
        with self._lock:
            cached = self._mappings.get(data_source_id)
        if cached is not None:
            return cached

        config = self.config_resolver.get_data_source_config_by_id(data_source_id)
        if config is None:
            raise ConfigurationError(f"数据源 {data_source_id} 不存在", data_source_id=data_source_id)

        mapping = self.resolve_mapping(config)
        with self._lock:
            self._mappings[data_source_id] = mapping
        log.debug(f"列映射已解析: 数据源 {data_source_id} -> {mapping.model_dump()}")
        return mapping

    def create_accessor(self, row: Dict[str, Any], data_source_id: int) -> MeasureAccessor:
        return MeasureAccessor(row, self.get_mapping(data_source_id))

    def get_cache_stats(self) -> Dict[str, Any]:
        """已缓存的列映射数量与数据源ID"""
        with self._lock:
            data_source_ids = sorted(self._mappings)
        return {"size": len(data_source_ids), "data_source_ids": data_source_ids}

    def invalidate(self, data_source_id: Optional[int] = None) -> None:
        with self._lock:
            if data_source_id is None:
                self._mappings.clear()
            else:
                self._mappings.pop(data_source_id, None)

    @classmethod
    def resolve_mapping(cls, config: DataSourceConfig) -> ColumnMapping:
        """按列标记解析各角色对应的物理列"""
        columns = config.columns

        # 日期列：排除同时标记为时间周期的列
        date_candidates = [c for c in columns if c.is_date_field and not c.is_time_period]
        date_column = cls._pick_date_column(date_candidates, config.id)

        time_period_column = next((c for c in columns if c.is_time_period), None)

        measure_candidates = [c for c in columns if c.is_measure]
        if len(measure_candidates) > 1:
            log.warning(
                f"数据源 {config.id} 有多个度量列，使用第一个: "
                f"{[c.column_name for c in measure_candidates]}"
            )
        measure_column = measure_candidates[0] if measure_candidates else None

        measure_type_column = next((c for c in columns if c.is_measure_type), None)
        if measure_type_column is None:
            measure_type_column = config.get_column("measure_type")

        required = {
            "date": date_column,
            "time_period": time_period_column,
            "measure": measure_column,
            "measure_type": measure_type_column,
        }
        for role, column in required.items():
            if column is None:
                raise ConfigurationError(
                    f'数据源 {config.id} 中未找到必需的列类型 "{role}"',
                    data_source_id=config.id,
                    role=role
                )

        return ColumnMapping(
            date_field=date_column.column_name,
            measure_field=measure_column.column_name,
            measure_type_field=measure_type_column.column_name,
            time_period_field=time_period_column.column_name,
            practice_field=cls._match_entity_column(columns, "practice"),
            provider_field=cls._match_entity_column(columns, "provider")
        )

    @staticmethod
    def _pick_date_column(candidates: List[ColumnConfig], data_source_id: int) -> Optional[ColumnConfig]:
        if len(candidates) <= 1:
            return candidates[0] if candidates else None
        log.warning(f"数据源 {data_source_id} 有多个日期列: {[c.column_name for c in candidates]}")
        preferred = [
            c for c in candidates
            if c.column_name in PREFERRED_DATE_COLUMNS or c.data_type.lower() == "date"
        ]
        return (preferred or candidates)[0]

    @staticmethod
    def _match_entity_column(columns: List[ColumnConfig], entity: str) -> Optional[str]:
        # 没有显式标记，按列名匹配，优先 *_uid 标识列
        matches = [c.column_name for c in columns if entity in c.column_name.lower()]
        for name in matches:
            if name.lower().endswith("_uid"):
                return name
        return matches[0] if matches else None
