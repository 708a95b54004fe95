"""数据源配置解析测试"""

from analytics_engine.engines.config_resolver import ConfigResolver
from analytics_engine.engines.data_source_store import InMemoryDataSourceStore
from tests.conftest import make_measures_source


class CountingStore(InMemoryDataSourceStore):
    def __init__(self, configs=()):
        super().__init__(configs)
        self.lookups = 0

    def find_by_id(self, data_source_id):
        self.lookups += 1
        return super().find_by_id(data_source_id)

    def find_by_table(self, table_name, schema_name):
        self.lookups += 1
        return super().find_by_table(table_name, schema_name)


class BrokenStore:
    def find_by_id(self, data_source_id):
        raise ConnectionError("store unavailable")

    def find_by_table(self, table_name, schema_name):
        raise ConnectionError("store unavailable")


def test_lookup_by_id_is_cached():
    store = CountingStore([make_measures_source()])
    resolver = ConfigResolver(store)

    first = resolver.get_data_source_config_by_id(1)
    second = resolver.get_data_source_config_by_id(1)

    assert first is second
    assert first.qualified_name == "ih.agg_app_measures"
    assert store.lookups == 1


def test_lookup_by_table_shares_cache():
    store = CountingStore([make_measures_source()])
    resolver = ConfigResolver(store)

    by_table = resolver.get_data_source_config("agg_app_measures", "ih")
    by_id = resolver.get_data_source_config_by_id(1)

    assert by_table is by_id
    assert store.lookups == 1


def test_missing_returns_none():
    resolver = ConfigResolver(InMemoryDataSourceStore())
    assert resolver.get_data_source_config_by_id(3) is None
    assert resolver.get_data_source_config("nope", "ih") is None


def test_store_errors_become_none():
    resolver = ConfigResolver(BrokenStore())
    assert resolver.get_data_source_config_by_id(1) is None
    assert resolver.get_data_source_config("agg_app_measures", "ih") is None


def test_invalidate_reloads_and_notifies():
    store = CountingStore([make_measures_source()])
    resolver = ConfigResolver(store)
    notified = []
    resolver.add_invalidation_listener(notified.append)

    resolver.get_data_source_config_by_id(1)
    store.upsert(make_measures_source(is_active=False))
    resolver.invalidate(1)

    assert notified == [1]
    assert resolver.get_data_source_config_by_id(1).is_active is False
    assert resolver.get_data_source_config("agg_app_measures", "ih").is_active is False
    assert store.lookups == 2

    resolver.invalidate()
    assert notified == [1, None]


def test_field_helpers(resolver, measures_source):
    assert resolver.get_allowed_fields(measures_source) == measures_source.column_names()
    assert [c.column_name for c in resolver.get_measure_fields(1)] == ["measure_value"]
    assert "frequency" in [c.column_name for c in resolver.get_filterable_fields(1)]
    assert [c.column_name for c in resolver.get_groupable_fields(1)] == ["practice", "provider_name"]
    assert [c.column_name for c in resolver.get_dimension_fields(1)] == ["measure"]
    assert resolver.get_measure_fields(404) == []
