"""系统配置管理"""

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """系统配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )

    # 数据源默认位置（未提供 data_source_id 时的兼容回退）
    default_schema_name: str = "ih"
    default_table_name: str = "agg_app_measures"

    # 查询限制
    max_query_rows: int = 10000
    query_timeout_seconds: float = 30
    max_filters: int = 50
    max_series: int = 20

    # 结果缓存
    cache_capacity: int = 1000
    cache_eviction_ratio: float = 0.1
    cache_base_ttl_seconds: float = 300
    cache_max_ttl_seconds: float = 3600
    cache_sweep_interval_seconds: float = 60
    cache_sweeper_enabled: bool = True

    # 存储路径
    duckdb_path: Path = Path("./data/duckdb/analytics.db")

    # 日志配置
    log_level: str = "INFO"
    log_file: Path = Path("./logs/analytics.log")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # 确保目录存在
        self.duckdb_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_file.parent.mkdir(parents=True, exist_ok=True)


# 全局配置实例
settings = Settings()
