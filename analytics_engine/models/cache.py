"""结果缓存相关模型"""

from typing import Any, Dict
from pydantic import BaseModel, Field
from analytics_engine.models.query import AnalyticsQueryResult


class CacheEntry(BaseModel):
    """缓存条目"""
    key: str = Field(..., description="缓存键")
    signature: str = Field(..., description="规范化参数签名")
    params: Dict[str, Any] = Field(default_factory=dict, description="规范化查询参数（用于按模式失效）")
    result: AnalyticsQueryResult = Field(..., description="缓存的查询结果")
    created_at: float = Field(..., description="创建时间戳（秒）")
    ttl_seconds: float = Field(..., gt=0, description="有效期（秒）")
    access_count: int = Field(0, ge=0, description="命中次数")
    last_accessed: float = Field(..., description="最近访问时间戳（秒）")
    access_seq: int = Field(0, description="访问序号（同一时间戳下的先后）")

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl_seconds


class CacheStats(BaseModel):
    """缓存统计"""
    size: int = Field(0, description="条目数")
    capacity: int = Field(0, description="容量上限")
    hits: int = Field(0, description="命中次数")
    misses: int = Field(0, description="未命中次数")
    hit_rate: float = Field(0.0, description="命中率")
    evictions: int = Field(0, description="LRU 淘汰数")
    expirations: int = Field(0, description="过期清理数")
    invalidations: int = Field(0, description="主动失效数")


class CacheWarmResult(BaseModel):
    """缓存预热结果"""
    entries_cached: int = Field(0, description="新写入的条目数")
    already_cached: int = Field(0, description="已在缓存中的条目数")
    failed: int = Field(0, description="执行失败的请求数")
    total_rows: int = Field(0, description="预热的总行数")
    duration_ms: float = Field(0.0, description="耗时（毫秒）")
    skipped: bool = Field(False, description="未配置缓存时跳过")
