"""Result Cache - 查询结果缓存（自适应 TTL + LRU 淘汰）"""

import json
import math
import threading
import time
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Optional

from analytics_engine.core.config import Settings, settings as default_settings
from analytics_engine.core import constants as c
from analytics_engine.models.cache import CacheEntry, CacheStats
from analytics_engine.models.query import AnalyticsQueryParams, AnalyticsQueryResult
from analytics_engine.utils.logger import log

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF


def fnv1a_64(text: str) -> int:
    """64 位 FNV-1a 哈希"""
    h = _FNV_OFFSET
    for byte in text.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & _MASK_64
    return h


def _encode_value(value: Any) -> str:
    # 字符串同样 JSON 编码：值中的 "|" 与 ":" 位于引号内，不会与分隔符混淆
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


def canonical_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """去掉空值（None 与空列表）"""
    return {name: value for name, value in params.items() if value is not None and value != []}


def build_signature(params: Dict[str, Any], user_id: str) -> str:
    """
    规范化参数签名

    参数名排序、忽略空值、每个值 JSON 编码，
    形如 '|end_date:"2024-12-31"|practice_uid:42|user:"u1"|'。
    """
    parts = [
        f"{name}:{_encode_value(value)}"
        for name, value in sorted(canonical_params(params).items())
    ]
    parts.append(f"user:{_encode_value(user_id)}")
    return "|" + "|".join(parts) + "|"


class ResultCache:
    """
    查询结果缓存

    缓存键由全部查询参数与用户ID派生：不同用户的可访问范围不同，不能共享结果。
    """

    def __init__(self, config: Optional[Settings] = None, clock: Callable[[], float] = time.time):
        config = config or default_settings
        self.capacity = config.cache_capacity
        self.eviction_ratio = config.cache_eviction_ratio
        self.base_ttl_seconds = config.cache_base_ttl_seconds
        self.max_ttl_seconds = config.cache_max_ttl_seconds
        self.sweep_interval_seconds = config.cache_sweep_interval_seconds
        self.clock = clock

        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._seq = 0
        self._stats = {"hits": 0, "misses": 0, "evictions": 0, "expirations": 0, "invalidations": 0}

        self._sweeper: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def _serialize_params(self, params: AnalyticsQueryParams, user_id: str) -> str:
        return build_signature(params.model_dump(mode="json", exclude_none=True), user_id)

    def make_key(self, params: AnalyticsQueryParams, user_id: str) -> str:
        """生成缓存键"""
        return self._key_for_signature(self._serialize_params(params, user_id))

    @staticmethod
    def _key_for_signature(signature: str) -> str:
        return f"analytics:{fnv1a_64(signature):016x}"

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def get(self, params: AnalyticsQueryParams, user_id: str) -> Optional[AnalyticsQueryResult]:
        """
        获取缓存结果

        Returns:
            命中时返回 cache_hit=True 的结果副本，否则 None
        """
        try:
            signature = self._serialize_params(params, user_id)
        except (TypeError, ValueError) as e:
            log.warning(f"缓存键生成失败，按未命中处理: {e}")
            with self._lock:
                self._stats["misses"] += 1
            return None
        key = self._key_for_signature(signature)

        with self._lock:
            entry = self._entries.get(key)
            now = self.clock()
            if entry is None or entry.signature != signature:
                self._stats["misses"] += 1
                return None
            if entry.is_expired(now):
                del self._entries[key]
                self._stats["expirations"] += 1
                self._stats["misses"] += 1
                return None

            entry.access_count += 1
            entry.last_accessed = now
            entry.access_seq = self._next_seq()
            self._stats["hits"] += 1
            result = entry.result.model_copy(deep=True)

        log.debug(f"缓存命中: {key}")
        result.cache_hit = True
        return result

    def set(
        self,
        params: AnalyticsQueryParams,
        user_id: str,
        result: AnalyticsQueryResult,
        ttl: Optional[float] = None
    ) -> None:
        """写入缓存（未指定 ttl 时按自适应规则计算）"""
        try:
            signature = self._serialize_params(params, user_id)
            canonical = canonical_params(params.model_dump(mode="json", exclude_none=True))
        except (TypeError, ValueError) as e:
            log.warning(f"缓存键生成失败，跳过写入: {e}")
            return
        key = self._key_for_signature(signature)
        ttl_seconds = ttl if ttl is not None else self.compute_ttl(params, result)
        stored = result.model_copy(deep=True)
        stored.cache_hit = False

        with self._lock:
            now = self.clock()
            if key not in self._entries and len(self._entries) >= self.capacity:
                self._evict_locked()
            self._entries[key] = CacheEntry(
                key=key,
                signature=signature,
                params=canonical,
                result=stored,
                created_at=now,
                ttl_seconds=ttl_seconds,
                access_count=0,
                last_accessed=now,
                access_seq=self._next_seq()
            )

        log.debug(f"缓存写入: {key} ttl={ttl_seconds:.0f}s rows={len(result.data)}")

    def _evict_locked(self) -> None:
        """淘汰最久未访问的 10% 条目（调用方持有锁）"""
        count = max(1, math.ceil(len(self._entries) * self.eviction_ratio))
        victims = sorted(
            self._entries.values(),
            key=lambda e: (e.last_accessed, e.access_seq)
        )[:count]
        for entry in victims:
            del self._entries[entry.key]
        self._stats["evictions"] += len(victims)
        log.info(f"缓存已满，淘汰 {len(victims)} 个条目")

    def compute_ttl(self, params: AnalyticsQueryParams, result: AnalyticsQueryResult) -> float:
        """
        自适应 TTL

        基础 5 分钟；旧数据变化少、结果大或查询慢时延长；
        周频率或包含最近 7 天的数据时缩短；上限 60 分钟。
        """
        ttl = float(self.base_ttl_seconds)
        today = datetime.fromtimestamp(self.clock()).date()

        start = self._parse_date(params.start_date)
        if start is not None:
            if start < today - timedelta(days=c.TTL_VERY_OLD_DATA_DAYS):
                ttl *= c.TTL_VERY_OLD_MULTIPLIER
            elif start < today - timedelta(days=c.TTL_OLD_DATA_DAYS):
                ttl *= c.TTL_OLD_MULTIPLIER

        if len(result.data) > c.TTL_LARGE_RESULT_ROWS:
            ttl *= c.TTL_LARGE_RESULT_MULTIPLIER

        if result.query_time_ms > c.TTL_SLOW_QUERY_MS:
            ttl *= c.TTL_SLOW_QUERY_MULTIPLIER

        end = self._parse_date(params.end_date)
        is_weekly = (params.frequency or "").strip().lower() == "weekly"
        is_recent = end is not None and end >= today - timedelta(days=c.TTL_RECENT_DATA_DAYS)
        if is_weekly or is_recent:
            ttl *= c.TTL_RECENT_DATA_MULTIPLIER

        return min(ttl, float(self.max_ttl_seconds))

    @staticmethod
    def _parse_date(value: Optional[str]) -> Optional[date]:
        if not value:
            return None
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None

    def invalidate_pattern(self, partial_params: Dict[str, Any]) -> int:
        """
        按参数片段失效

        删除参数中同时匹配所有 field:value 的条目（值按 JSON 编码后比较）。

        Args:
            partial_params: 例如 {"practice_uid": 42}

        Returns:
            失效条目数
        """
        expected = {name: _encode_value(value) for name, value in partial_params.items()}

        def matches(entry: CacheEntry) -> bool:
            return all(
                name in entry.params and _encode_value(entry.params[name]) == encoded
                for name, encoded in expected.items()
            )

        with self._lock:
            keys = [key for key, entry in self._entries.items() if matches(entry)]
            for key in keys:
                del self._entries[key]
            self._stats["invalidations"] += len(keys)

        log.info(f"按模式失效缓存: {partial_params} -> {len(keys)} 个条目")
        return len(keys)

    def clear(self) -> None:
        """清空缓存"""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._stats["invalidations"] += count
        log.info(f"缓存已清空: {count} 个条目")

    def sweep_expired(self) -> int:
        """清理已过期条目"""
        with self._lock:
            now = self.clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._stats["expirations"] += len(expired)

        if expired:
            log.debug(f"过期清理: {len(expired)} 个条目")
        return len(expired)

    def get_stats(self) -> CacheStats:
        """获取缓存统计"""
        with self._lock:
            stats = dict(self._stats)
            size = len(self._entries)
        lookups = stats["hits"] + stats["misses"]
        return CacheStats(
            size=size,
            capacity=self.capacity,
            hit_rate=round(stats["hits"] / lookups, 4) if lookups else 0.0,
            **stats
        )

    def start_sweeper(self) -> None:
        """启动后台过期清理线程"""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="result-cache-sweeper", daemon=True)
        self._sweeper.start()
        log.info(f"缓存过期清理线程已启动: 间隔 {self.sweep_interval_seconds}s")

    def stop_sweeper(self) -> None:
        """停止后台过期清理线程"""
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval_seconds):
            try:
                self.sweep_expired()
            except Exception as e:
                log.error(f"缓存过期清理失败: {e}")
