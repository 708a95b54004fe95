"""Query Builder - 安全分析查询构建（AnalyticsQueryParams → 参数化 SQL）"""

import asyncio
import time
from typing import Any, Awaitable, List, NamedTuple, Optional, Sequence, Tuple

from analytics_engine.core.config import Settings, settings as default_settings
from analytics_engine.core.constants import (
    ADVANCED_OPERATOR_ALIASES,
    ALLOWED_FILTER_OPERATORS,
    CURRENCY_MEASURE_TYPE,
    LIKE_PATTERNS
)
from analytics_engine.core.errors import (
    AnalyticsError,
    ConfigurationError,
    QueryExecutionError,
    QueryValidationError,
    UnauthorizedAccessError
)
from analytics_engine.engines.column_mapper import ColumnMapper, calculate_total, normalize_total
from analytics_engine.engines.config_resolver import ConfigResolver
from analytics_engine.engines.data_source_store import DataSourceStore
from analytics_engine.engines.executor import QueryExecutor
from analytics_engine.engines.period_comparison import (
    calculate_comparison_date_range,
    generate_comparison_label
)
from analytics_engine.engines.result_cache import ResultCache
from analytics_engine.models.data_source import ColumnConfig, ColumnMapping, DataSourceConfig
from analytics_engine.models.cache import CacheWarmResult
from analytics_engine.models.query import AnalyticsQueryParams, AnalyticsQueryResult, ChartFilter
from analytics_engine.models.security import SecurityContext
from analytics_engine.utils.logger import log, SECURITY_LEVEL
from analytics_engine.utils.security import SecurityValidator


class WhereClause(NamedTuple):
    """WHERE 子句与参数"""
    clause: str
    params: List[Any]
    fail_closed: bool


class BuiltQuery(NamedTuple):
    """构建完成的查询"""
    sql: str
    params: List[Any]
    count_sql: str
    count_params: List[Any]
    fail_closed: bool
    data_source: DataSourceConfig
    mapping: ColumnMapping


class AnalyticsQueryBuilder:
    """
    分析查询构建器

    所有校验（表、字段、操作符、值）在执行任何 SQL 之前完成；
    SQL 只拼接经白名单校验的标识符，值一律通过 $n 占位符传入。
    """

    def __init__(
        self,
        config_resolver: ConfigResolver,
        column_mapper: ColumnMapper,
        executor: QueryExecutor,
        cache: Optional[ResultCache] = None,
        config: Optional[Settings] = None
    ):
        self.config_resolver = config_resolver
        self.column_mapper = column_mapper
        self.executor = executor
        self.cache = cache
        self.settings = config or default_settings

    # ------------------------------------------------------------------
    # 校验
    # ------------------------------------------------------------------

    def _resolve_data_source(self, params: AnalyticsQueryParams) -> DataSourceConfig:
        """解析并校验目标数据源（优先 data_source_id，表名查找为兼容回退）"""
        if params.data_source_id is not None:
            identifier = f"data_source_id={params.data_source_id}"
            config = self.config_resolver.get_data_source_config_by_id(params.data_source_id)
        else:
            schema_name = self.settings.default_schema_name
            table_name = self.settings.default_table_name
            identifier = f"{schema_name}.{table_name}"
            log.warning(f"请求未提供 data_source_id，按表名查找数据源（已弃用）: {identifier}")
            config = self.config_resolver.get_data_source_config(table_name, schema_name)

        self._validate_table(config, identifier)
        return config

    def _validate_table(self, config: Optional[DataSourceConfig], identifier: str) -> None:
        if config is None or not config.is_active:
            raise UnauthorizedAccessError(f"未授权的表访问: {identifier}", identifier=identifier)
        if not (SecurityValidator.validate_identifier(config.schema_name)
                and SecurityValidator.validate_identifier(config.table_name)):
            raise UnauthorizedAccessError(
                f"未授权的表访问: {config.qualified_name}",
                identifier=config.qualified_name
            )

    def _validate_field(self, field: Any, config: DataSourceConfig) -> ColumnConfig:
        column = config.get_column(field) if isinstance(field, str) else None
        if column is None or not SecurityValidator.validate_identifier(field):
            raise UnauthorizedAccessError(f"未授权的字段访问: {field}", identifier=str(field))
        return column

    def _validate_operator(self, operator: Any) -> str:
        if operator not in ALLOWED_FILTER_OPERATORS:
            raise UnauthorizedAccessError(f"未授权的操作符: {operator}", identifier=str(operator))
        return operator

    # ------------------------------------------------------------------
    # 筛选条件
    # ------------------------------------------------------------------

    def _build_filters(self, params: AnalyticsQueryParams, mapping: ColumnMapping) -> List[ChartFilter]:
        """把请求参数转换为筛选条件（列名来自列映射）"""
        filters: List[ChartFilter] = []

        if params.measure:
            filters.append(ChartFilter(field="measure", operator="eq", value=params.measure))
        if params.frequency:
            filters.append(ChartFilter(field=mapping.time_period_field, operator="eq", value=params.frequency))
        if params.practice:
            filters.append(ChartFilter(field="practice", operator="eq", value=params.practice))
        if params.practice_primary:
            filters.append(ChartFilter(field="practice_primary", operator="eq", value=params.practice_primary))
        if params.practice_uid is not None:
            filters.append(ChartFilter(
                field=mapping.practice_field or "practice_uid",
                operator="eq",
                value=params.practice_uid
            ))
        if params.provider_name:
            filters.append(ChartFilter(field="provider_name", operator="eq", value=params.provider_name))
        if params.start_date:
            filters.append(ChartFilter(field=mapping.date_field, operator="gte", value=params.start_date))
        if params.end_date:
            filters.append(ChartFilter(field=mapping.date_field, operator="lte", value=params.end_date))

        filters.extend(self._process_advanced_filters(params.advanced_filters))
        return filters

    def _process_advanced_filters(self, advanced_filters: Sequence[ChartFilter]) -> List[ChartFilter]:
        """高级筛选操作符别名 → 标准操作符"""
        filters: List[ChartFilter] = []
        for f in advanced_filters:
            operator, value = f.operator, f.value
            if operator in LIKE_PATTERNS:
                if not isinstance(value, str):
                    raise QueryValidationError(f"{operator} 操作符需要字符串值: {f.field}", parameter=f.field)
                value = LIKE_PATTERNS[operator].format(value)
            operator = ADVANCED_OPERATOR_ALIASES.get(operator, operator)
            filters.append(ChartFilter(field=f.field, operator=operator, value=value))
        return filters

    def _security_field(self, config: DataSourceConfig, resolved: Optional[str], default: str) -> str:
        name = resolved or default
        if config.get_column(name) is None or not SecurityValidator.validate_identifier(name):
            raise ConfigurationError(
                f"数据源 {config.id} 缺少安全过滤所需的列: {default}",
                data_source_id=config.id,
                role=default
            )
        return name

    def build_where_clause(
        self,
        filters: Sequence[ChartFilter],
        context: SecurityContext,
        config: DataSourceConfig,
        mapping: ColumnMapping
    ) -> WhereClause:
        """
        构建 WHERE 子句

        安全条件始终最先加入（诊所、医生），然后是用户筛选条件。

        Args:
            filters: 筛选条件
            context: 安全上下文
            config: 数据源配置
            mapping: 列映射

        Returns:
            WhereClause
        """
        conditions: List[str] = []
        values: List[Any] = []
        fail_closed = False

        def placeholder(value: Any) -> str:
            values.append(value)
            return f"${len(values)}"

        if context.permission_scope != "all":
            if context.accessible_practices:
                field = self._security_field(config, mapping.practice_field, "practice_uid")
                conditions.append(f"{field} = ANY({placeholder(sorted(context.accessible_practices))})")
            elif context.permission_scope == "organization":
                log.log(
                    SECURITY_LEVEL,
                    f"用户 {context.user_id} 权限范围为 organization 但没有可访问的诊所，查询返回零行"
                )
                conditions.append("1 = 0")
                fail_closed = True

        # 医生条件不受权限范围豁免：只要提供了医生集合就加入
        if context.accessible_providers:
            field = self._security_field(config, mapping.provider_field, "provider_uid")
            conditions.append(
                f"({field} IS NULL OR {field} = ANY({placeholder(sorted(context.accessible_providers))}))"
            )
        elif context.permission_scope == "own":
            log.log(
                SECURITY_LEVEL,
                f"用户 {context.user_id} 权限范围为 own 但没有可访问的医生，查询返回零行"
            )
            conditions.append("1 = 0")
            fail_closed = True

        for f in filters:
            column = self._validate_field(f.field, config)
            operator = self._validate_operator(f.operator)
            value = SecurityValidator.sanitize_value(f.value, operator, f.field, column.allowed_values)

            if value is None:
                if operator == "eq":
                    conditions.append(f"{f.field} IS NULL")
                elif operator == "neq":
                    conditions.append(f"{f.field} IS NOT NULL")
                else:
                    raise QueryValidationError(f"{operator} 操作符需要非空值: {f.field}", parameter=f.field)
            elif operator == "in":
                conditions.append(f"{f.field} = ANY({placeholder(value)})")
            elif operator == "not_in":
                conditions.append(f"NOT ({f.field} = ANY({placeholder(value)}))")
            elif operator == "between":
                low, high = placeholder(value[0]), placeholder(value[1])
                conditions.append(f"{f.field} BETWEEN {low} AND {high}")
            else:
                conditions.append(f"{f.field} {ALLOWED_FILTER_OPERATORS[operator]} {placeholder(value)}")

        clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return WhereClause(clause=clause, params=values, fail_closed=fail_closed)

    def _build_order_clause(self, params: AnalyticsQueryParams, config: DataSourceConfig, mapping: ColumnMapping) -> str:
        if not params.order_by:
            return f"ORDER BY {mapping.date_field} ASC"
        parts = []
        for sort in params.order_by:
            self._validate_field(sort.field, config)
            parts.append(f"{sort.field} {sort.direction.upper()}")
        return f"ORDER BY {', '.join(parts)}"

    # ------------------------------------------------------------------
    # SQL 构建
    # ------------------------------------------------------------------

    def build_query(self, params: AnalyticsQueryParams, context: SecurityContext) -> BuiltQuery:
        """
        校验请求并构建数据查询与合计查询

        Raises:
            UnauthorizedAccessError: 表/字段/操作符未授权
            QueryValidationError: 过滤值不合法
            ConfigurationError: 数据源缺少必需的列角色
        """
        config = self._resolve_data_source(params)
        mapping = self.column_mapper.get_mapping(config.id)

        for name in config.column_names():
            if not SecurityValidator.validate_identifier(name):
                raise ConfigurationError(f"数据源 {config.id} 的列名不合法: {name!r}", data_source_id=config.id)

        if params.axis_mapping:
            for field in params.axis_mapping.values():
                self._validate_field(field, config)

        filters = self._build_filters(params, mapping)
        where = self.build_where_clause(filters, context, config, mapping)
        order_clause = self._build_order_clause(params, config, mapping)

        table = config.qualified_name
        sql_parts = [
            f"SELECT {', '.join(config.column_names())}",
            f"FROM {table}",
            where.clause,
            order_clause
        ]
        query_params = list(where.params)
        if params.limit is not None:
            query_params.append(min(params.limit, self.settings.max_query_rows))
            sql_parts.append(f"LIMIT ${len(query_params)}")
        sql = " ".join(p for p in sql_parts if p)

        measure_type = mapping.measure_type_field
        count_parts = [
            f"SELECT CASE WHEN {measure_type} = '{CURRENCY_MEASURE_TYPE}' "
            f"THEN SUM({mapping.measure_field}) ELSE COUNT(*) END AS total, "
            f"{measure_type} AS measure_type",
            f"FROM {table}",
            where.clause,
            f"GROUP BY {measure_type}"
        ]
        count_sql = " ".join(p for p in count_parts if p)

        return BuiltQuery(
            sql=sql,
            params=query_params,
            count_sql=count_sql,
            count_params=list(where.params),
            fail_closed=where.fail_closed,
            data_source=config,
            mapping=mapping
        )

    # ------------------------------------------------------------------
    # 执行
    # ------------------------------------------------------------------

    async def query_measures(
        self,
        params: AnalyticsQueryParams,
        context: SecurityContext,
        timeout: Optional[float] = None
    ) -> AnalyticsQueryResult:
        """
        执行分析查询

        Args:
            params: 查询参数
            context: 安全上下文
            timeout: 单条语句超时（秒），默认取配置

        Returns:
            AnalyticsQueryResult
        """
        if not SecurityValidator.validate_query_complexity(
            params.model_dump(), self.settings.max_filters, self.settings.max_series
        ):
            raise QueryValidationError("查询复杂度超出限制", parameter="advanced_filters")

        if params.multiple_series:
            return await self._query_multiple_series(params, context, timeout)

        if params.period_comparison and params.period_comparison.enabled:
            return await self._query_with_period_comparison(params, context, timeout)

        return await self._execute_cached(params, context, timeout)

    async def _execute_cached(
        self,
        params: AnalyticsQueryParams,
        context: SecurityContext,
        timeout: Optional[float],
        built: Optional[BuiltQuery] = None
    ) -> AnalyticsQueryResult:
        start_time = time.time()
        built = built or self.build_query(params, context)

        if built.fail_closed:
            return AnalyticsQueryResult(
                data=[],
                total_count=0,
                query_time_ms=round((time.time() - start_time) * 1000, 2),
                cache_hit=False
            )

        if self.cache is not None:
            cached = self.cache.get(params, context.user_id)
            if cached is not None:
                if params.limit is None:
                    cached.total_count = calculate_total(cached.data, built.mapping)
                cached.query_time_ms = round((time.time() - start_time) * 1000, 2)
                return cached

        result = await self._execute_base_query(built, context, timeout, start_time)

        if self.cache is not None:
            self.cache.set(params, context.user_id, result)
        return result

    async def _execute_base_query(
        self,
        built: BuiltQuery,
        context: SecurityContext,
        timeout: Optional[float],
        start_time: float
    ) -> AnalyticsQueryResult:
        log.info(
            f"执行分析查询: 数据源={built.data_source.id} 用户={context.user_id} "
            f"范围={context.permission_scope} "
            f"诊所={SecurityValidator.mask_list(context.accessible_practices)}"
        )
        log.debug(f"生成 SQL: {built.sql} | params: {built.params}")

        effective_timeout = timeout if timeout is not None else self.settings.query_timeout_seconds
        data = await self._fetch(built.sql, built.params, "分析数据查询", effective_timeout)
        totals = await self._fetch(built.count_sql, built.count_params, "合计查询", effective_timeout)

        total_count = normalize_total(sum(float(row.get("total") or 0) for row in totals))
        query_time = round((time.time() - start_time) * 1000, 2)

        log.info(f"分析查询完成: {len(data)} 行, 合计={total_count}, 耗时={query_time}ms")
        return AnalyticsQueryResult(
            data=data,
            total_count=total_count,
            query_time_ms=query_time,
            cache_hit=False
        )

    async def _fetch(self, sql: str, params: List[Any], operation: str, timeout: float) -> List[dict]:
        """执行单条语句；失败或超时包装为 QueryExecutionError（不含 SQL 与驱动错误）"""
        try:
            return await asyncio.wait_for(self.executor.fetch(sql, params), timeout=timeout)
        except asyncio.TimeoutError:
            log.error(f"{operation}超时: {timeout}s")
            raise QueryExecutionError(f"{operation}超时", operation=operation) from None
        except AnalyticsError:
            raise
        except Exception as e:
            log.error(f"{operation}失败: {type(e).__name__}: {e}")
            log.debug(f"失败的 SQL: {sql}")
            raise QueryExecutionError(f"{operation}失败", operation=operation) from None

    @staticmethod
    async def _run_concurrently(coroutines: Sequence[Awaitable[AnalyticsQueryResult]]) -> List[AnalyticsQueryResult]:
        """并发执行子查询；任一失败时取消其余子查询并等待其结束"""
        tasks = [asyncio.ensure_future(c) for c in coroutines]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _query_multiple_series(
        self,
        params: AnalyticsQueryParams,
        context: SecurityContext,
        timeout: Optional[float]
    ) -> AnalyticsQueryResult:
        """多序列：每个度量独立查询（各自可命中缓存），并发执行后合并"""
        start_time = time.time()
        series_list = params.multiple_series
        base = params.model_copy(update={"multiple_series": None, "period_comparison": None})

        log.info(f"多序列查询: {len(series_list)} 个序列, 用户={context.user_id}")

        sub_params = [base.model_copy(update={"measure": s.measure}) for s in series_list]
        # 先完成全部校验，再执行任何 SQL
        built_queries = [self.build_query(p, context) for p in sub_params]
        results = await self._run_concurrently([
            self._execute_cached(p, context, timeout, built)
            for p, built in zip(sub_params, built_queries)
        ])

        combined = []
        for series, result in zip(series_list, results):
            for row in result.data:
                tagged = dict(row)
                tagged["series_id"] = series.id
                tagged["series_label"] = series.label or series.measure
                tagged["series_aggregation"] = series.aggregation
                if series.color:
                    tagged["series_color"] = series.color
                combined.append(tagged)

        query_time = round((time.time() - start_time) * 1000, 2)
        log.info(f"多序列查询完成: {len(combined)} 行, 耗时={query_time}ms")
        return AnalyticsQueryResult(
            data=combined,
            total_count=normalize_total(sum(r.total_count for r in results)),
            query_time_ms=query_time,
            cache_hit=all(r.cache_hit for r in results)
        )

    async def _query_with_period_comparison(
        self,
        params: AnalyticsQueryParams,
        context: SecurityContext,
        timeout: Optional[float]
    ) -> AnalyticsQueryResult:
        """周期对比：当前区间与对比区间并发查询后合并"""
        start_time = time.time()
        comparison = params.period_comparison

        if not (params.frequency and params.start_date and params.end_date):
            raise QueryValidationError(
                "周期对比需要 frequency、start_date 与 end_date",
                parameter="period_comparison"
            )
        if not comparison.comparison_type:
            raise QueryValidationError("周期对比需要指定对比类型", parameter="comparison_type")

        comparison_start, comparison_end = calculate_comparison_date_range(
            params.start_date, params.end_date, params.frequency, comparison
        )
        log.info(
            f"周期对比查询: {comparison.comparison_type}, 当前 {params.start_date}~{params.end_date}, "
            f"对比 {comparison_start}~{comparison_end}"
        )

        current_params = params.model_copy(update={"period_comparison": None, "multiple_series": None})
        comparison_params = current_params.model_copy(
            update={"start_date": comparison_start, "end_date": comparison_end}
        )
        current_built = self.build_query(current_params, context)
        comparison_built = self.build_query(comparison_params, context)

        current_result, comparison_result = await self._run_concurrently([
            self._execute_cached(current_params, context, timeout, current_built),
            self._execute_cached(comparison_params, context, timeout, comparison_built)
        ])

        if not current_result.data:
            log.warning(f"当前区间无数据: {params.start_date}~{params.end_date}")
        if not comparison_result.data:
            log.warning(f"对比区间无数据: {comparison_start}~{comparison_end}")

        comparison_label = generate_comparison_label(params.frequency, comparison)
        combined = [
            {**row, "series_id": "current", "series_label": "Current Period", "series_aggregation": "sum"}
            for row in current_result.data
        ]
        combined.extend(
            {**row, "series_id": "comparison", "series_label": comparison_label, "series_aggregation": "sum"}
            for row in comparison_result.data
        )

        return AnalyticsQueryResult(
            data=combined,
            total_count=normalize_total(current_result.total_count + comparison_result.total_count),
            query_time_ms=round((time.time() - start_time) * 1000, 2),
            cache_hit=current_result.cache_hit and comparison_result.cache_hit
        )

    # ------------------------------------------------------------------
    # 缓存预热与生命周期
    # ------------------------------------------------------------------

    async def warm_cache(
        self,
        requests: Sequence[Tuple[AnalyticsQueryParams, SecurityContext]],
        timeout: Optional[float] = None
    ) -> CacheWarmResult:
        """
        缓存预热：预先执行并缓存给定请求

        单个请求失败只记录日志，不中断其余请求。

        Args:
            requests: (查询参数, 安全上下文) 列表
            timeout: 单条语句超时（秒）

        Returns:
            CacheWarmResult
        """
        start_time = time.time()
        if self.cache is None:
            log.warning("未配置结果缓存，跳过预热")
            return CacheWarmResult(skipped=True)

        result = CacheWarmResult()
        for params, context in requests:
            try:
                warmed = await self.query_measures(params, context, timeout)
            except AnalyticsError as e:
                log.warning(f"缓存预热失败: 用户={context.user_id} 数据源={params.data_source_id} - {e}")
                result.failed += 1
                continue
            if warmed.cache_hit:
                result.already_cached += 1
            else:
                result.entries_cached += 1
                result.total_rows += len(warmed.data)

        result.duration_ms = round((time.time() - start_time) * 1000, 2)
        log.info(
            f"缓存预热完成: 新增 {result.entries_cached}, 已存在 {result.already_cached}, "
            f"失败 {result.failed}, {result.total_rows} 行, 耗时={result.duration_ms}ms"
        )
        return result

    def close(self) -> None:
        """停止后台过期清理"""
        if self.cache is not None:
            self.cache.stop_sweeper()


def create_analytics_engine(
    store: DataSourceStore,
    executor: QueryExecutor,
    config: Optional[Settings] = None,
    enable_cache: bool = True
) -> AnalyticsQueryBuilder:
    """
    组装分析引擎（进程启动时调用一次，实例按引用传递）

    启用缓存且 cache_sweeper_enabled 为真时启动后台过期清理，
    进程退出前调用 close() 停止。

    Args:
        store: 数据源配置存储
        executor: SQL 执行器
        config: 配置，默认使用全局 settings
        enable_cache: 是否启用结果缓存

    Returns:
        AnalyticsQueryBuilder
    """
    config = config or default_settings
    resolver = ConfigResolver(store)
    mapper = ColumnMapper(resolver)
    cache = ResultCache(config) if enable_cache else None
    if cache is not None and config.cache_sweeper_enabled:
        cache.start_sweeper()
    return AnalyticsQueryBuilder(resolver, mapper, executor, cache=cache, config=config)
