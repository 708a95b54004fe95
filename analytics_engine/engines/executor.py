"""Query Executor - 只读 SQL 执行器"""

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Protocol, Sequence

import duckdb

from analytics_engine.utils.logger import log


class QueryExecutor(Protocol):
    """参数化 SQL 执行接口（占位符为 $1, $2, ...）"""

    async def fetch(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        ...


class DuckDBExecutor:
    """DuckDB 执行器"""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """获取 DuckDB 连接"""
        return duckdb.connect(str(self.db_path))

    async def fetch(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        """
        执行查询并返回字典行

        阻塞调用放在工作线程中执行；等待方被取消（超时）时中断连接上的语句。
        """
        conn = self._get_connection()
        try:
            return await asyncio.to_thread(self._run, conn, sql, list(params))
        except asyncio.CancelledError:
            log.warning("查询被取消，中断 DuckDB 语句")
            conn.interrupt()
            raise

    @staticmethod
    def _run(conn: duckdb.DuckDBPyConnection, sql: str, params: List[Any]) -> List[Dict[str, Any]]:
        # 连接由工作线程关闭，取消时协程只负责 interrupt
        try:
            cursor = conn.execute(sql, params)
            columns = [d[0] for d in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            conn.close()
