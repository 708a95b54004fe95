"""日志配置"""

import sys
from loguru import logger as log

from analytics_engine.core.config import settings

# 安全审计日志级别（介于 WARNING 与 ERROR 之间）
SECURITY_LEVEL = "SECURITY"

log.remove()
log.add(
    sys.stderr,
    level=settings.log_level,
    format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
           "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
log.add(
    settings.log_file,
    level=settings.log_level,
    rotation="10 MB",
    retention="14 days",
    encoding="utf-8",
    enqueue=True
)
log.level(SECURITY_LEVEL, no=35, color="<magenta><bold>")

__all__ = ["log", "SECURITY_LEVEL"]
