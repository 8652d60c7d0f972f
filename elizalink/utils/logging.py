"""
日志配置模块 - 基于 loguru 的结构化日志过滤。

库内各模块只调用 `from loguru import logger` 打日志，从不自己添加 sink；
sink 与过滤规则由进程入口（CLI）调用 setup_logging() 一次性配置。

过滤规则（LogFilter）：
- 默认最低级别 level
- categories：按模块名前缀设置独立的最低级别（最长前缀优先）
- suppress：消息中包含指定字符串时直接丢弃

stdout 保留给 MCP stdio 协议使用，所有日志只写 stderr 或日志文件。
"""

import sys
from typing import Any

from loguru import logger

from elizalink.config.schema import LoggingConfig


class LogFilter:
    """
    loguru 的 filter 回调：按级别、模块分类和屏蔽关键字决定是否输出一条日志。

    属性:
        level_no: 默认最低级别的数值
        categories: [(模块前缀, 最低级别数值)]，按前缀长度降序排列
        suppress: 需要屏蔽的消息子串
    """

    def __init__(
        self,
        level: str = "INFO",
        categories: dict[str, str] | None = None,
        suppress: list[str] | None = None,
    ):
        self.level_no = logger.level(level.upper()).no
        self.categories = sorted(
            ((prefix, logger.level(lvl.upper()).no) for prefix, lvl in (categories or {}).items()),
            key=lambda item: len(item[0]),
            reverse=True,
        )
        self.suppress = [s for s in (suppress or []) if s]

    def _min_level(self, name: str | None) -> int:
        name = name or ""
        for prefix, level_no in self.categories:
            if name == prefix or name.startswith(prefix + "."):
                return level_no
        return self.level_no

    def __call__(self, record: dict[str, Any]) -> bool:
        if record["level"].no < self._min_level(record["name"]):
            return False
        message = record["message"]
        return not any(s in message for s in self.suppress)


def setup_logging(config: LoggingConfig, stderr: bool = True) -> LogFilter:
    """
    根据 LoggingConfig 重新配置 loguru 的 sink。

    参数:
        config: 日志配置
        stderr: 是否输出到标准错误

    返回:
        使用中的 LogFilter 实例（便于测试和调试）
    """
    log_filter = LogFilter(config.level, config.categories, config.suppress)
    logger.remove()
    if stderr:
        # sink 自身不设级别，级别判断全部交给 filter
        logger.add(sys.stderr, level=0, filter=log_filter)
    if config.log_file:
        logger.add(config.log_file, level=0, filter=log_filter, rotation=config.rotation, enqueue=True)
    return log_filter
