"""Telemetry - 统一日志和指标入口

提供统一的日志工厂和指标 facade，便于观测性追踪。

日志格式: [Component] msg
指标示例: bridge.calls, bridge.errors, bridge.timeouts, tool.calls, scripts.cleaned
"""

import logging
from collections import Counter

from rich.console import Console
from rich.logging import RichHandler

from . import config

_LOG_FORMAT = "[%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """获取带模块前缀的 logger

    Args:
        name: 模块名（通常使用 __name__）

    Returns:
        Logger 实例
    """
    return logging.getLogger(name)


def configure_logging(level: str | None = None) -> None:
    """配置根 logger

    stdout 属于 MCP stdio transport，所以日志只能写 stderr。

    Args:
        level: 日志级别，None 使用 config.LOG_LEVEL
    """
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel((level or config.LOG_LEVEL).upper())


def truncate_command(command: str, max_len: int | None = None) -> str:
    """截断命令用于日志输出"""
    max_len = max_len or config.LOG_MAX_CMD_LEN
    command = command.replace("\n", "\\n")
    if len(command) <= max_len:
        return command
    return command[:max_len] + "..."

LabelKey = tuple[tuple[str, str], ...]


class Metrics:
    """进程内计数器

    每个 (name, labels) 组合是一条独立序列；server 关闭时输出一次汇总。
    """

    def __init__(self):
        self._counters: Counter[tuple[str, LabelKey]] = Counter()

    @staticmethod
    def _series(name: str, labels: dict[str, str] | None) -> tuple[str, LabelKey]:
        return name, tuple(sorted((labels or {}).items()))

    def inc(self, name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
        """递增计数器

        Args:
            name: 指标名，如 "bridge.errors"
            labels: 可选标签，如 {"kind": "BridgeTimeoutError"}
            value: 递增值
        """
        if config.METRICS_ENABLED:
            self._counters[self._series(name, labels)] += value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        return self._counters[self._series(name, labels)]

    def snapshot(self) -> dict[str, int]:
        """{"tool.calls{tool=list_panes}": 3, ...}"""
        result = {}
        for (name, labels), count in sorted(self._counters.items()):
            label_str = ",".join(f"{k}={v}" for k, v in labels)
            result[f"{name}{{{label_str}}}" if labels else name] = count
        return result

    def reset(self) -> None:
        self._counters.clear()


metrics = Metrics()
