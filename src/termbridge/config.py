"""termbridge 配置

配置分为以下几类：
- 桥接配置：bridge 脚本解释器、临时脚本目录、超时
- 监控配置：monitor-session 默认时长与轮询间隔
- Shadow shell 配置：本地辅助输出捕获进程
- 日志/指标配置
- Server 配置

所有项都可以通过 TERMBRIDGE_* 环境变量覆盖。
"""

import os
import sys
import tempfile
from pathlib import Path


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# === 桥接配置 ===
BRIDGE_PYTHON = os.environ.get("TERMBRIDGE_PYTHON", sys.executable)  # 运行 bridge 脚本的解释器（需安装 iterm2）
SCRIPT_DIR = Path(
    os.environ.get("TERMBRIDGE_SCRIPT_DIR", Path(tempfile.gettempdir()) / "termbridge")
)  # 临时脚本目录
SCRIPT_PREFIX = "iterm_script_"  # 临时脚本文件名前缀
SCRIPT_SUFFIX = ".py"
SCRIPT_MAX_AGE_SECONDS = _env_float("TERMBRIDGE_SCRIPT_MAX_AGE", 300.0)  # 启动时清理超过该时长的残留脚本
BRIDGE_STEP_TIMEOUT_SECONDS = _env_float("TERMBRIDGE_STEP_TIMEOUT", 30.0)  # 脚本内部 step 预算
BRIDGE_TIMEOUT_SECONDS = _env_float("TERMBRIDGE_TIMEOUT", 35.0)  # 调用方总超时（含进程开销）

# === 监控配置 ===
MONITOR_DEFAULT_SECONDS = 10.0  # monitor-session 默认时长
MONITOR_POLL_INTERVAL = 1.0  # 轮询间隔（秒）
MONITOR_MAX_SECONDS = BRIDGE_STEP_TIMEOUT_SECONDS - 5.0  # 必须小于 step 预算
MONITOR_VARIABLES = {
    "session.path": "working_directory",
    "session.foregroundJob": "foreground_job",
    "session.isAtShellPrompt": "at_shell_prompt",
}

# === Session 变量 ===
SESSION_INFO_VARIABLES = [
    "session.name",
    "session.path",
    "session.foregroundJob",
    "session.title",
    "session.isAtShellPrompt",
    "session.tty",
]
SESSION_DETAIL_VARIABLES = [
    "session.path",
    "session.foregroundJob",
    "session.name",
    "session.isAtShellPrompt",
    "session.title",
    "session.tty",
    "session.hostname",
    "session.username",
    "session.lastCommand",
]
UNKNOWN_VALUE = "Unknown"

# === Tab 颜色配置 ===
NAMED_COLORS: dict[str, tuple[float, float, float]] = {
    "red": (1.0, 0.0, 0.0),
    "green": (0.0, 1.0, 0.0),
    "blue": (0.0, 0.0, 1.0),
    "yellow": (1.0, 1.0, 0.0),
    "purple": (1.0, 0.0, 1.0),
    "cyan": (0.0, 1.0, 1.0),
    "orange": (1.0, 0.5, 0.0),
    "pink": (1.0, 0.7, 0.8),
}
FALLBACK_COLOR = (0.5, 0.5, 0.5)  # 未知颜色名
TAB_COLOR_VAR = "user.tab_color"

# === Shadow shell 配置 ===
SHADOW_SHELL_ENABLED = _env_bool("TERMBRIDGE_SHADOW_SHELL", False)  # 是否为每个 pane 启动本地影子 shell
SHADOW_SHELL = os.environ.get("TERMBRIDGE_SHADOW_SHELL_PATH", "/bin/bash")
SHADOW_OUTPUT_MAX_CHUNKS = 500  # 输出缓冲最大块数
SHADOW_STOP_TIMEOUT_SECONDS = 2.0

# === 日志配置 ===
LOG_LEVEL = os.environ.get("TERMBRIDGE_LOG_LEVEL", "INFO")  # 日志级别
LOG_MAX_CMD_LEN = 120  # 命令日志截断长度

# === 指标配置 ===
METRICS_ENABLED = True  # 是否启用指标收集

# === Server 配置 ===
SERVER_NAME = "enhanced-iterm-python-mcp"
SERVER_VERSION = "0.1.0"
SERVER_INSTRUCTIONS = (
    "Control iTerm2 windows, tabs and panes. Pane ids (pane-N) are returned by "
    "open-terminal and the split tools; pass them to the other tools."
)
