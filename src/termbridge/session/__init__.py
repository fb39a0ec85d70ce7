"""Session 模块

提供 window → tab → pane 层级追踪：
- SessionTracker: 层级追踪器
- Pane / Tab / Window: 数据类型
- ShadowShell: 可选的本地辅助输出捕获
"""

from .shadow import ShadowShell
from .tracker import SessionTracker
from .types import Pane, Position, Tab, Window

__all__ = [
    "SessionTracker",
    "ShadowShell",
    "Pane",
    "Tab",
    "Window",
    "Position",
]
