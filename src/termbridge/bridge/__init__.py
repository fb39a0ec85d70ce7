"""Bridge 模块 - 通过独立进程调用 iTerm2 Python API"""

from .runner import BridgeRunner, render_script
from .steps import StepBuilder, StepProgram

__all__ = [
    "BridgeRunner",
    "StepBuilder",
    "StepProgram",
    "render_script",
]
