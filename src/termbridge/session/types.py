"""Session 层级数据类型

包含：
- Position: pane 在 tab 内的逻辑坐标（仅用于布局记账，不是真实几何）
- Pane / Tab / Window: 追踪的三层结构
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .shadow import ShadowShell


@dataclass
class Position:
    """逻辑坐标"""

    x: int = 0
    y: int = 0

    def offset(self, dx: int = 0, dy: int = 0) -> "Position":
        """返回偏移后的新坐标"""
        return Position(self.x + dx, self.y + dy)


@dataclass
class Pane:
    """Pane - 最小的终端单元

    session_id 是与 iTerm2 关联的唯一 key，设置后不可修改。
    title / working_directory / foreground_job 是缓存的参考值，可能过期。
    """

    pane_id: str
    session_id: str
    window_id: str
    tab_id: str
    position: Position = field(default_factory=Position)
    is_active: bool = False
    title: str | None = None
    working_directory: str | None = None
    foreground_job: str | None = None
    created_seq: int = 0
    shadow: "ShadowShell | None" = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if not self.session_id:
            raise ValueError(f"Pane {self.pane_id} requires a session id")

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "session_id" and getattr(self, "session_id", None):
            raise AttributeError(f"session_id of {self.pane_id} is immutable")
        super().__setattr__(name, value)

    def refresh(
        self,
        title: str | None = None,
        working_directory: str | None = None,
        foreground_job: str | None = None,
    ) -> None:
        """更新缓存字段（None 表示保持原值）"""
        if title is not None:
            self.title = title
        if working_directory is not None:
            self.working_directory = working_directory
        if foreground_job is not None:
            self.foreground_job = foreground_job


@dataclass
class Tab:
    """Tab - 拥有一组 pane"""

    tab_id: str
    window_id: str
    panes: dict[str, Pane] = field(default_factory=dict)
    active_pane_id: str | None = None
    color: str | None = None
    external_id: str | None = None


@dataclass
class Window:
    """Window - 拥有一组 tab"""

    window_id: str
    tabs: dict[str, Tab] = field(default_factory=dict)
    active_tab_id: str | None = None
    external_id: str | None = None
