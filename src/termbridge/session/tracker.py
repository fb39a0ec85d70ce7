"""SessionTracker - 内存中的 window → tab → pane 层级

职责：
- 分配单调递增的本地 id
- 维护 Window/Tab/Pane 记录及父子关系
- 解析默认 pane（未指定 paneId 时）
- 与 iTerm2 实际 session 列表对账，移除过期 pane

只有 ToolDispatcher 会修改 tracker，并且只在对应的 bridge 调用成功之后。
"""

import itertools
from collections.abc import Iterable, Iterator

from ..core.ids import EntityKind, IdAllocator, normalize_id
from ..errors import NoActivePaneError, PaneNotFoundError, TabNotFoundError, WindowNotFoundError
from ..telemetry import get_logger
from .types import Pane, Tab, Window

logger = get_logger(__name__)


class SessionTracker:
    """Session 层级追踪器

    Attributes:
        windows: {window_id: Window}
        tabs: {tab_id: Tab}
        panes: {pane_id: Pane}
    """

    def __init__(self, allocator: IdAllocator | None = None):
        self._allocator = allocator or IdAllocator()
        self._windows: dict[str, Window] = {}
        self._tabs: dict[str, Tab] = {}
        self._panes: dict[str, Pane] = {}
        self._seq = itertools.count(1)

    # === id 分配 ===

    def allocate(self, kind: EntityKind | str) -> str:
        """分配新的本地 id（不会失败，不会复用）"""
        return self._allocator.allocate(kind)

    # === 查询 ===

    def get_window(self, window_id: str) -> Window:
        window = self._windows.get(window_id)
        if window is None:
            raise WindowNotFoundError(window_id)
        return window

    def get_tab(self, tab_id: str) -> Tab:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise TabNotFoundError(tab_id)
        return tab

    def get_pane(self, pane_id: str) -> Pane:
        pane = self._panes.get(pane_id)
        if pane is None:
            raise PaneNotFoundError(pane_id)
        return pane

    def lookup(self, kind: EntityKind | str, identifier: str) -> Window | Tab | Pane:
        """按类型查找实体

        Raises:
            WindowNotFoundError / TabNotFoundError / PaneNotFoundError
        """
        kind = EntityKind(kind)
        if kind == EntityKind.WINDOW:
            return self.get_window(identifier)
        if kind == EntityKind.TAB:
            return self.get_tab(identifier)
        return self.get_pane(identifier)

    def has_pane(self, pane_id: str) -> bool:
        return pane_id in self._panes

    def find_by_session(self, session_id: str) -> Pane | None:
        """按 iTerm2 session id 查找 pane"""
        target = normalize_id(session_id)
        for pane in self._panes.values():
            if normalize_id(pane.session_id) == target:
                return pane
        return None

    def resolve_default_pane(self) -> Pane:
        """未指定 paneId 时的目标 pane

        规则：active 标记的 pane 中最近创建的一个。

        Raises:
            NoActivePaneError: 没有 active pane
        """
        active = [pane for pane in self._panes.values() if pane.is_active]
        if not active:
            raise NoActivePaneError()
        return max(active, key=lambda pane: pane.created_seq)

    def iter_panes(self) -> Iterator[Pane]:
        return iter(list(self._panes.values()))

    def iter_windows(self) -> Iterator[Window]:
        return iter(list(self._windows.values()))

    @property
    def window_count(self) -> int:
        return len(self._windows)

    @property
    def tab_count(self) -> int:
        return len(self._tabs)

    @property
    def pane_count(self) -> int:
        return len(self._panes)

    # === 插入 ===

    def insert_window(self, window: Window) -> None:
        """插入新 window（必须为空）"""
        if window.window_id in self._windows:
            raise ValueError(f"Window {window.window_id} already tracked")
        if window.tabs:
            raise ValueError("insert tabs through insert_tab")
        self._windows[window.window_id] = window
        logger.debug(f"[Tracker] Window added: {window.window_id}")

    def insert_tab(self, tab: Tab, under_window: str) -> None:
        """在已存在的 window 下插入 tab"""
        window = self.get_window(under_window)
        if tab.tab_id in self._tabs:
            raise ValueError(f"Tab {tab.tab_id} already tracked")
        if tab.window_id != window.window_id:
            raise ValueError(f"Tab {tab.tab_id} belongs to {tab.window_id}, not {window.window_id}")
        if tab.panes:
            raise ValueError("insert panes through insert_pane")

        window.tabs[tab.tab_id] = tab
        self._tabs[tab.tab_id] = tab
        if window.active_tab_id is None:
            window.active_tab_id = tab.tab_id
        logger.debug(f"[Tracker] Tab added: {tab.tab_id} -> {window.window_id}")

    def insert_pane(self, pane: Pane, under_tab: str) -> None:
        """在已存在的 tab 下插入 pane

        Pane 的 window_id/tab_id 必须与父节点一致。
        """
        tab = self.get_tab(under_tab)
        if pane.pane_id in self._panes:
            raise ValueError(f"Pane {pane.pane_id} already tracked")
        if pane.tab_id != tab.tab_id or pane.window_id != tab.window_id:
            raise ValueError(
                f"Pane {pane.pane_id} parents ({pane.window_id}/{pane.tab_id}) "
                f"do not match {tab.window_id}/{tab.tab_id}"
            )

        pane.created_seq = next(self._seq)
        tab.panes[pane.pane_id] = pane
        self._panes[pane.pane_id] = pane
        if pane.is_active or tab.active_pane_id is None:
            tab.active_pane_id = pane.pane_id
        logger.debug(f"[Tracker] Pane added: {pane.pane_id} -> {tab.tab_id}")

    def record_split(self, source: Pane, new_pane: Pane) -> None:
        """记录一次 split：新 pane 成为 active，源 pane 降级"""
        new_pane.is_active = True
        self.insert_pane(new_pane, under_tab=source.tab_id)
        source.is_active = False

    # === 移除 / 对账 ===

    def remove_pane(self, pane_id: str) -> Pane:
        """移除 pane；tab/window 为空时一并移除

        Returns:
            被移除的 Pane（调用方负责停止其 shadow shell）
        """
        pane = self.get_pane(pane_id)
        tab = self._tabs[pane.tab_id]
        window = self._windows[pane.window_id]

        del self._panes[pane_id]
        del tab.panes[pane_id]

        if tab.panes:
            if tab.active_pane_id == pane_id:
                successor = max(tab.panes.values(), key=lambda p: p.created_seq)
                successor.is_active = True
                tab.active_pane_id = successor.pane_id
        else:
            del self._tabs[tab.tab_id]
            del window.tabs[tab.tab_id]
            if window.tabs:
                if window.active_tab_id == tab.tab_id:
                    window.active_tab_id = next(reversed(window.tabs))
            else:
                del self._windows[window.window_id]

        logger.info(f"[Tracker] Pane removed: {pane_id}")
        return pane

    def prune(self, live_session_ids: Iterable[str]) -> list[Pane]:
        """移除 iTerm2 中已不存在的 pane

        Args:
            live_session_ids: iTerm2 当前所有 session id

        Returns:
            被移除的 Pane 列表
        """
        live = {normalize_id(session_id) for session_id in live_session_ids}
        stale = [
            pane.pane_id
            for pane in self._panes.values()
            if normalize_id(pane.session_id) not in live
        ]
        return [self.remove_pane(pane_id) for pane_id in stale]

    # === 快照 ===

    def snapshot(self) -> dict:
        """完整层级概览"""
        return {
            "windows": len(self._windows),
            "tabs": len(self._tabs),
            "panes": len(self._panes),
            "details": [
                {
                    "windowId": window.window_id,
                    "activeTabId": window.active_tab_id,
                    "tabs": [
                        {
                            "tabId": tab.tab_id,
                            "activePaneId": tab.active_pane_id,
                            "color": tab.color,
                            "panes": list(tab.panes.keys()),
                        }
                        for tab in window.tabs.values()
                    ],
                }
                for window in self._windows.values()
            ],
        }
