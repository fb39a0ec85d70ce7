"""Tests for SessionTracker"""

import pytest

from termbridge.core.ids import EntityKind
from termbridge.errors import (
    NoActivePaneError,
    PaneNotFoundError,
    TabNotFoundError,
    WindowNotFoundError,
)
from termbridge.session import Pane, Position, SessionTracker, Tab, Window


def open_window(tracker: SessionTracker, session_id: str = "S0") -> Pane:
    """模拟 open-terminal 成功后的 tracker 更新"""
    window = Window(window_id=tracker.allocate(EntityKind.WINDOW))
    tab = Tab(tab_id=tracker.allocate(EntityKind.TAB), window_id=window.window_id)
    pane = Pane(
        pane_id=tracker.allocate(EntityKind.PANE),
        session_id=session_id,
        window_id=window.window_id,
        tab_id=tab.tab_id,
        is_active=True,
    )
    tracker.insert_window(window)
    tracker.insert_tab(tab, under_window=window.window_id)
    tracker.insert_pane(pane, under_tab=tab.tab_id)
    return pane


def split(tracker: SessionTracker, source: Pane, session_id: str) -> Pane:
    new_pane = Pane(
        pane_id=tracker.allocate(EntityKind.PANE),
        session_id=session_id,
        window_id=source.window_id,
        tab_id=source.tab_id,
        position=source.position.offset(dx=1),
    )
    tracker.record_split(source, new_pane)
    return new_pane


class TestPane:
    """Pane 数据类型"""

    def test_empty_session_id_rejected(self):
        with pytest.raises(ValueError):
            Pane(pane_id="pane-0", session_id="", window_id="window-0", tab_id="tab-0")

    def test_session_id_immutable(self):
        pane = Pane(pane_id="pane-0", session_id="S0", window_id="window-0", tab_id="tab-0")
        with pytest.raises(AttributeError):
            pane.session_id = "S1"

    def test_refresh_keeps_unset_fields(self):
        pane = Pane(
            pane_id="pane-0",
            session_id="S0",
            window_id="window-0",
            tab_id="tab-0",
            title="zsh",
        )
        pane.refresh(working_directory="/tmp")
        assert pane.title == "zsh"
        assert pane.working_directory == "/tmp"

    def test_position_offset(self):
        assert Position(1, 2).offset(dx=1) == Position(2, 2)
        assert Position(1, 2).offset(dy=1) == Position(1, 3)


class TestInsert:
    """插入与父子关系"""

    def test_open_links_all_three(self):
        tracker = SessionTracker()
        pane = open_window(tracker)

        window = tracker.get_window(pane.window_id)
        tab = tracker.get_tab(pane.tab_id)
        assert pane.pane_id == "pane-0"
        assert window.tabs == {tab.tab_id: tab}
        assert tab.panes == {pane.pane_id: pane}
        assert window.active_tab_id == tab.tab_id
        assert tab.active_pane_id == pane.pane_id

    def test_window_with_tabs_rejected(self):
        tracker = SessionTracker()
        window = Window(window_id="window-0")
        window.tabs["tab-0"] = Tab(tab_id="tab-0", window_id="window-0")
        with pytest.raises(ValueError):
            tracker.insert_window(window)

    def test_tab_under_unknown_window(self):
        tracker = SessionTracker()
        with pytest.raises(WindowNotFoundError):
            tracker.insert_tab(Tab(tab_id="tab-0", window_id="window-9"), under_window="window-9")

    def test_pane_parent_mismatch(self):
        tracker = SessionTracker()
        pane = open_window(tracker)
        stray = Pane(pane_id="pane-9", session_id="S9", window_id="window-5", tab_id=pane.tab_id)
        with pytest.raises(ValueError):
            tracker.insert_pane(stray, under_tab=pane.tab_id)

    def test_duplicate_pane_rejected(self):
        tracker = SessionTracker()
        pane = open_window(tracker)
        with pytest.raises(ValueError):
            tracker.insert_pane(pane, under_tab=pane.tab_id)


class TestLookup:
    """查询"""

    def test_unknown_pane(self):
        with pytest.raises(PaneNotFoundError, match="Pane pane-7 not found"):
            SessionTracker().get_pane("pane-7")

    def test_lookup_by_kind(self):
        tracker = SessionTracker()
        pane = open_window(tracker)
        assert tracker.lookup("pane", pane.pane_id) is pane
        assert tracker.lookup(EntityKind.TAB, pane.tab_id).tab_id == pane.tab_id
        with pytest.raises(TabNotFoundError):
            tracker.lookup("tab", "tab-9")

    def test_find_by_session_ignores_prefix(self):
        tracker = SessionTracker()
        pane = open_window(tracker, session_id="ABC-123")
        assert tracker.find_by_session("w0t0p0:ABC-123") is pane
        assert tracker.find_by_session("XYZ") is None


class TestDefaultPane:
    """默认 pane 解析"""

    def test_no_panes(self):
        with pytest.raises(NoActivePaneError, match="No active pane found"):
            SessionTracker().resolve_default_pane()

    def test_most_recent_active_wins(self):
        tracker = SessionTracker()
        open_window(tracker, "S0")
        second = open_window(tracker, "S1")
        assert tracker.resolve_default_pane() is second

    def test_split_moves_default(self):
        tracker = SessionTracker()
        source = open_window(tracker)
        new_pane = split(tracker, source, "S1")

        assert not source.is_active
        assert new_pane.is_active
        assert tracker.get_tab(source.tab_id).active_pane_id == new_pane.pane_id
        assert tracker.resolve_default_pane() is new_pane
        assert new_pane.position == Position(1, 0)


class TestRemove:
    """移除与对账"""

    def test_remove_active_promotes_successor(self):
        tracker = SessionTracker()
        source = open_window(tracker)
        new_pane = split(tracker, source, "S1")

        tracker.remove_pane(new_pane.pane_id)

        tab = tracker.get_tab(source.tab_id)
        assert tab.active_pane_id == source.pane_id
        assert source.is_active
        assert not tracker.has_pane(new_pane.pane_id)

    def test_remove_last_pane_drops_tab_and_window(self):
        tracker = SessionTracker()
        pane = open_window(tracker)

        tracker.remove_pane(pane.pane_id)

        assert tracker.pane_count == 0
        assert tracker.tab_count == 0
        assert tracker.window_count == 0

    def test_removed_ids_not_reused(self):
        tracker = SessionTracker()
        pane = open_window(tracker)
        tracker.remove_pane(pane.pane_id)
        assert open_window(tracker, "S1").pane_id == "pane-1"

    def test_prune_removes_dead_sessions(self):
        tracker = SessionTracker()
        alive = open_window(tracker, "S0")
        dead = split(tracker, alive, "S1")

        removed = tracker.prune(["w0t0p0:S0"])

        assert removed == [dead]
        assert tracker.has_pane(alive.pane_id)
        assert tracker.get_tab(alive.tab_id).active_pane_id == alive.pane_id


class TestSnapshot:
    """get-terminal-state 快照"""

    def test_empty(self):
        assert SessionTracker().snapshot() == {"windows": 0, "tabs": 0, "panes": 0, "details": []}

    def test_tree(self):
        tracker = SessionTracker()
        source = open_window(tracker)
        split(tracker, source, "S1")
        tracker.get_tab(source.tab_id).color = "red"

        snapshot = tracker.snapshot()

        assert snapshot["windows"] == 1
        assert snapshot["panes"] == 2
        tab = snapshot["details"][0]["tabs"][0]
        assert tab == {
            "tabId": "tab-0",
            "activePaneId": "pane-1",
            "color": "red",
            "panes": ["pane-0", "pane-1"],
        }
