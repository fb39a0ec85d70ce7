"""Tool 返回文本的格式化"""

import json
from typing import Any

from .session.types import Pane


def json_block(title: str, data: Any) -> str:
    """标题 + 缩进 JSON"""
    return f"{title}\n{json.dumps(data, indent=2, ensure_ascii=False, default=str)}"


def format_pane_line(pane: Pane) -> str:
    return (
        f"{pane.pane_id}: Window={pane.window_id}, Tab={pane.tab_id}, "
        f"Session={pane.session_id}, Position=({pane.position.x},{pane.position.y}), "
        f"Active={str(pane.is_active).lower()}"
    )


def format_pane_list(panes: list[Pane]) -> str:
    lines = [format_pane_line(pane) for pane in panes]
    return f"Total panes: {len(panes)}\n" + ("\n".join(lines) or "No panes found")


_DETAIL_LABELS = [
    ("Working Directory", "session.path"),
    ("Foreground Job", "session.foregroundJob"),
    ("Session Name", "session.name"),
    ("Session Title", "session.title"),
    ("TTY", "session.tty"),
    ("Hostname", "session.hostname"),
    ("Username", "session.username"),
    ("Last Command", "session.lastCommand"),
    ("At Shell Prompt", "session.isAtShellPrompt"),
]


def format_session_details(requested_id: str, data: dict, unknown: str) -> str:
    """get-session-details 输出"""
    variables = data.get("variables", {})
    size = data.get("size", {})
    lines = [
        f"Detailed Session Information ({requested_id}):",
        f"Session ID: {data.get('sessionId', unknown)}",
    ]
    lines.extend(f"{label}: {variables.get(name, unknown)}" for label, name in _DETAIL_LABELS)
    lines.append(
        f"Terminal Size: {size.get('columns', unknown)}x{size.get('rows', unknown)} (cols x rows)"
    )
    return "\n".join(lines)
