"""ToolDispatcher - 每个 tool 一个入口

流程：参数校验 → 通过 tracker 解析本地 id → 构造 step program（只含 iTerm2
session id）→ BridgeRunner 执行 → 成功后更新 tracker → 返回格式化文本。

所有失败都在 operation 边界转换为返回文本，不会向调用方抛出。
"""

import functools
import math
import shlex
from collections.abc import Awaitable, Callable
from typing import Any

from . import config
from .bridge import BridgeRunner, StepBuilder
from .colors import parse_color
from .core.ids import EntityKind, normalize_id, short_id
from .errors import (
    BridgeDomainError,
    BridgeError,
    BridgeProtocolError,
    NoValidPanesError,
    ResolutionError,
    ValidationError,
)
from .formatters import format_pane_list, format_session_details, json_block
from .session import Pane, SessionTracker, ShadowShell, Tab, Window
from .telemetry import get_logger, metrics, truncate_command

logger = get_logger(__name__)

ShadowFactory = Callable[[str], ShadowShell]


def operation(action: str) -> Callable:
    """Tool 边界：把各类异常转换为返回文本

    Args:
        action: 失败消息中的动作描述，如 "create terminal"
    """

    def decorator(func: Callable[..., Awaitable[str]]) -> Callable[..., Awaitable[str]]:
        @functools.wraps(func)
        async def wrapper(self: "ToolDispatcher", *args: Any, **kwargs: Any) -> str:
            tool = func.__name__
            metrics.inc("tool.calls", {"tool": tool})
            try:
                return await func(self, *args, **kwargs)
            except ValidationError as e:
                metrics.inc("tool.errors", {"tool": tool})
                return f"Invalid arguments: {e}"
            except ResolutionError as e:
                metrics.inc("tool.errors", {"tool": tool})
                return str(e)
            except BridgeDomainError as e:
                metrics.inc("tool.errors", {"tool": tool})
                return f"Error: {e}"
            except BridgeError as e:
                metrics.inc("tool.errors", {"tool": tool})
                logger.error(f"[Dispatcher] {tool} failed: {e}")
                return f"Failed to {action}: {e}"
            except Exception as e:
                metrics.inc("tool.errors", {"tool": tool})
                logger.exception(f"[Dispatcher] {tool} crashed")
                return f"Failed to {action}: unexpected error: {e}"

        return wrapper

    return decorator


# === 参数校验 ===


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or value == "":
        raise ValidationError(f"{name} must be a non-empty string")
    return value


def _optional_text(name: str, value: Any) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    return value


def _require_duration(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError("duration must be a number of seconds")
    if value <= 0 or value > config.MONITOR_MAX_SECONDS:
        raise ValidationError(
            f"duration must be greater than 0 and at most {config.MONITOR_MAX_SECONDS:g} seconds"
        )
    return float(value)


def _require_pane_ids(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError("paneIds must be a list of pane ids")
    return list(dict.fromkeys(value))


def _require_field(data: dict, key: str) -> Any:
    if key not in data or data[key] in (None, ""):
        raise BridgeProtocolError(f"Bridge payload is missing '{key}'", output=str(data))
    return data[key]


class ToolDispatcher:
    """Tool 调度器

    Attributes:
        tracker: 注入的 SessionTracker
        runner: 注入的 BridgeRunner
    """

    def __init__(
        self,
        tracker: SessionTracker,
        runner: BridgeRunner,
        shadow_enabled: bool | None = None,
        shadow_factory: ShadowFactory | None = None,
    ):
        self.tracker = tracker
        self.runner = runner
        self._shadow_enabled = config.SHADOW_SHELL_ENABLED if shadow_enabled is None else shadow_enabled
        self._shadow_factory = shadow_factory or ShadowShell

    # === 内部工具 ===

    def _resolve_target(self, pane_id: str | None) -> Pane:
        if pane_id is None:
            return self.tracker.resolve_default_pane()
        return self.tracker.get_pane(pane_id)

    async def _attach_shadow(self, pane: Pane) -> None:
        if not self._shadow_enabled:
            return
        shadow = self._shadow_factory(pane.pane_id)
        try:
            await shadow.start()
        except OSError as e:
            logger.warning(f"[Dispatcher] Shadow shell for {pane.pane_id} unavailable: {e}")
            return
        pane.shadow = shadow

    async def _release(self, panes: list[Pane]) -> None:
        for pane in panes:
            if pane.shadow is not None:
                await pane.shadow.stop()
                pane.shadow = None

    async def close(self) -> None:
        """停止所有 shadow shell"""
        await self._release(list(self.tracker.iter_panes()))

    # === open / split ===

    @operation("create terminal")
    async def open_terminal(
        self,
        profile: str | None = None,
        command: str | None = None,
        working_directory: str | None = None,
    ) -> str:
        profile = _optional_text("profile", profile)
        command = _optional_text("command", command)
        working_directory = _optional_text("workingDirectory", working_directory)

        builder = StepBuilder().create_window(profile=profile)
        if working_directory:
            builder.send_text(f"cd {shlex.quote(working_directory)}\n")
        if command:
            builder.send_text(command + "\n")
        builder.export("session_id", "sessionId")
        builder.export("window_id", "realWindowId")
        builder.export("tab_id", "realTabId")

        data = await self.runner.execute(builder.build())
        session_id = _require_field(data, "sessionId")

        window = Window(
            window_id=self.tracker.allocate(EntityKind.WINDOW),
            external_id=data.get("realWindowId"),
        )
        tab = Tab(
            tab_id=self.tracker.allocate(EntityKind.TAB),
            window_id=window.window_id,
            external_id=data.get("realTabId"),
        )
        pane = Pane(
            pane_id=self.tracker.allocate(EntityKind.PANE),
            session_id=session_id,
            window_id=window.window_id,
            tab_id=tab.tab_id,
            is_active=True,
            working_directory=working_directory,
        )
        self.tracker.insert_window(window)
        self.tracker.insert_tab(tab, under_window=window.window_id)
        self.tracker.insert_pane(pane, under_tab=tab.tab_id)
        await self._attach_shadow(pane)

        logger.info(f"[Dispatcher] Opened {window.window_id}/{tab.tab_id}/{pane.pane_id} ({short_id(session_id)})")
        return (
            f"Terminal opened - Window: {window.window_id}, Tab: {tab.tab_id}, "
            f"Pane: {pane.pane_id}, Session: {session_id}"
        )

    async def _split(
        self,
        vertical: bool,
        pane_id: str | None,
        profile: str | None,
        command: str | None,
    ) -> str:
        pane_id = _optional_text("paneId", pane_id)
        profile = _optional_text("profile", profile)
        command = _optional_text("command", command)
        source = self._resolve_target(pane_id)

        builder = StepBuilder().find_session(source.session_id).split(vertical=vertical, profile=profile)
        if command:
            builder.send_text(command + "\n", ref="new")
        builder.export("session_id", "newSessionId", ref="new")

        data = await self.runner.execute(builder.build())
        new_session_id = _require_field(data, "newSessionId")

        position = source.position.offset(dx=1) if vertical else source.position.offset(dy=1)
        new_pane = Pane(
            pane_id=self.tracker.allocate(EntityKind.PANE),
            session_id=new_session_id,
            window_id=source.window_id,
            tab_id=source.tab_id,
            position=position,
        )
        self.tracker.record_split(source, new_pane)
        await self._attach_shadow(new_pane)

        orientation = "vertically" if vertical else "horizontally"
        logger.info(f"[Dispatcher] Split {source.pane_id} {orientation} -> {new_pane.pane_id}")
        return f"Pane split {orientation} - New pane: {new_pane.pane_id}, Session: {new_session_id}"

    @operation("split pane horizontally")
    async def split_terminal_horizontal(
        self,
        pane_id: str | None = None,
        profile: str | None = None,
        command: str | None = None,
    ) -> str:
        return await self._split(False, pane_id, profile, command)

    @operation("split pane vertically")
    async def split_terminal_vertical(
        self,
        pane_id: str | None = None,
        profile: str | None = None,
        command: str | None = None,
    ) -> str:
        return await self._split(True, pane_id, profile, command)

    # === 命令 ===

    @operation("execute command in pane")
    async def execute_command(self, pane_id: str, command: str) -> str:
        pane_id = _require_text("paneId", pane_id)
        command = _require_text("command", command)
        pane = self.tracker.get_pane(pane_id)

        program = StepBuilder().find_session(pane.session_id).send_text(command + "\n").build()
        await self.runner.execute(program)

        if pane.shadow is not None:
            await pane.shadow.write(command)

        logger.info(f"[Dispatcher] {pane_id} <- {truncate_command(command)}")
        return f"Command executed in pane {pane_id}: {command}"

    @operation("broadcast input")
    async def broadcast_input(self, pane_ids: list[str], command: str) -> str:
        pane_ids = _require_pane_ids(pane_ids)
        command = _require_text("command", command)

        targets = [self.tracker.get_pane(pid) for pid in pane_ids if self.tracker.has_pane(pid)]
        if not targets:
            raise NoValidPanesError()

        builder = StepBuilder()
        for pane in targets:
            builder.send_text_to(pane.session_id, command + "\n", collect="broadcast_results")
        data = await self.runner.execute(builder.build())
        results = data.get("broadcast_results", [])

        succeeded = {entry.get("session_id") for entry in results if entry.get("success")}
        for pane in targets:
            if pane.shadow is not None and pane.session_id in succeeded:
                await pane.shadow.write(command)

        return json_block(
            f'Broadcast Results:\nCommand "{command}" sent to {len(succeeded)} of {len(results)} panes',
            results,
        )

    # === 信息 ===

    @operation("get session info")
    async def get_session_info(self, pane_id: str) -> str:
        pane_id = _require_text("paneId", pane_id)
        pane = self.tracker.get_pane(pane_id)

        program = (
            StepBuilder()
            .find_session(pane.session_id)
            .export("session_id", "sessionId")
            .get_variables(config.SESSION_INFO_VARIABLES, into="variables")
            .grid_size(into="size")
            .build()
        )
        data = await self.runner.execute(program)
        variables = data.get("variables", {})
        size = data.get("size", {})

        info = {
            "success": True,
            "session_id": data.get("sessionId", pane.session_id),
            "name": variables.get("session.name"),
            "working_directory": variables.get("session.path"),
            "foreground_job": variables.get("session.foregroundJob"),
            "title": variables.get("session.title"),
            "columns": size.get("columns"),
            "rows": size.get("rows"),
            "is_at_shell_prompt": variables.get("session.isAtShellPrompt"),
            "tty": variables.get("session.tty"),
        }
        if pane.shadow is not None:
            info["shadow_output_lines"] = pane.shadow.line_count

        pane.refresh(
            title=info["title"],
            working_directory=info["working_directory"],
            foreground_job=info["foreground_job"],
        )
        return json_block(f"Session Information for {pane_id}:", info)

    @operation("read session content")
    async def get_session_details(self, session_id: str) -> str:
        session_id = _require_text("sessionId", session_id)

        program = (
            StepBuilder()
            .find_session(normalize_id(session_id))
            .export("session_id", "sessionId")
            .grid_size(into="size")
            .get_variables(config.SESSION_DETAIL_VARIABLES, into="variables", lenient=True)
            .build()
        )
        data = await self.runner.execute(program)
        return format_session_details(session_id, data, config.UNKNOWN_VALUE)

    @operation("list sessions")
    async def list_all_sessions(self) -> str:
        data = await self.runner.execute(StepBuilder().list_sessions(into="windows").build())
        return json_block("iTerm2 Sessions Overview:", data)

    @operation("monitor session")
    async def monitor_session(self, pane_id: str, duration: float | None = None) -> str:
        pane_id = _require_text("paneId", pane_id)
        duration = _require_duration(config.MONITOR_DEFAULT_SECONDS if duration is None else duration)
        pane = self.tracker.get_pane(pane_id)

        program = (
            StepBuilder()
            .find_session(pane.session_id)
            .monitor(
                config.MONITOR_VARIABLES,
                duration=duration,
                interval=config.MONITOR_POLL_INTERVAL,
                into="changes",
            )
            .build()
        )
        data = await self.runner.execute(program)
        changes = data.get("changes", [])

        if changes:
            latest = changes[-1]
            pane.refresh(
                working_directory=latest.get("working_directory"),
                foreground_job=latest.get("foreground_job"),
            )
        return json_block(
            f"Session Monitoring Results for {pane_id}:",
            {
                "success": True,
                "changes": changes,
                "monitoring_duration": data.get("monitoring_duration", duration),
            },
        )

    # === Tab 颜色 ===

    @operation("set tab color")
    async def set_tab_color(self, pane_id: str, color: str) -> str:
        pane_id = _require_text("paneId", pane_id)
        color = _require_text("color", color)
        rgb = parse_color(color)
        pane = self.tracker.get_pane(pane_id)

        program = StepBuilder().find_session(pane.session_id).set_tab_color(rgb, label=color).build()
        await self.runner.execute(program)

        self.tracker.get_tab(pane.tab_id).color = color
        return f"Tab color set to {color} for pane {pane_id}"

    # === 本地状态 ===

    @operation("list panes")
    async def list_panes(self) -> str:
        return format_pane_list(list(self.tracker.iter_panes()))

    @operation("get terminal state")
    async def get_terminal_state(self) -> str:
        return json_block("Terminal State Overview:", self.tracker.snapshot())

    @operation("sync sessions")
    async def sync_sessions(self) -> str:
        data = await self.runner.execute(StepBuilder().list_session_ids(into="session_ids").build())
        live = data.get("session_ids")
        if not isinstance(live, list):
            raise BridgeProtocolError("Bridge payload is missing 'session_ids'", output=str(data))

        removed = self.tracker.prune(live)
        await self._release(removed)

        if not removed:
            return f"Session sync complete - all {self.tracker.pane_count} panes are live"
        ids = ", ".join(pane.pane_id for pane in removed)
        return f"Session sync complete - removed {len(removed)} stale panes: {ids}"
