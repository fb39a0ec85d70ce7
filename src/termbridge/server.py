"""MCP server - stdio transport

启动时：
1. 配置日志（stderr，stdout 留给协议）
2. 清理残留的 bridge 脚本
3. 创建 SessionTracker + BridgeRunner + ToolDispatcher

每个 tool 调用通过 asyncio.Lock 串行执行，tracker 的修改不会交错。
"""

import asyncio
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Annotated, Any

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession
from pydantic import Field

from . import config
from .bridge import BridgeRunner
from .dispatcher import ToolDispatcher
from .session import SessionTracker
from .telemetry import configure_logging, get_logger, metrics

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Lifespan 上下文"""

    dispatcher: ToolDispatcher
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    logger.info(f"[Server] {config.SERVER_NAME} {config.SERVER_VERSION} starting")
    runner = BridgeRunner()
    runner.cleanup_stale_scripts()

    ctx = AppContext(dispatcher=ToolDispatcher(SessionTracker(), runner))
    try:
        yield ctx
    finally:
        await ctx.dispatcher.close()
        logger.info(f"[Server] Shutdown complete, metrics: {metrics.snapshot()}")


mcp = FastMCP(
    config.SERVER_NAME,
    instructions=config.SERVER_INSTRUCTIONS,
    lifespan=app_lifespan,
)

AppCtx = Context[ServerSession, AppContext]


async def _dispatch(ctx: AppCtx, method: str, **kwargs: Any) -> str:
    app_ctx: AppContext = ctx.request_context.lifespan_context
    async with app_ctx.lock:
        return await getattr(app_ctx.dispatcher, method)(**kwargs)


# === Tools ===

PaneIdArg = Annotated[str, Field(description="Local pane id, e.g. pane-0")]
OptionalPaneIdArg = Annotated[
    str | None,
    Field(description="Local pane id to split; defaults to the most recent active pane"),
]
ProfileArg = Annotated[str | None, Field(description="iTerm2 profile name")]
CommandArg = Annotated[str, Field(description="Command to send")]
OptionalCommandArg = Annotated[str | None, Field(description="Command to run in the new session")]


@mcp.tool(name="open-terminal", description="Open a new iTerm2 window")
async def open_terminal(
    ctx: AppCtx,
    profile: ProfileArg = None,
    command: OptionalCommandArg = None,
    workingDirectory: Annotated[str | None, Field(description="Directory to cd into first")] = None,
) -> str:
    return await _dispatch(
        ctx,
        "open_terminal",
        profile=profile,
        command=command,
        working_directory=workingDirectory,
    )


@mcp.tool(name="split-terminal-horizontal", description="Split a pane horizontally (new pane below)")
async def split_terminal_horizontal(
    ctx: AppCtx,
    paneId: OptionalPaneIdArg = None,
    profile: ProfileArg = None,
    command: OptionalCommandArg = None,
) -> str:
    return await _dispatch(
        ctx, "split_terminal_horizontal", pane_id=paneId, profile=profile, command=command
    )


@mcp.tool(name="split-terminal-vertical", description="Split a pane vertically (new pane to the right)")
async def split_terminal_vertical(
    ctx: AppCtx,
    paneId: OptionalPaneIdArg = None,
    profile: ProfileArg = None,
    command: OptionalCommandArg = None,
) -> str:
    return await _dispatch(
        ctx, "split_terminal_vertical", pane_id=paneId, profile=profile, command=command
    )


@mcp.tool(name="execute-command-in-pane", description="Send a command to a pane")
async def execute_command_in_pane(ctx: AppCtx, paneId: PaneIdArg, command: CommandArg) -> str:
    return await _dispatch(ctx, "execute_command", pane_id=paneId, command=command)


@mcp.tool(name="get-session-info", description="Read variables and grid size of a pane's session")
async def get_session_info(ctx: AppCtx, paneId: PaneIdArg) -> str:
    return await _dispatch(ctx, "get_session_info", pane_id=paneId)


@mcp.tool(name="get-session-details", description="Read details of any iTerm2 session by its id")
async def get_session_details(
    ctx: AppCtx,
    sessionId: Annotated[str, Field(description="iTerm2 session id (w0t0p0: prefix allowed)")],
) -> str:
    return await _dispatch(ctx, "get_session_details", session_id=sessionId)


@mcp.tool(name="set-tab-color", description="Set the tab color of a pane")
async def set_tab_color(
    ctx: AppCtx,
    paneId: PaneIdArg,
    color: Annotated[str, Field(description="#RRGGBB or red/green/blue/yellow/purple/cyan/orange/pink")],
) -> str:
    return await _dispatch(ctx, "set_tab_color", pane_id=paneId, color=color)


@mcp.tool(name="list-all-sessions", description="List every iTerm2 window, tab and session")
async def list_all_sessions(ctx: AppCtx) -> str:
    return await _dispatch(ctx, "list_all_sessions")


@mcp.tool(name="monitor-session", description="Watch a pane's directory, job and prompt state")
async def monitor_session(
    ctx: AppCtx,
    paneId: PaneIdArg,
    duration: Annotated[float, Field(description="Seconds to monitor")] = config.MONITOR_DEFAULT_SECONDS,
) -> str:
    return await _dispatch(ctx, "monitor_session", pane_id=paneId, duration=duration)


@mcp.tool(name="broadcast-input", description="Send the same command to several panes")
async def broadcast_input(
    ctx: AppCtx,
    paneIds: Annotated[list[str], Field(description="Local pane ids")],
    command: CommandArg,
) -> str:
    return await _dispatch(ctx, "broadcast_input", pane_ids=paneIds, command=command)


@mcp.tool(name="list-panes", description="List panes tracked by this server")
async def list_panes(ctx: AppCtx) -> str:
    return await _dispatch(ctx, "list_panes")


@mcp.tool(name="get-terminal-state", description="Show the tracked window/tab/pane tree")
async def get_terminal_state(ctx: AppCtx) -> str:
    return await _dispatch(ctx, "get_terminal_state")


@mcp.tool(name="sync-sessions", description="Drop tracked panes whose iTerm2 session has closed")
async def sync_sessions(ctx: AppCtx) -> str:
    return await _dispatch(ctx, "sync_sessions")


def main() -> None:
    configure_logging()
    try:
        mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("[Server] Interrupted")
    except Exception:
        logger.exception("[Server] Fatal error")
        sys.exit(1)
