"""Bridge harness - runs inside the short-lived iTerm2 script process

BridgeRunner copies this module's source into a transient script and appends
a call to ``main`` with the JSON step program as a string literal. The script
runs under config.BRIDGE_PYTHON, which only needs the iterm2 package, so
nothing here may import termbridge.

Output contract: exactly one JSON object on stdout.
- success: {"success": true, ...fields written by steps}
- domain failure (exit 0): {"error": "..."}
- unexpected failure (exit 1): {"error", "errorType", "traceback"}
"""

import asyncio
import json
import sys
import time
import traceback

import iterm2

UNKNOWN = "Unknown"


class StepError(Exception):
    """Failure reported by iTerm2 itself, e.g. a session that no longer exists"""


class Target:
    """A session together with the tab and window that own it"""

    def __init__(self, session, tab, window):
        self.session = session
        self.tab = tab
        self.window = window

    def attr(self, name):
        if name == "session_id":
            return self.session.session_id
        if name == "tab_id":
            return self.tab.tab_id if self.tab is not None else None
        if name == "window_id":
            return self.window.window_id if self.window is not None else None
        raise StepError(f"Unsupported attribute: {name}")


class Context:
    """Mutable state shared by the steps of one program"""

    def __init__(self, connection):
        self.connection = connection
        self.app = None
        self.refs = {}
        self.result = {"success": True}

    def ref(self, name):
        if name not in self.refs:
            raise StepError(f"Unbound reference: {name}")
        return self.refs[name]

    def require_app(self):
        if self.app is None:
            raise StepError("Application handle not acquired")
        return self.app


def find_session(app, session_id):
    """Scan every window/tab/session; iTerm2 offers no indexed lookup here"""
    for window in app.windows:
        for tab in window.tabs:
            for session in tab.sessions:
                if session.session_id == session_id:
                    return Target(session, tab, window)
    return None


async def _read_variable(session, name, lenient):
    if not lenient:
        return await session.async_get_variable(name)
    try:
        value = await session.async_get_variable(name)
    except Exception:
        return UNKNOWN
    return UNKNOWN if value is None else value


def _grid_size(session):
    size = getattr(session, "grid_size", None) or getattr(session, "preferred_size", None)
    if size is None:
        return {"columns": UNKNOWN, "rows": UNKNOWN}
    return {"columns": size.width, "rows": size.height}


# === steps ===


async def step_get_app(ctx, step):
    ctx.app = await iterm2.async_get_app(ctx.connection)
    if ctx.app is None:
        raise StepError("iTerm2 application handle unavailable")


async def step_create_window(ctx, step):
    profile = step.get("profile")
    if profile:
        window = await iterm2.Window.async_create(ctx.connection, profile=profile)
    else:
        window = await iterm2.Window.async_create(ctx.connection)
    if window is None:
        raise StepError("Failed to create window")
    tab = window.current_tab
    ctx.refs[step["bind"]] = Target(tab.current_session, tab, window)


async def step_find_session(ctx, step):
    target = find_session(ctx.require_app(), step["session_id"])
    if target is None:
        raise StepError("Target session not found")
    ctx.refs[step["bind"]] = target


async def step_send_text(ctx, step):
    collect = step.get("collect")
    if collect is None:
        await ctx.ref(step["ref"]).session.async_send_text(step["text"])
        return

    session_id = step["session_id"]
    entries = ctx.result.setdefault(collect, [])
    target = find_session(ctx.require_app(), session_id)
    if target is None:
        entries.append({"session_id": session_id, "success": False, "error": "Target session not found"})
        return
    try:
        await target.session.async_send_text(step["text"])
    except Exception as e:
        entries.append({"session_id": session_id, "success": False, "error": str(e)})
    else:
        entries.append({"session_id": session_id, "success": True})


async def step_split(ctx, step):
    source = ctx.ref(step["ref"])
    profile = step.get("profile")
    if profile:
        session = await source.session.async_split_pane(vertical=step["vertical"], profile=profile)
    else:
        session = await source.session.async_split_pane(vertical=step["vertical"])
    if session is None:
        raise StepError("Split failed")
    ctx.refs[step["bind"]] = Target(session, source.tab, source.window)


async def step_get_variables(ctx, step):
    session = ctx.ref(step["ref"]).session
    values = {}
    for name in step["names"]:
        values[name] = await _read_variable(session, name, step.get("lenient", False))
    ctx.result[step["into"]] = values


async def step_grid_size(ctx, step):
    ctx.result[step["into"]] = _grid_size(ctx.ref(step["ref"]).session)


async def step_set_tab_color(ctx, step):
    target = ctx.ref(step["ref"])
    red, green, blue = (round(channel * 255) for channel in step["rgb"])
    color = iterm2.Color(red, green, blue)

    await target.tab.async_set_variable(step["variable"], step["label"])
    change = iterm2.LocalWriteOnlyProfile()
    change.set_tab_color(color)
    change.set_use_tab_color(True)
    await target.session.async_set_profile_properties(change)
    ctx.result["color"] = step["label"]


async def _snapshot(session, fields):
    return {key: await session.async_get_variable(name) for name, key in fields.items()}


async def step_monitor(ctx, step):
    session = ctx.ref(step["ref"]).session
    fields = step["fields"]
    start = time.time()

    previous = await _snapshot(session, fields)
    changes = [{"timestamp": start, "event": "monitoring_started", **previous}]

    while time.time() - start < step["duration"]:
        await asyncio.sleep(step["interval"])
        current = await _snapshot(session, fields)
        if current != previous:
            changes.append({"timestamp": time.time(), "event": "change_detected", **current})
            previous = current

    ctx.result[step["into"]] = changes
    ctx.result["monitoring_duration"] = round(time.time() - start, 3)


async def step_list_sessions(ctx, step):
    windows = []
    for window in ctx.require_app().windows:
        frame = await window.async_get_frame()
        window_info = {
            "window_id": window.window_id,
            "frame": {
                "x": frame.origin.x,
                "y": frame.origin.y,
                "width": frame.size.width,
                "height": frame.size.height,
            },
            "tabs": [],
        }
        for tab in window.tabs:
            title = f"Tab {tab.tab_id}"
            if tab.sessions:
                value = await _read_variable(tab.sessions[0], "session.title", True)
                if value and value != UNKNOWN:
                    title = value
            tab_info = {"tab_id": tab.tab_id, "title": title, "sessions": []}
            for session in tab.sessions:
                tab_info["sessions"].append({
                    "session_id": session.session_id,
                    "name": await _read_variable(session, "session.name", True),
                    "working_directory": await _read_variable(session, "session.path", True),
                    "foreground_job": await _read_variable(session, "session.foregroundJob", True),
                    "is_at_shell_prompt": await session.async_get_variable("session.isAtShellPrompt"),
                    **_grid_size(session),
                })
            window_info["tabs"].append(tab_info)
        windows.append(window_info)

    ctx.result[step["into"]] = windows
    ctx.result["total_windows"] = len(windows)
    ctx.result["total_sessions"] = sum(
        len(tab["sessions"]) for window in windows for tab in window["tabs"]
    )


async def step_list_session_ids(ctx, step):
    ctx.result[step["into"]] = [
        session.session_id
        for window in ctx.require_app().windows
        for tab in window.tabs
        for session in tab.sessions
    ]


async def step_export(ctx, step):
    ctx.result[step["key"]] = ctx.ref(step["ref"]).attr(step["attr"])


STEP_HANDLERS = {
    "get_app": step_get_app,
    "create_window": step_create_window,
    "find_session": step_find_session,
    "send_text": step_send_text,
    "split": step_split,
    "get_variables": step_get_variables,
    "grid_size": step_grid_size,
    "set_tab_color": step_set_tab_color,
    "monitor": step_monitor,
    "list_sessions": step_list_sessions,
    "list_session_ids": step_list_session_ids,
    "export": step_export,
}


async def run_steps(connection, steps):
    """Run a step list and return the result dict

    Raises:
        StepError: iTerm2 reported a failure
    """
    ctx = Context(connection)
    for step in steps:
        handler = STEP_HANDLERS.get(step["kind"])
        if handler is None:
            raise StepError(f"Unknown step kind: {step['kind']}")
        await handler(ctx, step)
    return ctx.result


def emit(payload):
    print(json.dumps(payload, default=str), flush=True)


def main(program_text):
    program = json.loads(program_text)
    timeout = program["timeout"]
    exit_code = {"value": 0}

    async def entry(connection):
        try:
            result = await asyncio.wait_for(run_steps(connection, program["steps"]), timeout=timeout)
        except StepError as e:
            emit({"error": str(e)})
        except asyncio.TimeoutError:
            emit({"error": f"Step budget of {timeout}s exceeded", "errorType": "TimeoutError"})
            exit_code["value"] = 1
        except Exception as e:
            emit({"error": str(e), "errorType": type(e).__name__, "traceback": traceback.format_exc()})
            exit_code["value"] = 1
        else:
            emit(result)

    try:
        iterm2.run_until_complete(entry, retry=False)
    except Exception as e:
        emit({"error": f"Connection error: {e}", "errorType": "ConnectionError"})
        exit_code["value"] = 1
    sys.exit(exit_code["value"])
