"""Tests for BridgeRunner

The runner is driven with a real interpreter; the harness source is replaced
by small stand-ins so no iTerm2 connection is needed.
"""

import ast
import asyncio
import json
import logging
import os
import sys
import time

import pytest

from termbridge.bridge import BridgeRunner, StepBuilder, render_script
from termbridge.bridge.runner import load_harness_source
from termbridge.errors import (
    BridgeConnectionError,
    BridgeDomainError,
    BridgeExitError,
    BridgeProtocolError,
    BridgeSpawnError,
    BridgeTimeoutError,
)
from termbridge.telemetry import metrics

ECHO_HARNESS = """
import json

def main(program_text):
    program = json.loads(program_text)
    print("log line before payload")
    print(json.dumps({"success": True, "kinds": [s["kind"] for s in program["steps"]]}))
"""

DOMAIN_ERROR_HARNESS = """
import json

def main(program_text):
    print(json.dumps({"error": "Target session not found"}))
"""

CRASH_HARNESS = """
import sys

def main(program_text):
    sys.stderr.write("boom")
    sys.exit(2)
"""

CRASH_WITH_PAYLOAD_HARNESS = """
import json, sys

def main(program_text):
    print(json.dumps({"error": "bad value", "errorType": "ValueError", "traceback": "tb"}))
    sys.exit(1)
"""

CONNECTION_HARNESS = """
import json, sys

def main(program_text):
    print(json.dumps({"error": "Connection error: refused", "errorType": "ConnectionError"}))
    sys.exit(1)
"""

GARBAGE_HARNESS = """
def main(program_text):
    print("not json at all")
"""

SLEEP_HARNESS = """
import time

def main(program_text):
    time.sleep(30)
"""

WARNING_STDERR_HARNESS = """
import json, sys

def main(program_text):
    sys.stderr.write("Warning: websockets is deprecated")
    print(json.dumps({"success": True}))
"""

NOISY_STDERR_HARNESS = """
import json, sys

def main(program_text):
    sys.stderr.write("cookie refresh failed")
    print(json.dumps({"success": True}))
"""

PID_HARNESS = """
import os, time

def main(program_text):
    with open(PID_FILE, "w") as f:
        f.write(str(os.getpid()))
    time.sleep(30)
"""


def process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


async def wait_for_pid(pid_file, timeout: float = 10.0) -> int:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pid_file.exists() and pid_file.read_text():
            return int(pid_file.read_text())
        await asyncio.sleep(0.05)
    raise AssertionError("bridge script never started")


def make_runner(tmp_path, harness: str, **kwargs) -> BridgeRunner:
    runner = BridgeRunner(python=sys.executable, script_dir=tmp_path / "scripts", **kwargs)
    runner._harness_source = harness
    return runner


def leftover_scripts(runner: BridgeRunner) -> list:
    if not runner.script_dir.exists():
        return []
    return list(runner.script_dir.iterdir())


class TestRenderScript:
    """脚本生成"""

    def test_program_embedded_as_single_literal(self):
        text = "'); __import__('os').system('echo pwned') #\n\"\"\"\\"
        program = StepBuilder().find_session("S0").send_text(text).build()

        script = render_script(program, harness_source="def main(t):\n    pass\n")
        tree = ast.parse(script)

        guard = tree.body[-1]
        call = guard.body[0].value
        assert isinstance(call.args[0], ast.Constant)
        assert json.loads(call.args[0].value)["steps"][2]["text"] == text

    def test_real_harness_parses(self):
        program = StepBuilder().list_sessions().build()
        ast.parse(render_script(program, harness_source=load_harness_source()))

    def test_runner_clamps_step_timeout(self, tmp_path):
        runner = make_runner(tmp_path, "def main(t):\n    pass\n", step_timeout=5)
        script = runner.render(StepBuilder(timeout=60).build())
        literal = ast.parse(script).body[-1].body[0].value.args[0].value
        assert json.loads(literal)["timeout"] == 5


class TestExecute:
    """执行与输出解析"""

    @pytest.mark.asyncio
    async def test_success_returns_last_json_line(self, tmp_path):
        runner = make_runner(tmp_path, ECHO_HARNESS)

        data = await runner.execute(StepBuilder().list_sessions().build())

        assert data == {"success": True, "kinds": ["get_app", "list_sessions"]}
        assert leftover_scripts(runner) == []
        assert metrics.get_counter("bridge.calls") == 1

    @pytest.mark.asyncio
    async def test_domain_error(self, tmp_path):
        runner = make_runner(tmp_path, DOMAIN_ERROR_HARNESS)

        with pytest.raises(BridgeDomainError, match="Target session not found"):
            await runner.execute(StepBuilder().build())
        assert leftover_scripts(runner) == []
        assert metrics.get_counter("bridge.errors", {"kind": "BridgeDomainError"}) == 1

    @pytest.mark.asyncio
    async def test_nonzero_exit_without_payload(self, tmp_path):
        runner = make_runner(tmp_path, CRASH_HARNESS)

        with pytest.raises(BridgeExitError) as exc_info:
            await runner.execute(StepBuilder().build())
        assert exc_info.value.returncode == 2
        assert "boom" in str(exc_info.value)
        assert leftover_scripts(runner) == []

    @pytest.mark.asyncio
    async def test_nonzero_exit_with_payload(self, tmp_path):
        runner = make_runner(tmp_path, CRASH_WITH_PAYLOAD_HARNESS)

        with pytest.raises(BridgeExitError) as exc_info:
            await runner.execute(StepBuilder().build())
        assert exc_info.value.error_type == "ValueError"
        assert exc_info.value.traceback == "tb"
        assert "bad value" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_error(self, tmp_path):
        runner = make_runner(tmp_path, CONNECTION_HARNESS)

        with pytest.raises(BridgeConnectionError, match="refused"):
            await runner.execute(StepBuilder().build())

    @pytest.mark.asyncio
    async def test_garbage_output(self, tmp_path):
        runner = make_runner(tmp_path, GARBAGE_HARNESS)

        with pytest.raises(BridgeProtocolError) as exc_info:
            await runner.execute(StepBuilder().build())
        assert "not json" in exc_info.value.output

    @pytest.mark.asyncio
    async def test_timeout_kills_and_cleans_up(self, tmp_path):
        runner = make_runner(tmp_path, SLEEP_HARNESS, timeout=0.5)

        started = time.monotonic()
        with pytest.raises(BridgeTimeoutError):
            await runner.execute(StepBuilder().build())

        assert time.monotonic() - started < 10
        assert leftover_scripts(runner) == []
        assert metrics.get_counter("bridge.timeouts") == 1

    @pytest.mark.asyncio
    async def test_cancel_kills_child(self, tmp_path):
        pid_file = tmp_path / "child.pid"
        runner = make_runner(tmp_path, f"PID_FILE = {str(pid_file)!r}\n" + PID_HARNESS)

        task = asyncio.create_task(runner.execute(StepBuilder().build()))
        pid = await wait_for_pid(pid_file)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not process_alive(pid)
        assert leftover_scripts(runner) == []

    @pytest.mark.asyncio
    async def test_warning_stderr_not_logged(self, tmp_path, caplog):
        runner = make_runner(tmp_path, WARNING_STDERR_HARNESS)

        with caplog.at_level(logging.WARNING, logger="termbridge.bridge.runner"):
            data = await runner.execute(StepBuilder().build())

        assert data == {"success": True}
        assert "[Bridge] Script stderr" not in caplog.text

    @pytest.mark.asyncio
    async def test_other_stderr_logged_but_not_fatal(self, tmp_path, caplog):
        runner = make_runner(tmp_path, NOISY_STDERR_HARNESS)

        with caplog.at_level(logging.WARNING, logger="termbridge.bridge.runner"):
            data = await runner.execute(StepBuilder().build())

        assert data == {"success": True}
        assert "[Bridge] Script stderr: cookie refresh failed" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_interpreter(self, tmp_path):
        runner = BridgeRunner(python=str(tmp_path / "no-such-python"), script_dir=tmp_path / "scripts")
        runner._harness_source = ECHO_HARNESS

        with pytest.raises(BridgeSpawnError):
            await runner.execute(StepBuilder().build())
        assert leftover_scripts(runner) == []


class TestCleanupStaleScripts:
    """启动时清理残留脚本"""

    def test_missing_dir(self, tmp_path):
        runner = BridgeRunner(script_dir=tmp_path / "absent")
        assert runner.cleanup_stale_scripts() == 0

    def test_removes_only_old_matching_files(self, tmp_path):
        runner = BridgeRunner(script_dir=tmp_path)
        old = tmp_path / "iterm_script_old.py"
        fresh = tmp_path / "iterm_script_fresh.py"
        unrelated = tmp_path / "notes.py"
        for path in (old, fresh, unrelated):
            path.write_text("")
        ten_minutes_ago = time.time() - 600
        os.utime(old, (ten_minutes_ago, ten_minutes_ago))
        os.utime(unrelated, (ten_minutes_ago, ten_minutes_ago))

        assert runner.cleanup_stale_scripts() == 1

        assert not old.exists()
        assert fresh.exists()
        assert unrelated.exists()
        assert metrics.get_counter("scripts.cleaned") == 1
