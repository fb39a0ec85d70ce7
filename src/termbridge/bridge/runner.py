"""BridgeRunner - 进程级 iTerm2 自动化调用

每次调用：
1. 把 harness 源码 + step program 字面量写入一个临时脚本
2. 用 BRIDGE_PYTHON 启动独立进程执行（30s step 预算 / 35s 总超时）
3. 解析 stdout 的单行 JSON
4. 无论成功失败都删除临时脚本

失败一律以 BridgeError 子类抛出，不返回错误 dict。
"""

import asyncio
import json
import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .. import config
from ..errors import (
    BridgeConnectionError,
    BridgeDomainError,
    BridgeError,
    BridgeExitError,
    BridgeProtocolError,
    BridgeSpawnError,
    BridgeTimeoutError,
)
from ..telemetry import get_logger, metrics
from .steps import StepProgram

logger = get_logger(__name__)

_HARNESS_PATH = Path(__file__).with_name("harness.py")


def load_harness_source() -> str:
    """读取 harness 源码"""
    return _HARNESS_PATH.read_text(encoding="utf-8")


def render_script(program: StepProgram, harness_source: str | None = None) -> str:
    """生成完整脚本

    program 以 JSON 字符串的 repr() 字面量嵌入，调用方数据不会成为代码。
    """
    source = harness_source if harness_source is not None else load_harness_source()
    literal = repr(program.to_json())
    return f'{source}\n\nif __name__ == "__main__":\n    main({literal})\n'


class BridgeRunner:
    """iTerm2 bridge 执行器

    使用示例:
        runner = BridgeRunner()
        runner.cleanup_stale_scripts()
        data = await runner.execute(StepBuilder().list_sessions().build())
    """

    def __init__(
        self,
        python: str | None = None,
        script_dir: Path | str | None = None,
        timeout: float | None = None,
        step_timeout: float | None = None,
    ):
        """初始化

        Args:
            python: 解释器路径，None 使用 config.BRIDGE_PYTHON
            script_dir: 临时脚本目录，None 使用 config.SCRIPT_DIR
            timeout: 调用方总超时（秒）
            step_timeout: 脚本内部 step 预算（秒）
        """
        self._python = python or config.BRIDGE_PYTHON
        self._script_dir = Path(script_dir) if script_dir else config.SCRIPT_DIR
        self._timeout = timeout or config.BRIDGE_TIMEOUT_SECONDS
        self._step_timeout = step_timeout or config.BRIDGE_STEP_TIMEOUT_SECONDS
        self._harness_source: str | None = None

    @property
    def script_dir(self) -> Path:
        return self._script_dir

    @property
    def timeout(self) -> float:
        return self._timeout

    # === 临时脚本 ===

    def cleanup_stale_scripts(self, max_age: float | None = None) -> int:
        """删除超过 max_age 秒的残留脚本（进程崩溃遗留）

        Returns:
            删除的文件数
        """
        max_age = config.SCRIPT_MAX_AGE_SECONDS if max_age is None else max_age
        if not self._script_dir.is_dir():
            return 0

        now = time.time()
        removed = 0
        for path in self._script_dir.glob(f"{config.SCRIPT_PREFIX}*{config.SCRIPT_SUFFIX}"):
            try:
                if now - path.stat().st_mtime > max_age:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"[Bridge] Failed to remove stale script {path.name}: {e}")

        if removed:
            logger.info(f"[Bridge] Removed {removed} stale scripts from {self._script_dir}")
            metrics.inc("scripts.cleaned", value=removed)
        return removed

    @contextmanager
    def _transient_script(self, source: str) -> Iterator[Path]:
        """写入临时脚本，退出时删除"""
        self._script_dir.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            prefix=config.SCRIPT_PREFIX,
            suffix=config.SCRIPT_SUFFIX,
            dir=self._script_dir,
        )
        path = Path(temp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(source)
            yield path
        finally:
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"[Bridge] Failed to remove script {path.name}: {e}")

    def render(self, program: StepProgram) -> str:
        if self._harness_source is None:
            self._harness_source = load_harness_source()
        if program.timeout > self._step_timeout:
            program = program.model_copy(update={"timeout": self._step_timeout})
        return render_script(program, self._harness_source)

    # === 执行 ===

    async def execute(self, program: StepProgram) -> dict:
        """执行 step program

        Returns:
            harness 输出的成功 payload

        Raises:
            BridgeSpawnError: 解释器无法启动
            BridgeTimeoutError: 超时（进程已被 kill）
            BridgeConnectionError: 无法连接 iTerm2
            BridgeExitError: 非零退出
            BridgeProtocolError: 输出不是 JSON 对象
            BridgeDomainError: iTerm2 报告的失败
        """
        metrics.inc("bridge.calls")
        try:
            with self._transient_script(self.render(program)) as script:
                stdout, stderr, returncode = await self._run(script)
            return self._parse(stdout, stderr, returncode)
        except BridgeError as e:
            metrics.inc("bridge.errors", {"kind": type(e).__name__})
            raise

    async def _run(self, script: Path) -> tuple[str, str, int]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._python,
                str(script),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BridgeSpawnError(f"Cannot start {self._python}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            metrics.inc("bridge.timeouts")
            logger.error(f"[Bridge] Script killed after {self._timeout}s")
            raise BridgeTimeoutError(f"Bridge script timed out after {self._timeout}s") from None
        finally:
            # 超时或被取消：子进程在脚本删除前结束
            if proc.returncode is None:
                await self._kill(proc)

        return (
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
            proc.returncode,
        )

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        # 再次取消也不中断 wait()
        await asyncio.shield(proc.wait())

    def _parse(self, stdout: str, stderr: str, returncode: int) -> dict:
        stderr = stderr.strip()
        if stderr and not stderr.startswith("Warning"):
            logger.warning(f"[Bridge] Script stderr: {stderr}")

        payload = self._decode_payload(stdout)

        if returncode != 0:
            if payload is not None and "error" in payload:
                raise self._payload_error(payload, returncode, stderr)
            raise BridgeExitError(returncode, stderr)

        if payload is None:
            raise BridgeProtocolError("Bridge output is not a JSON object", output=stdout)
        if "error" in payload:
            raise self._payload_error(payload, returncode, stderr)
        return payload

    @staticmethod
    def _decode_payload(stdout: str) -> dict | None:
        lines = [line for line in stdout.strip().splitlines() if line.strip()]
        if not lines:
            return None
        try:
            payload = json.loads(lines[-1])
        except json.JSONDecodeError:
            return None
        return payload if isinstance(payload, dict) else None

    @staticmethod
    def _payload_error(payload: dict, returncode: int, stderr: str) -> BridgeError:
        reason = str(payload["error"])
        error_type = payload.get("errorType")
        if error_type == "TimeoutError":
            return BridgeTimeoutError(reason)
        if error_type == "ConnectionError":
            return BridgeConnectionError(reason)
        if returncode != 0:
            return BridgeExitError(
                returncode,
                stderr,
                reason=reason,
                error_type=error_type,
                traceback=payload.get("traceback"),
            )
        return BridgeDomainError(reason)
