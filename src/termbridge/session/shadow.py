"""ShadowShell - 每个 pane 可选的本地影子 shell

只用于辅助输出捕获：execute-command-in-pane 会把命令同时写入影子 shell，
其 stdout/stderr 写入有界缓冲。影子 shell 与 iTerm2 中的真实 session 无关。
"""

import asyncio
from collections import deque

from .. import config
from ..telemetry import get_logger, truncate_command

logger = get_logger(__name__)

_READ_CHUNK = 4096


class ShadowShell:
    """本地 shell 子进程 + 输出缓冲"""

    def __init__(
        self,
        pane_id: str,
        shell: str | None = None,
        max_chunks: int | None = None,
    ):
        self.pane_id = pane_id
        self._shell = shell or config.SHADOW_SHELL
        self._output: deque[str] = deque(maxlen=max_chunks or config.SHADOW_OUTPUT_MAX_CHUNKS)
        self._proc: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def output(self) -> list[str]:
        return list(self._output)

    @property
    def line_count(self) -> int:
        return sum(chunk.count("\n") for chunk in self._output)

    async def start(self) -> None:
        """启动 shell 并开始收集输出"""
        if self.running:
            return
        self._proc = await asyncio.create_subprocess_exec(
            self._shell,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self._readers = [
            asyncio.create_task(self._pump(self._proc.stdout)),
            asyncio.create_task(self._pump(self._proc.stderr)),
        ]
        logger.debug(f"[ShadowShell] Started for {self.pane_id} (pid={self._proc.pid})")

    async def _pump(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            self._output.append(chunk.decode(errors="replace"))

    async def write(self, command: str) -> bool:
        """把命令写入 shell stdin

        Returns:
            是否写入成功（shell 已退出时返回 False）
        """
        if not self.running or self._proc.stdin is None:
            return False
        try:
            self._proc.stdin.write((command + "\n").encode())
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"[ShadowShell] {self.pane_id} write failed: {e}")
            return False
        logger.debug(f"[ShadowShell] {self.pane_id} <- {truncate_command(command)}")
        return True

    async def stop(self) -> None:
        """终止 shell 并等待读取任务结束"""
        proc = self._proc
        if proc is None:
            return
        if proc.returncode is None:
            if proc.stdin is not None:
                proc.stdin.close()
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(proc.wait(), timeout=config.SHADOW_STOP_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()

        for reader in self._readers:
            reader.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._readers = []
        logger.debug(f"[ShadowShell] Stopped for {self.pane_id}")
