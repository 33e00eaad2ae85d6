"""
命令执行器 - 在子进程中运行动作，带超时、工作目录和取消
"""
import asyncio
import logging
import os
import signal
from abc import ABC, abstractmethod
from typing import Optional

from .errors import CommandTimeoutError, ExecutorError, RunCancelledError
from .types import Action, Output

logger = logging.getLogger(__name__)


# kill 之后等待管道关闭的宽限时间
KILL_GRACE_SECONDS = 2.0

# 输出只保留头尾各一半，中间丢弃
MAX_OUTPUT_BYTES = 1024 * 1024
READ_CHUNK_SIZE = 64 * 1024


class Executor(ABC):
    """执行器接口"""

    @abstractmethod
    async def execute(
        self,
        action: Action,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Output:
        """执行动作；非零退出码不是错误，作为数据返回"""


class BashExecutor(Executor):
    """通过 bash -c 运行命令"""

    def __init__(
        self,
        timeout: Optional[float] = 30.0,
        working_dir: Optional[str] = None,
        shell: str = "bash",
        max_output_bytes: int = MAX_OUTPUT_BYTES
    ):
        self.timeout = timeout if timeout and timeout > 0 else None
        self.working_dir = working_dir or None
        self.shell = shell
        self.max_output_bytes = max_output_bytes

    async def execute(
        self,
        action: Action,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Output:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError("run cancelled before command started")

        try:
            # 独立会话，超时或取消时整个进程组一起杀掉；
            # stdin 接到 /dev/null，读标准输入的命令立即拿到 EOF
            process = await asyncio.create_subprocess_exec(
                self.shell, "-c", action.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.working_dir,
                start_new_session=True
            )
        except OSError as e:
            raise ExecutorError(f"failed to start command: {e}") from e

        collect = asyncio.ensure_future(self._collect(process))
        cancelled = None
        waiters = {collect}
        if cancel_event is not None:
            cancelled = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancelled)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            await self._kill(process, collect)
            raise
        finally:
            if cancelled is not None:
                cancelled.cancel()

        if collect in done:
            return Output(
                stdout=collect.result().decode("utf-8", errors="replace"),
                exit_code=process.returncode
            )

        await self._kill(process, collect)

        if cancelled is not None and cancelled in done:
            logger.info("Command cancelled, process %d killed", process.pid)
            raise RunCancelledError("run cancelled while command was running")

        logger.warning("Command timed out after %ss, process %d killed", self.timeout, process.pid)
        raise CommandTimeoutError(self.timeout, action.command)

    async def _collect(self, process: asyncio.subprocess.Process) -> bytes:
        """分块读取输出直到 EOF，超过上限的中间部分丢弃"""
        half = self.max_output_bytes // 2
        head = bytearray()
        tail = bytearray()
        dropped = 0

        while True:
            chunk = await process.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            room = half - len(head)
            if room > 0:
                head += chunk[:room]
                chunk = chunk[room:]
            tail += chunk
            if len(tail) > half:
                excess = len(tail) - half
                dropped += excess
                del tail[:excess]

        await process.wait()

        if dropped:
            logger.debug("Command output capped (dropped_bytes=%d)", dropped)
            return bytes(head) + f"\n[... {dropped} bytes dropped ...]\n".encode() + bytes(tail)
        return bytes(head + tail)

    async def _kill(self, process: asyncio.subprocess.Process, collect: asyncio.Future) -> None:
        """杀掉进程组，并等待输出管道关闭"""
        if process.returncode is None or not collect.done():
            try:
                if hasattr(os, "killpg"):
                    os.killpg(process.pid, signal.SIGKILL)
                else:
                    process.kill()
            except ProcessLookupError:
                pass

        try:
            await asyncio.wait_for(collect, timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Process %d did not release its output after kill", process.pid)
