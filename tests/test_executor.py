"""
测试用例 - Bash执行器（真实子进程）
"""
import asyncio
import os
import time

import pytest

from agent.errors import CommandTimeoutError, ExecutorError, ProcessError, RunCancelledError
from agent.executor import BashExecutor
from agent.types import Action


class TestBashExecutor:
    """测试命令执行"""

    def setup_method(self):
        self.executor = BashExecutor(timeout=10)

    @pytest.mark.asyncio
    async def test_echo(self):
        output = await self.executor.execute(Action("echo hello"))
        assert output.stdout == "hello\n"
        assert output.exit_code == 0

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_data(self):
        """非零退出码作为数据返回，不是错误"""
        output = await self.executor.execute(Action("echo boom; exit 3"))
        assert output.exit_code == 3
        assert output.stdout == "boom\n"

    @pytest.mark.asyncio
    async def test_stderr_merged(self):
        output = await self.executor.execute(Action("echo out; echo err >&2"))
        assert "out" in output.stdout
        assert "err" in output.stdout

    @pytest.mark.asyncio
    async def test_multiline_script(self):
        script = "for i in 1 2 3; do\n  echo \"n=$i\"\ndone"
        output = await self.executor.execute(Action(script))
        assert output.stdout.splitlines() == ["n=1", "n=2", "n=3"]

    @pytest.mark.asyncio
    async def test_working_dir(self, tmp_path):
        executor = BashExecutor(timeout=10, working_dir=str(tmp_path))
        output = await executor.execute(Action("pwd"))
        assert os.path.realpath(output.stdout.strip()) == os.path.realpath(str(tmp_path))

    @pytest.mark.asyncio
    async def test_missing_working_dir_is_unrecoverable(self, tmp_path):
        executor = BashExecutor(working_dir=str(tmp_path / "does-not-exist"))
        with pytest.raises(ExecutorError):
            await executor.execute(Action("ls"))

    @pytest.mark.asyncio
    async def test_missing_shell_is_unrecoverable(self):
        executor = BashExecutor(shell="/nonexistent/shell")
        with pytest.raises(ExecutorError):
            await executor.execute(Action("ls"))

    @pytest.mark.asyncio
    async def test_timeout_kills_command(self):
        """超时后进程被杀掉，抛出可恢复错误"""
        executor = BashExecutor(timeout=0.5)
        start = time.monotonic()
        with pytest.raises(CommandTimeoutError) as exc_info:
            await executor.execute(Action("sleep 30"))
        assert time.monotonic() - start < 5
        assert isinstance(exc_info.value, ProcessError)
        assert "timed out after 0.5s" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_kills_background_children(self):
        """子进程持有管道时也不会卡住"""
        executor = BashExecutor(timeout=0.5)
        start = time.monotonic()
        with pytest.raises(CommandTimeoutError):
            await executor.execute(Action("sleep 30 & sleep 30; wait"))
        assert time.monotonic() - start < 5

    @pytest.mark.asyncio
    async def test_zero_timeout_means_no_limit(self):
        executor = BashExecutor(timeout=0)
        assert executor.timeout is None
        output = await executor.execute(Action("sleep 0.1; echo ok"))
        assert output.stdout == "ok\n"

    @pytest.mark.asyncio
    async def test_cancel_event_kills_command(self):
        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.call_later(0.2, cancel_event.set)

        start = time.monotonic()
        with pytest.raises(RunCancelledError):
            await self.executor.execute(Action("sleep 30"), cancel_event)
        assert time.monotonic() - start < 5

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, tmp_path):
        marker = tmp_path / "ran"
        cancel_event = asyncio.Event()
        cancel_event.set()
        with pytest.raises(RunCancelledError):
            await self.executor.execute(Action(f"touch {marker}"), cancel_event)
        assert not marker.exists()

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self):
        task = asyncio.ensure_future(self.executor.execute(Action("sleep 30")))
        await asyncio.sleep(0.2)
        task.cancel()
        start = time.monotonic()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert time.monotonic() - start < 5

    @pytest.mark.asyncio
    async def test_stdin_is_closed(self):
        """读标准输入的命令立即拿到 EOF，不会等到超时"""
        executor = BashExecutor(timeout=5)
        start = time.monotonic()
        output = await executor.execute(Action("cat; read line; echo \"done:$line\""))
        assert output.stdout == "done:\n"
        assert time.monotonic() - start < 3


class TestOutputCap:
    """测试输出上限"""

    @pytest.mark.asyncio
    async def test_large_output_keeps_head_and_tail(self):
        executor = BashExecutor(timeout=10, max_output_bytes=1000)
        output = await executor.execute(
            Action("printf START; head -c 200000 /dev/zero | tr '\\0' a; printf END")
        )
        assert output.stdout.startswith("START")
        assert output.stdout.endswith("END")
        assert "bytes dropped ...]" in output.stdout
        assert len(output.stdout) < 1100

    @pytest.mark.asyncio
    async def test_output_under_cap_unchanged(self):
        executor = BashExecutor(timeout=10, max_output_bytes=1000)
        output = await executor.execute(Action("head -c 900 /dev/zero | tr '\\0' b"))
        assert output.stdout == "b" * 900

    @pytest.mark.asyncio
    async def test_endless_output_times_out(self):
        executor = BashExecutor(timeout=0.5, max_output_bytes=1000)
        with pytest.raises(CommandTimeoutError):
            await executor.execute(Action("yes"))
