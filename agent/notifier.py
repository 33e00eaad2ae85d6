"""
Heartbeat - 运行期间周期性发送"仍在工作"通知
"""
import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Heartbeat:
    """
    作用域限定在一次运行内的周期任务

    用法:
        async with Heartbeat(send_typing, interval=4):
            result = await runner.run(...)

    退出上下文时（无论成功、达到上限还是抛出异常）任务都会被取消并等待结束。
    回调的失败只记录日志，不影响运行。
    """

    def __init__(self, callback: Callable[[], Any], interval: float = 4.0):
        if interval <= 0:
            raise ValueError("heartbeat interval must be positive")
        self.callback = callback
        self.interval = interval
        self.beats = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def __aenter__(self) -> "Heartbeat":
        self._task = asyncio.ensure_future(self._loop())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.beats += 1
            try:
                result = self.callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("Heartbeat callback failed: %s", e)
