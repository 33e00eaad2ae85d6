"""
测试公共组件 - 假的查询器和执行器
"""
import asyncio
from typing import List, Optional, Sequence, Union

import pytest

from agent.errors import QueryError
from agent.executor import Executor
from agent.prompts import COMPACTION_SYSTEM_PROMPT
from agent.querier import Querier
from agent.types import Action, Message, Output, QueryResult
from config_loader import load_config


Reply = Union[str, QueryResult, Exception]


def fence(command: str, lang: str = "bash") -> str:
    """把命令包成模型风格的回复"""
    return f"Let me check.\n```{lang}\n{command}\n```\n"


def _to_result(reply: Reply) -> QueryResult:
    if isinstance(reply, Exception):
        raise reply
    if isinstance(reply, QueryResult):
        return reply
    return QueryResult(content=reply)


class ScriptedQuerier(Querier):
    """
    按顺序返回预设回复；用完后重复最后一个

    压缩请求（系统提示词为压缩提示词）使用 summaries 单独应答。
    """

    def __init__(self, replies: Sequence[Reply], summaries: Sequence[Reply] = (), delay: float = 0.0):
        self.replies = list(replies)
        self.summaries = list(summaries)
        self.delay = delay
        self.calls: List[List[Message]] = []
        self.compaction_calls: List[List[Message]] = []
        self.active = 0
        self.max_active = 0

    async def query(self, messages: List[Message]) -> QueryResult:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if messages and messages[0].content == COMPACTION_SYSTEM_PROMPT:
                self.compaction_calls.append(list(messages))
                return _to_result(self._next(self.summaries))
            self.calls.append(list(messages))
            return _to_result(self._next(self.replies))
        finally:
            self.active -= 1

    @staticmethod
    def _next(replies: List[Reply]) -> Reply:
        if not replies:
            raise QueryError("no scripted reply left")
        if len(replies) == 1:
            return replies[0]
        return replies.pop(0)


class HangingQuerier(Querier):
    """永不返回，用于测试取消"""

    def __init__(self):
        self.started = asyncio.Event()

    async def query(self, messages: List[Message]) -> QueryResult:
        self.started.set()
        await asyncio.sleep(3600)
        return QueryResult(content="")


class FakeExecutor(Executor):
    """按顺序返回预设输出；用完后重复最后一个"""

    def __init__(self, outputs: Sequence[Union[Output, Exception]] = (Output(),)):
        self.outputs = list(outputs)
        self.actions: List[Action] = []

    async def execute(self, action: Action, cancel_event: Optional[asyncio.Event] = None) -> Output:
        self.actions.append(action)
        output = self.outputs[0] if len(self.outputs) == 1 else self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return output


@pytest.fixture
def app_config(tmp_path):
    """不读取任何配置文件和真实环境变量的默认配置"""
    env = {
        "OPENROUTER_API_KEY": "test-key",
        "CONTEXT_DIR": str(tmp_path / "context"),
    }
    return load_config(str(tmp_path / "missing.yaml"), env=env)
