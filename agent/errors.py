"""
错误类型 - 三类错误各有传播策略

- 终止（完成 / 步数上限）不是异常，体现在 RunResult.reason
- ProcessError 可恢复：转成纠正消息后继续循环
- 其余 AgentError 不可恢复：中止运行，以 RunError 携带部分结果抛出
"""
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .types import RunResult


class AgentError(Exception):
    """Agent错误基类"""


class ProcessErrorKind(str, Enum):
    PARSE = "parse"
    TIMEOUT = "timeout"


class ProcessError(AgentError):
    """可恢复错误，message 会作为观察结果反馈给模型"""

    kind: ProcessErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ParseError(ProcessError):
    """模型回复中没有可执行的命令块"""

    kind = ProcessErrorKind.PARSE


class CommandTimeoutError(ProcessError):
    """命令执行超时"""

    kind = ProcessErrorKind.TIMEOUT

    def __init__(self, timeout: float, command: str = ""):
        self.timeout = timeout
        self.command = command
        super().__init__(
            f"Command timed out after {timeout:g}s and was killed. "
            "Try a faster command, limit the output, or run it in the background."
        )


class QueryError(AgentError):
    """LLM后端不可达、无返回或请求非法"""


class ExecutorError(AgentError):
    """子进程无法启动"""


class RunCancelledError(AgentError):
    """运行被外部取消"""


class RunError(AgentError):
    """Runner.run 的不可恢复失败，result 为截至失败时的部分结果"""

    def __init__(self, message: str, result: Optional["RunResult"] = None):
        super().__init__(message)
        self.result = result
