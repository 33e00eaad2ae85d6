"""
Bash Claw - 终端聊天前端 + bash Agent模式

包含功能:
- Agent执行循环（查询 → 解析 → 执行 → 观察）
- 命令超时与取消
- 大输出截断与上下文压缩
- 会话存储与用量记录
- 简单模式 / Agent模式
"""

__version__ = "0.1.0"

from agent.types import (
    Role, Message, Action, Output, QueryResult, TokenUsage,
    RunResult, TerminationReason, LoopState
)
from agent.errors import AgentError, ProcessError, QueryError, RunError
from agent.querier import Querier, OpenAIQuerier
from agent.parser import BashParser
from agent.executor import Executor, BashExecutor
from agent.runner import Runner, RunnerConfig
from agent.notifier import Heartbeat
from session.store import SessionStore
from chat.service import ChatService, ChatReply

__all__ = [
    # Core types
    "Role", "Message", "Action", "Output", "QueryResult", "TokenUsage",
    "RunResult", "TerminationReason", "LoopState",
    # Errors
    "AgentError", "ProcessError", "QueryError", "RunError",
    # Core components
    "Querier", "OpenAIQuerier", "BashParser", "Executor", "BashExecutor",
    "Runner", "RunnerConfig", "Heartbeat",
    # Collaborators
    "SessionStore", "ChatService", "ChatReply",
]
