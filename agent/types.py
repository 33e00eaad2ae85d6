"""
核心类型定义 - Agent执行循环的共享词汇
"""
from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field


class Role(str, Enum):
    """消息角色"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class LoopState(Enum):
    """Runner 状态机"""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    STEP_LIMIT_REACHED = "step_limit_reached"
    FAILED = "failed"


class TerminationReason(str, Enum):
    """正常结束的原因，一次运行只有一个"""
    COMPLETE = "complete"
    STEP_LIMIT = "step_limit"


@dataclass(frozen=True)
class Message:
    """对话消息"""
    role: Role
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class Action:
    """从模型回复中解析出的单条shell命令"""
    command: str


@dataclass
class Output:
    """命令执行结果（stderr 合并到 stdout）"""
    stdout: str = ""
    exit_code: int = 0


@dataclass(frozen=True)
class QueryResult:
    """一次LLM调用的结果"""
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class TokenUsage:
    """整个运行期间累计的token用量"""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, result: QueryResult) -> None:
        self.input_tokens += result.input_tokens
        self.output_tokens += result.output_tokens
        self.total_tokens += result.total_tokens

    def copy(self) -> "TokenUsage":
        return TokenUsage(self.input_tokens, self.output_tokens, self.total_tokens)


@dataclass
class StepResult:
    """单步执行结果"""
    completed: bool = False
    final_response: str = ""


@dataclass
class RunResult:
    """
    一次运行的最终汇总

    reason 为 None 表示运行失败（只会出现在 RunError.result 中）
    """
    response: str = ""
    messages: List[Message] = field(default_factory=list)
    steps: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    reason: Optional[TerminationReason] = None
