"""
Runner - Agent执行循环

核心流程:
1. 用完整消息缓冲区查询模型
2. 从回复中解析唯一一条命令
3. 追加助手回复，执行命令
4. 检测完成标记；否则格式化观察结果（必要时压缩）
5. 观察结果作为用户消息追加，进入下一步
6. 直到完成或达到步数上限
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, List, Optional, TextIO, TypeVar

from .errors import AgentError, ProcessError, QueryError, RunCancelledError, RunError
from .executor import BashExecutor, Executor
from .parser import BashParser
from .prompts import (
    COMPACTION_SYSTEM_PROMPT, COMPACTION_USER_TEMPLATE, COMPLETION_MARKER,
    DEFAULT_AGENT_PROMPT
)
from .querier import Querier
from .types import (
    LoopState, Message, Output, QueryResult, Role, RunResult, StepResult,
    TerminationReason, TokenUsage
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


NO_OUTPUT_PLACEHOLDER = "(no output)"
TRUNCATION_MARKER = "\n\n[... output truncated ...]\n\n"
SUMMARY_PREFIX = "[Summarized] "
# 观察结果超过该长度才值得压缩
MIN_COMPACTION_LENGTH = 500


@dataclass
class RunnerConfig:
    """Runner配置"""
    max_steps: int = 10
    command_timeout: float = 30.0
    working_dir: Optional[str] = None
    system_prompt: str = DEFAULT_AGENT_PROMPT
    context_threshold: int = 8000  # 0 = 不压缩
    max_observation_length: int = 3000


def is_task_complete(output: Output) -> bool:
    """输出的第一行是否为完成标记"""
    first_line = output.stdout.strip().split("\n", 1)[0]
    return first_line.strip() == COMPLETION_MARKER


def extract_final_output(output: Output) -> str:
    """完成标记之后的全部内容"""
    parts = output.stdout.strip().split("\n", 1)
    if len(parts) > 1:
        return parts[1].strip()
    return ""


def truncate_output(text: str, max_length: int) -> str:
    """保留头尾，中间用标记替代"""
    if max_length <= 0 or len(text) <= max_length:
        return text
    head_length = max_length // 2
    tail_length = max_length - head_length
    return text[:head_length] + TRUNCATION_MARKER + text[len(text) - tail_length:]


def format_observation(output: Output, max_length: int = 3000) -> str:
    """把命令输出格式化为给模型的观察结果"""
    if not output.stdout.strip() and output.exit_code == 0:
        return NO_OUTPUT_PLACEHOLDER

    result = truncate_output(output.stdout, max_length)

    if output.exit_code != 0:
        result = f"[exit code: {output.exit_code}]\n{result}"

    return result


class Runner:
    """
    Agent执行循环的编排者

    每次运行都会重置消息缓冲区和计数；同一个实例不应被多个运行共享。
    """

    def __init__(
        self,
        config: RunnerConfig,
        querier: Querier,
        parser: Optional[BashParser] = None,
        executor: Optional[Executor] = None,
        output: Optional[TextIO] = None
    ):
        self.config = config
        self.querier = querier
        self.parser = parser or BashParser()
        self.executor = executor or BashExecutor(
            timeout=config.command_timeout,
            working_dir=config.working_dir
        )
        self.output = output

        self.state = LoopState.IDLE
        self.messages: List[Message] = []
        self.step_count = 0
        self.token_usage = TokenUsage()
        self.user_task = ""
        self._last_response = ""

    async def run(
        self,
        history: List[Message],
        user_task: str,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RunResult:
        """
        运行Agent循环

        Args:
            history: 之前的对话（不含系统提示词和本次用户消息）
            user_task: 本次用户请求
            cancel_event: 外部取消信号

        Returns:
            RunResult: reason 为 COMPLETE 或 STEP_LIMIT

        Raises:
            RunError: 不可恢复错误，result 为部分结果
        """
        if self.state == LoopState.RUNNING:
            raise AgentError("runner is already running")

        self.state = LoopState.RUNNING
        self.messages = []
        self.step_count = 0
        self.token_usage = TokenUsage()
        self.user_task = user_task
        self._last_response = ""

        self._add_message(Role.SYSTEM, self.config.system_prompt)
        for msg in history:
            self._add_message(msg.role, msg.content)
        self._add_message(Role.USER, user_task)

        logger.info("Starting agent loop (max_steps=%d)", self.config.max_steps)

        try:
            while self.step_count < self.config.max_steps:
                self.step_count += 1
                logger.info(
                    "Starting step %d (context_size=%d)",
                    self.step_count, self.context_size()
                )

                try:
                    step = await self.step(cancel_event)
                except ProcessError as e:
                    logger.warning("Process error (%s), continuing: %s", e.kind.value, e.message)
                    self._add_message(Role.USER, e.message)
                    continue

                if step.completed:
                    logger.info("Agent terminated (reason=%s)", TerminationReason.COMPLETE.value)
                    self.state = LoopState.COMPLETE
                    return self._result(step.final_response, TerminationReason.COMPLETE)
        except AgentError as e:
            self.state = LoopState.FAILED
            logger.error("Unrecoverable error at step %d: %s", self.step_count, e)
            raise RunError(str(e), self._result(self._last_response, None)) from e
        except asyncio.CancelledError:
            self.state = LoopState.FAILED
            raise

        logger.warning("Step limit reached (max_steps=%d)", self.config.max_steps)
        self.state = LoopState.STEP_LIMIT_REACHED
        return self._result(self._last_response, TerminationReason.STEP_LIMIT)

    async def step(self, cancel_event: Optional[asyncio.Event] = None) -> StepResult:
        """执行一步：查询 → 解析 → 执行 → 观察"""
        self._check_cancelled(cancel_event)

        logger.debug("Querying model")
        query_result = await self._until_cancelled(
            self.querier.query(list(self.messages)), cancel_event
        )
        self._account(query_result)
        self._last_response = query_result.content

        action = self.parser.parse_action(query_result.content)

        # 执行前先记录原始回复
        self._add_message(Role.ASSISTANT, query_result.content)

        self._emit(f"$ {action.command}\n")
        logger.info("Executing command: %s", action.command)

        output = await self.executor.execute(action, cancel_event)

        logger.debug(
            "Command completed (output_length=%d, exit_code=%d)",
            len(output.stdout), output.exit_code
        )

        if is_task_complete(output):
            logger.info("Task complete signal in output")
            return StepResult(completed=True, final_response=extract_final_output(output))

        if output.stdout.strip():
            self._emit(output.stdout.rstrip("\n") + "\n")

        feedback = format_observation(output, self.config.max_observation_length)

        if self.should_compact(len(feedback)):
            try:
                feedback = await self.compact(feedback, cancel_event)
            except QueryError as e:
                logger.warning("Failed to compact output, using truncated output: %s", e)

        self._add_message(Role.USER, feedback)
        return StepResult()

    def should_compact(self, observation_length: int) -> bool:
        """上下文超过阈值且观察结果足够大"""
        if self.config.context_threshold <= 0:
            return False
        return (
            self.context_size() > self.config.context_threshold
            and observation_length > MIN_COMPACTION_LENGTH
        )

    async def compact(self, observation: str, cancel_event: Optional[asyncio.Event] = None) -> str:
        """让模型只抽取与原始任务相关的信息"""
        prompt = [
            Message(role=Role.SYSTEM, content=COMPACTION_SYSTEM_PROMPT),
            Message(
                role=Role.USER,
                content=COMPACTION_USER_TEMPLATE.format(task=self.user_task, output=observation)
            ),
        ]

        logger.info("Compacting large output (output_length=%d)", len(observation))

        result = await self._until_cancelled(self.querier.query(prompt), cancel_event)
        self._account(result)

        logger.debug(
            "Output compacted (original_length=%d, compacted_length=%d)",
            len(observation), len(result.content)
        )
        return SUMMARY_PREFIX + result.content

    def context_size(self) -> int:
        """消息缓冲区总字符数"""
        return sum(len(msg.content) for msg in self.messages)

    def _add_message(self, role: Role, content: str) -> None:
        self.messages.append(Message(role=Role(role), content=content))
        logger.debug("Message added (role=%s, content_length=%d)", Role(role).value, len(content))

    def _account(self, result: QueryResult) -> None:
        self.token_usage.add(result)

    def _result(self, response: str, reason: Optional[TerminationReason]) -> RunResult:
        return RunResult(
            response=response,
            messages=list(self.messages),
            steps=self.step_count,
            token_usage=self.token_usage.copy(),
            reason=reason
        )

    def _emit(self, text: str) -> None:
        """写入输出流；失败只记录，不影响运行"""
        if self.output is None:
            return
        try:
            self.output.write(text)
            if hasattr(self.output, "flush"):
                self.output.flush()
        except Exception as e:
            logger.warning("Failed to write to output sink: %s", e)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelledError("run cancelled")

    @staticmethod
    async def _until_cancelled(awaitable: Awaitable[T], cancel_event: Optional[asyncio.Event]) -> T:
        """等待 awaitable，取消信号先到则放弃并抛出 RunCancelledError"""
        if cancel_event is None:
            return await awaitable

        task = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (task, cancelled):
                if not pending.done():
                    pending.cancel()

        if cancelled in done:
            raise RunCancelledError("run cancelled while waiting for the model")
        return task.result()
