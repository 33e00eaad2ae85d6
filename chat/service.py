"""
聊天服务 - Agent执行循环的调用方

处理一条用户消息:
1. /clear 结束当前会话
2. 获取或创建会话，达到历史上限时轮换
3. 保存用户消息
4. 简单模式直接查询；Agent模式运行 Runner
5. 记录用量，保存并返回回复
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, TextIO

from agent.errors import QueryError, RunError
from agent.notifier import Heartbeat
from agent.querier import Querier
from agent.runner import Runner, RunnerConfig
from agent.types import Message, Role, TerminationReason, TokenUsage
from config_loader import AppConfig
from session.store import SessionStore

logger = logging.getLogger(__name__)


CLEAR_COMMAND = "/clear"
CLEARED_REPLY = "Conversation cleared. Starting fresh!"
APOLOGY_REPLY = "Sorry, I encountered an error while processing your request."


@dataclass
class ChatReply:
    """一轮对话的结果"""
    text: str
    session_id: Optional[int] = None
    steps: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    reason: Optional[TerminationReason] = None
    rotated: bool = False
    failed: bool = False


RunnerFactory = Callable[[RunnerConfig], Runner]


class ChatService:
    """把用户消息路由到简单模式或Agent模式"""

    def __init__(
        self,
        querier: Querier,
        store: SessionStore,
        config: AppConfig,
        output: Optional[TextIO] = None,
        notify: Optional[Callable[[], Any]] = None,
        runner_factory: Optional[RunnerFactory] = None
    ):
        self.querier = querier
        self.store = store
        self.config = config
        self.output = output
        self.notify = notify
        self.runner_factory = runner_factory or self._default_runner
        self.agentic_mode = config.agent.agentic_mode

    @property
    def model(self) -> str:
        return self.config.llm.current.model

    def _default_runner(self, runner_config: RunnerConfig) -> Runner:
        return Runner(runner_config, self.querier, output=self.output)

    async def handle_message(
        self,
        key: str,
        text: str,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ChatReply:
        """处理一条消息；同一个 key 的消息串行处理"""
        async with self.store.lock(key):
            if text.strip() == CLEAR_COMMAND:
                return await self._clear(key)

            prompt = self.config.simple_prompt()
            session = await self.store.get_or_create_session(key, prompt)

            rotated = False
            count = await self.store.count_session_messages(session.id)
            if count >= self.config.chat.history_limit:
                session = await self.store.create_session(key, prompt)
                rotated = True
                logger.info("Session auto-rotated due to limit (key=%s, session_id=%d)", key, session.id)

            user_message_id = await self.store.add_message(session.id, Role.USER, text)

            if self.agentic_mode:
                reply = await self._handle_agentic(key, session.id, user_message_id, text, cancel_event)
            else:
                reply = await self._handle_simple(key, session.id, user_message_id)

            reply.rotated = rotated
            return reply

    async def _clear(self, key: str) -> ChatReply:
        session = await self.store.get_active_session(key)
        if session is not None:
            await self.store.end_session(session.id)
        logger.info("Session ended by user (key=%s)", key)
        return ChatReply(text=CLEARED_REPLY)

    async def _handle_simple(self, key: str, session_id: int, user_message_id: int) -> ChatReply:
        """简单模式：系统提示词 + 会话历史，单次查询"""
        messages: List[Message] = [Message(role=Role.SYSTEM, content=self.config.simple_prompt())]
        messages.extend(await self.store.get_session_messages(session_id))

        logger.info("AI request sending (key=%s, session_id=%d)", key, session_id)
        try:
            result = await self.querier.query(messages)
        except QueryError as e:
            logger.error("Unable to generate AI response (key=%s): %s", key, e)
            return ChatReply(text=APOLOGY_REPLY, session_id=session_id, failed=True)

        usage = TokenUsage()
        usage.add(result)
        logger.info(
            "AI response received (key=%s, session_id=%d, input_tokens=%d, output_tokens=%d, total_tokens=%d)",
            key, session_id, usage.input_tokens, usage.output_tokens, usage.total_tokens
        )

        await self._finish(session_id, user_message_id, usage, result.content)
        return ChatReply(text=result.content, session_id=session_id, steps=1, token_usage=usage)

    async def _handle_agentic(
        self,
        key: str,
        session_id: int,
        user_message_id: int,
        text: str,
        cancel_event: Optional[asyncio.Event]
    ) -> ChatReply:
        """Agent模式：运行执行循环"""
        # 去掉刚保存的本条消息，由 Runner 单独追加
        history = (await self.store.get_session_messages(session_id))[:-1]

        runner = self.runner_factory(self.config.runner_config())

        logger.info(
            "Starting agentic run (key=%s, session_id=%d, max_steps=%d, history_messages=%d)",
            key, session_id, runner.config.max_steps, len(history)
        )

        try:
            if self.notify is not None:
                async with Heartbeat(self.notify, self.config.agent.heartbeat_interval):
                    result = await runner.run(history, text, cancel_event)
            else:
                result = await runner.run(history, text, cancel_event)
        except RunError as e:
            steps = e.result.steps if e.result else 0
            logger.error("Agentic run failed (key=%s, steps=%d): %s", key, steps, e)
            return ChatReply(
                text=APOLOGY_REPLY,
                session_id=session_id,
                steps=steps,
                token_usage=e.result.token_usage if e.result else TokenUsage(),
                failed=True
            )

        if result.reason == TerminationReason.STEP_LIMIT:
            logger.warning("Agentic run hit step limit (key=%s, steps=%d)", key, result.steps)

        logger.info(
            "Agentic run complete (key=%s, session_id=%d, steps=%d, input_tokens=%d, "
            "output_tokens=%d, total_tokens=%d, terminated_by=%s)",
            key, session_id, result.steps, result.token_usage.input_tokens,
            result.token_usage.output_tokens, result.token_usage.total_tokens, result.reason.value
        )

        await self._finish(session_id, user_message_id, result.token_usage, result.response)
        return ChatReply(
            text=result.response,
            session_id=session_id,
            steps=result.steps,
            token_usage=result.token_usage,
            reason=result.reason
        )

    async def _finish(self, session_id: int, user_message_id: int, usage: TokenUsage, response: str) -> None:
        """记录用量并保存助手回复"""
        await self.store.record_llm_request(
            session_id, user_message_id,
            usage.input_tokens, usage.output_tokens, usage.total_tokens,
            self.model
        )
        await self.store.add_message(session_id, Role.ASSISTANT, response)
