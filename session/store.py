"""
会话存储 - 按会话键隔离的对话历史与用量记录

结构:
- arena: session_id -> Session
- index: key -> 当前活跃的 session_id
- locks: key -> asyncio.Lock（同一会话键同时只有一个写者，不同键互不影响；
  只登记正在使用的键）
"""
import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from agent.types import Message, Role, TokenUsage

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """会话不存在"""


@dataclass
class UsageRecord:
    """一次LLM请求的用量记录"""
    session_id: int
    user_message_id: int
    input_tokens: int
    output_tokens: int
    total_tokens: int
    model: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Session:
    """一段对话"""
    id: int
    key: str
    system_prompt: str
    messages: List[Message] = field(default_factory=list)
    usage: List[UsageRecord] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.ended_at is None


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionStore:
    """内存会话存储"""

    def __init__(self):
        self._sessions: Dict[int, Session] = {}
        self._active: Dict[str, int] = {}
        self._locks: Dict[str, _KeyLock] = {}
        self._ids = itertools.count(1)

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """持有会话键对应的写锁；没有协程持有或等待时从登记表中移除"""
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def _get(self, session_id: int) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def get_session(self, session_id: int) -> Session:
        return self._get(session_id)

    async def get_active_session(self, key: str) -> Optional[Session]:
        session_id = self._active.get(key)
        if session_id is None:
            return None
        return self._sessions[session_id]

    async def get_or_create_session(self, key: str, system_prompt: str) -> Session:
        session = await self.get_active_session(key)
        if session is not None:
            return session
        return await self.create_session(key, system_prompt)

    async def create_session(self, key: str, system_prompt: str) -> Session:
        """新建会话，同一个键之前的活跃会话会被结束"""
        current = self._active.get(key)
        if current is not None:
            await self.end_session(current)

        session = Session(id=next(self._ids), key=key, system_prompt=system_prompt)
        self._sessions[session.id] = session
        self._active[key] = session.id
        logger.debug("Session created (key=%s, session_id=%d)", key, session.id)
        return session

    async def end_session(self, session_id: int) -> None:
        session = self._get(session_id)
        if session.ended_at is None:
            session.ended_at = datetime.now()
        if self._active.get(session.key) == session_id:
            del self._active[session.key]
        logger.debug("Session ended (key=%s, session_id=%d)", session.key, session_id)

    async def add_message(self, session_id: int, role: Role, content: str) -> int:
        """追加消息，返回消息ID（从1开始的位置）"""
        session = self._get(session_id)
        session.messages.append(Message(role=Role(role), content=content))
        return len(session.messages)

    async def get_session_messages(self, session_id: int) -> List[Message]:
        return list(self._get(session_id).messages)

    async def count_session_messages(self, session_id: int) -> int:
        return len(self._get(session_id).messages)

    async def history(self, session_id: int, limit: int = 0) -> List[Message]:
        """最近 limit 条消息，limit <= 0 返回全部"""
        messages = self._get(session_id).messages
        if limit > 0 and len(messages) > limit:
            return list(messages[-limit:])
        return list(messages)

    async def record_llm_request(
        self,
        session_id: int,
        user_message_id: int,
        input_tokens: int,
        output_tokens: int,
        total_tokens: int,
        model: str
    ) -> UsageRecord:
        session = self._get(session_id)
        record = UsageRecord(
            session_id=session_id,
            user_message_id=user_message_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            model=model
        )
        session.usage.append(record)
        return record

    async def usage(self, session_id: int) -> TokenUsage:
        """会话内所有请求的用量合计"""
        total = TokenUsage()
        for record in self._get(session_id).usage:
            total.input_tokens += record.input_tokens
            total.output_tokens += record.output_tokens
            total.total_tokens += record.total_tokens
        return total
