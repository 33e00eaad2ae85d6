"""
LLM查询接口 - 通过OpenAI兼容API发送完整消息序列
支持 OpenAI / Gemini / OpenRouter
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from .errors import QueryError
from .types import Message, QueryResult

logger = logging.getLogger(__name__)


PROVIDER_BASE_URLS = {
    "openai": None,
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "openrouter": "https://openrouter.ai/api/v1",
}


class Querier(ABC):
    """LLM查询接口"""

    @abstractmethod
    async def query(self, messages: List[Message]) -> QueryResult:
        """messages 即完整提示词，不附加任何隐式历史"""


class OpenAIQuerier(Querier):
    """基于 AsyncOpenAI 的查询实现"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = "gpt-4o-mini",
        provider: str = "openai",
        temperature: Optional[float] = None,
        max_retries: int = 2
    ):
        self.provider = provider
        self.model = model
        self.temperature = temperature

        if provider not in PROVIDER_BASE_URLS:
            raise QueryError(f"unknown LLM provider: {provider}")
        base_url = base_url or PROVIDER_BASE_URLS[provider]

        try:
            self.client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                max_retries=max_retries
            )
        except openai.OpenAIError as e:
            raise QueryError(f"failed to create LLM client: {e}") from e

    async def query(self, messages: List[Message]) -> QueryResult:
        kwargs: Dict[str, Any] = {}
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[msg.to_dict() for msg in messages],
                **kwargs
            )
        except openai.OpenAIError as e:
            raise QueryError(f"failed to generate content: {e}") from e

        if not response.choices:
            raise QueryError("no choices returned from model")

        content = response.choices[0].message.content or ""

        # 后端未返回用量时记为0
        usage = response.usage
        result = QueryResult(
            content=content,
            input_tokens=(usage.prompt_tokens or 0) if usage else 0,
            output_tokens=(usage.completion_tokens or 0) if usage else 0,
            total_tokens=(usage.total_tokens or 0) if usage else 0,
        )

        logger.debug(
            "Query finished (model=%s, response_length=%d, input_tokens=%d, output_tokens=%d)",
            self.model, len(content), result.input_tokens, result.output_tokens
        )
        return result
