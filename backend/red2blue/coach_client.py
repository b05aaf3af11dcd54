# red2blue/coach_client.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from red2blue import config


class CoachAdapter(ABC):
    """Black-box text completion used by the chat relay."""

    @abstractmethod
    async def complete(self, messages: List[Dict[str, str]], **kwargs) -> str:
        raise NotImplementedError

    @abstractmethod
    def get_model_info(self) -> Dict[str, Any]:
        raise NotImplementedError


class OpenAICoachAdapter(CoachAdapter):

    def __init__(self,
                 api_key: Optional[str] = None,
                 model: Optional[str] = None,
                 base_url: Optional[str] = None,
                 temperature: Optional[float] = None,
                 max_tokens: Optional[int] = None,
                 timeout: Optional[float] = None,
                 ):
        self.model = model or config.COACH_MODEL
        self.base_url = base_url or config.COACH_BASE_URL
        self.temperature = config.COACH_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or config.COACH_MAX_TOKENS
        self.timeout = timeout or config.COACH_TIMEOUT_SECONDS

        key = api_key or config.coach_api_key()
        if not key or not key.strip():
            raise ValueError("Coach API key not set (COACH_API_KEY / OPENAI_API_KEY)")

        # Retries would stretch past the relay timeout; the relay owns the fallback.
        self.client = AsyncOpenAI(
            api_key=key.strip(),
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
        )

    async def complete(self, messages: List[Dict[str, str]], **kwargs) -> str:
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            logger.error(f"Coach API error: {e}")
            raise

        content = completion.choices[0].message.content or ""

        usage = getattr(completion, "usage", None)
        if usage:
            logger.debug(
                "coach completion tokens prompt={} completion={}",
                usage.prompt_tokens,
                usage.completion_tokens,
            )

        return content.strip()

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "provider": "openai",
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "base_url": self.base_url,
        }


_client: Optional[CoachAdapter] = None


def get_coach_client() -> Optional[CoachAdapter]:
    """
    FastAPI dependency. Returns None when no API key is configured;
    the relay then answers with its fallback replies.
    """
    global _client
    if _client is not None:
        return _client

    if not config.coach_api_key():
        logger.warning("Coach API key missing; chat will use fallback replies")
        return None

    _client = OpenAICoachAdapter()
    logger.info("Coach client ready: {}", _client.get_model_info())
    return _client
