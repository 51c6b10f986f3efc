# creditwise/services/gpt_service.py
"""
GPT Service for CreditWise.

Async-only wrapper around the OpenAI chat API. This is the single text
generation boundary of the system: the advisor agent talks to it, tests
replace it with a mock.
"""
import time
from typing import Optional, Dict, Any, List, AsyncIterator
from dataclasses import dataclass
import logging
from openai import AsyncOpenAI

from creditwise.core.config import settings
from creditwise.core.service_base import BaseService
from creditwise.core.exceptions import (
    GPTServiceError,
    ConfigurationError,
    ValidationError
)

logger = logging.getLogger(__name__)


@dataclass
class GPTConfig:
    """Configuration for GPT Service"""
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    max_tokens: Optional[int] = None
    temperature: float = 0.7
    timeout: int = 30
    max_retries: int = 2


class GPTService(BaseService[GPTConfig]):
    """
    Async GPT service for text generation.

    ``chat`` returns a full completion, ``stream_chat`` yields content
    deltas as they arrive.
    """

    def __init__(self, config: Optional[GPTConfig] = None):
        if config is None:
            config = GPTConfig(
                api_key=settings.OPENAI_API_KEY,
                model=settings.GPT_MODEL,
                temperature=settings.GPT_TEMPERATURE
            )

        super().__init__(config, logger)

    def _validate_config(self) -> None:
        super()._validate_config()

        if not self.config.api_key:
            raise ConfigurationError(
                "OpenAI API key is required. Set OPENAI_API_KEY environment variable.",
                component="GPTService"
            )

        if self.config.temperature < 0 or self.config.temperature > 2:
            raise ConfigurationError(
                "Temperature must be between 0 and 2",
                component="GPTService"
            )

    async def _initialize_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.config.api_key,
            timeout=self.config.timeout,
            max_retries=self.config.max_retries
        )

    def _build_params(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float],
        max_tokens: Optional[int],
        **kwargs
    ) -> Dict[str, Any]:
        if not messages:
            raise ValidationError("Messages cannot be empty", field="messages")

        params = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
        }
        if max_tokens or self.config.max_tokens:
            params["max_tokens"] = max_tokens or self.config.max_tokens
        params.update(kwargs)
        return params

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> str:
        """
        Generate a completion for a full chat transcript.

        Args:
            messages: OpenAI-style role/content dicts, oldest first
            temperature: Override default temperature
            max_tokens: Override default max tokens

        Returns:
            Generated text

        Raises:
            GPTServiceError: If generation fails or returns nothing
            ValidationError: If messages is empty
        """
        await self.ensure_initialized()
        params = self._build_params(messages, temperature, max_tokens, **kwargs)

        try:
            self.logger.debug(f"Generating completion with model {params['model']}")
            response = await self.client.chat.completions.create(**params)

            if not response.choices:
                raise GPTServiceError("No completion choices returned from API", model=self.config.model)

            content = response.choices[0].message.content
            if not content:
                raise GPTServiceError("Empty completion returned from API", model=self.config.model)

            self._record_call()
            return content.strip()

        except (GPTServiceError, ValidationError):
            self._record_call(failed=True)
            raise
        except Exception as e:
            self._record_call(failed=True)
            error_msg = f"Failed to generate completion: {str(e)}"
            self.logger.error(error_msg, exc_info=True)
            raise GPTServiceError(error_msg, model=self.config.model, operation="chat", original_error=e)

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> str:
        """Single-prompt convenience wrapper around ``chat``."""
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt cannot be empty", field="prompt")

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return await self.chat(messages, temperature=temperature, max_tokens=max_tokens, **kwargs)

    async def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ) -> AsyncIterator[str]:
        """
        Stream a completion, yielding content deltas.

        Raises:
            GPTServiceError: If the stream cannot be opened or breaks off
        """
        await self.ensure_initialized()
        params = self._build_params(messages, temperature, max_tokens, stream=True)

        try:
            stream = await self.client.chat.completions.create(**params)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
            self._record_call()

        except Exception as e:
            self._record_call(failed=True)
            error_msg = f"Streaming completion failed: {str(e)}"
            self.logger.error(error_msg, exc_info=True)
            raise GPTServiceError(error_msg, model=self.config.model, operation="stream_chat", original_error=e)

    async def health_check(self) -> Dict[str, Any]:
        try:
            start_time = time.time()
            await self.complete("Respond with OK", temperature=0, max_tokens=5)
            response_time_ms = int((time.time() - start_time) * 1000)

            return {
                "healthy": True,
                "status": "connected",
                "details": {
                    "model": self.config.model,
                    "response_time_ms": response_time_ms,
                    "api_key_set": bool(self.config.api_key)
                }
            }

        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "details": {
                    "error": str(e),
                    "model": self.config.model
                }
            }

    def get_metrics(self) -> Dict[str, Any]:
        metrics = super().get_metrics()
        metrics.update({
            "model": self.config.model,
            "temperature": self.config.temperature,
            "timeout": self.config.timeout
        })
        return metrics
