"""Provider-switched LLM completion client"""

from typing import Optional
import asyncio
import logging

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
import google.generativeai as genai

from commit_translator.config.settings import settings
from commit_translator.exceptions import LLMConfigurationError, LLMError

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("anthropic", "openai", "gemini")


class LLMClient:
    """Single-prompt completion against the configured model provider.

    Provider SDK clients are created on first use so a missing API key only
    fails the calls that need it.
    """

    def __init__(self, provider: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.provider = (provider or settings.LLM_PROVIDER).lower()
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported LLM provider: {self.provider}")
        self.timeout_seconds = timeout_seconds or settings.LLM_TIMEOUT_SECONDS
        self._anthropic_client: Optional[AsyncAnthropic] = None
        self._openai_client: Optional[AsyncOpenAI] = None
        self._gemini_model = None

    async def complete(self, prompt: str, *, max_tokens: int, system: Optional[str] = None) -> str:
        """
        Submit one user prompt and return the model's text.

        Args:
            prompt: User message content
            max_tokens: Completion token budget
            system: Optional system instruction

        Returns:
            Raw response text (may or may not contain JSON)

        Raises:
            LLMError: when the provider call fails or times out
        """
        try:
            if self.provider == "anthropic":
                call = self._complete_anthropic(prompt, max_tokens, system)
            elif self.provider == "openai":
                call = self._complete_openai(prompt, max_tokens, system)
            else:
                call = self._complete_gemini(prompt, max_tokens, system)
            text = await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except LLMError:
            raise
        except asyncio.TimeoutError as e:
            raise LLMError(f"{self.provider} call timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            logger.error(f"{self.provider} completion failed: {e}")
            raise LLMError(f"{self.provider} completion failed: {e}") from e

        return (text or "").strip()

    async def _complete_anthropic(self, prompt: str, max_tokens: int, system: Optional[str]) -> str:
        if self._anthropic_client is None:
            if not settings.ANTHROPIC_API_KEY:
                raise LLMConfigurationError("ANTHROPIC_API_KEY is required when LLM_PROVIDER is 'anthropic'")
            self._anthropic_client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)

        kwargs = {
            "model": settings.ANTHROPIC_MODEL,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        response = await self._anthropic_client.messages.create(**kwargs)
        return "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")

    async def _complete_openai(self, prompt: str, max_tokens: int, system: Optional[str]) -> str:
        if self._openai_client is None:
            if not settings.OPENAI_API_KEY:
                raise LLMConfigurationError("OPENAI_API_KEY is required when LLM_PROVIDER is 'openai'")
            self._openai_client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await self._openai_client.chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=messages,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""

    async def _complete_gemini(self, prompt: str, max_tokens: int, system: Optional[str]) -> str:
        if self._gemini_model is None:
            if not settings.GEMINI_API_KEY:
                raise LLMConfigurationError("GEMINI_API_KEY is required when LLM_PROVIDER is 'gemini'")
            genai.configure(api_key=settings.GEMINI_API_KEY)
            self._gemini_model = genai.GenerativeModel(settings.GEMINI_MODEL)

        full_prompt = f"{system}\n\n{prompt}" if system else prompt

        # Gemini SDK is sync, so run it in the default executor
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self._gemini_model.generate_content(
                full_prompt,
                generation_config=genai.types.GenerationConfig(max_output_tokens=max_tokens),
            ),
        )
        return response.text
