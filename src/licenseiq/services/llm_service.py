"""
LLM service for rule synthesis prompts.

Supports Groq, Anthropic and OpenAI completion endpoints with automatic
fallback from the primary to the secondary provider.
"""

import json
import re
from functools import lru_cache
from typing import Any

import structlog
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from licenseiq.config import Settings, get_settings

logger = structlog.get_logger(__name__)

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```")
_ANY_FENCE = re.compile(r"```\s*([\s\S]*?)\s*```")


class LLMService:
    """
    LLM completion client.

    `generate` returns raw response text; callers own prompt construction
    and response parsing. Each provider call is retried with exponential
    backoff before falling back to the secondary provider.
    """

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.settings = settings

        # Initialize clients
        self._anthropic: AsyncAnthropic | None = None
        self._openai: AsyncOpenAI | None = None
        self._groq: AsyncOpenAI | None = None

        if settings.anthropic_api_key:
            self._anthropic = AsyncAnthropic(
                api_key=settings.anthropic_api_key,
                timeout=settings.llm_timeout,
            )
        if settings.openai_api_key:
            self._openai = AsyncOpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.llm_timeout,
            )
        if settings.groq_api_key:
            # Groq exposes an OpenAI-compatible chat completions endpoint
            self._groq = AsyncOpenAI(
                api_key=settings.groq_api_key,
                base_url=settings.groq_base_url,
                timeout=settings.llm_timeout,
            )

        self.primary_provider = settings.primary_llm_provider
        self.primary_model = settings.primary_llm_model
        self.fallback_provider = settings.fallback_llm_provider
        self.fallback_model = settings.fallback_llm_model

    def health_check(self) -> dict[str, bool]:
        """Report which providers have a configured client."""
        return {
            "anthropic": self._anthropic is not None,
            "openai": self._openai is not None,
            "groq": self._groq is not None,
        }

    def _is_configured(self, provider: str) -> bool:
        return self.health_check().get(provider, False)

    # =========================================================================
    # Core LLM Calls
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _call_anthropic(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Call Anthropic Claude API."""
        if self._anthropic is None:
            raise ValueError("Anthropic client not configured. Set ANTHROPIC_API_KEY.")
        response = await self._anthropic.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        return response.content[0].text

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _call_chat_completions(
        self,
        provider: str,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Call an OpenAI-compatible chat completions API (OpenAI or Groq)."""
        client = self._groq if provider == "groq" else self._openai
        if client is None:
            raise ValueError(
                f"{provider} client not configured. Set {provider.upper()}_API_KEY."
            )
        response = await client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )
        return response.choices[0].message.content or ""

    async def _call(
        self,
        provider: str,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        if provider == "anthropic":
            return await self._call_anthropic(
                model, system_prompt, user_prompt, temperature, max_tokens
            )
        return await self._call_chat_completions(
            provider, model, system_prompt, user_prompt, temperature, max_tokens
        )

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.1,
        max_tokens: int | None = None,
        use_fallback: bool = True,
    ) -> tuple[str, str]:
        """
        Generate LLM response with automatic fallback.

        Returns (response_text, model_used).
        """
        max_tokens = max_tokens or self.settings.llm_max_tokens
        primary_error: Exception | None = None

        # Try primary provider
        if self._is_configured(self.primary_provider):
            try:
                response = await self._call(
                    self.primary_provider,
                    self.primary_model,
                    system_prompt,
                    user_prompt,
                    temperature,
                    max_tokens,
                )
                return response, self.primary_model
            except Exception as e:
                logger.warning(
                    "primary_llm_failed",
                    provider=self.primary_provider,
                    error=str(e),
                )
                if not use_fallback:
                    raise
                primary_error = e

        # Try fallback provider
        if use_fallback and self._is_configured(self.fallback_provider):
            try:
                response = await self._call(
                    self.fallback_provider,
                    self.fallback_model,
                    system_prompt,
                    user_prompt,
                    temperature,
                    max_tokens,
                )
                return response, self.fallback_model
            except Exception as e:
                logger.error(
                    "fallback_llm_failed",
                    provider=self.fallback_provider,
                    error=str(e),
                )
                raise

        if primary_error is not None:
            raise primary_error
        raise ValueError(
            "No LLM provider available. Set GROQ_API_KEY, ANTHROPIC_API_KEY or OPENAI_API_KEY."
        )

    # =========================================================================
    # Response Parsing
    # =========================================================================

    @staticmethod
    def parse_json(text: str, opener: str = "{") -> Any:
        """
        Extract JSON from LLM response text.

        Looks for a ```json fenced block, then any fenced block, then treats
        the whole response as JSON. As a last resort takes the span from the
        first `opener` to the last matching closer. Returns None when nothing
        parses.
        """
        match = _JSON_FENCE.search(text) or _ANY_FENCE.search(text)
        candidate = match.group(1) if match else text.strip()

        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass

        closer = "]" if opener == "[" else "}"
        start = candidate.find(opener)
        end = candidate.rfind(closer) + 1
        if start >= 0 and end > start:
            try:
                return json.loads(candidate[start:end])
            except json.JSONDecodeError:
                return None
        return None


@lru_cache()
def get_llm_service() -> LLMService:
    """Get cached LLM service instance."""
    return LLMService()
