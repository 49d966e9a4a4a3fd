"""Remote text-completion providers backed by the vendor SDKs."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import google.generativeai as genai
from anthropic import AsyncAnthropic
from openai import AsyncAzureOpenAI, AsyncOpenAI

from app.config.settings import settings

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE = (
    "You are an assistant that analyzes GitHub issues for software maintainers. "
    "Follow the requested output format exactly."
)

PROVIDER_AZURE_OPENAI = "azure_openai"
PROVIDER_OPENAI = "openai"
PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_GEMINI = "gemini"


class TextProvider(Protocol):
    """Anything that turns a prompt into completion text."""

    name: str

    async def complete(self, prompt: str) -> str: ...


class OpenAIProvider:
    """OpenAI chat completions"""

    name = PROVIDER_OPENAI

    def __init__(
        self,
        *,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model or settings.OPENAI_MODEL
        self._max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        self._temperature = settings.LLM_TEMPERATURE if temperature is None else temperature

    async def complete(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": prompt},
            ],
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        return response.choices[0].message.content or ""


class AzureOpenAIProvider(OpenAIProvider):
    """Azure-hosted OpenAI deployment, addressed by deployment name."""

    name = PROVIDER_AZURE_OPENAI

    def __init__(
        self,
        *,
        api_key: str,
        endpoint: str,
        deployment_name: str,
        api_version: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        client: Optional[AsyncAzureOpenAI] = None,
    ) -> None:
        super().__init__(
            api_key=api_key,
            model=deployment_name,
            max_tokens=max_tokens,
            temperature=temperature,
            client=client
            or AsyncAzureOpenAI(
                api_key=api_key,
                azure_endpoint=endpoint,
                api_version=api_version or settings.AZURE_OPENAI_API_VERSION,
            ),
        )


class AnthropicProvider:
    """Anthropic Claude messages API"""

    name = PROVIDER_ANTHROPIC

    def __init__(
        self,
        *,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        self._client = client or AsyncAnthropic(api_key=api_key)
        self._model = model or settings.ANTHROPIC_MODEL
        self._max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        self._temperature = settings.LLM_TEMPERATURE if temperature is None else temperature

    async def complete(self, prompt: str) -> str:
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            system=SYSTEM_MESSAGE,
            messages=[{"role": "user", "content": prompt}],
        )
        if not response.content:
            return ""
        return response.content[0].text


class GeminiProvider:
    """Google Gemini via google-generativeai"""

    name = PROVIDER_GEMINI

    def __init__(
        self,
        *,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> None:
        genai.configure(api_key=api_key)
        self._model = genai.GenerativeModel(model or settings.GEMINI_MODEL)
        self._max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        self._temperature = settings.LLM_TEMPERATURE if temperature is None else temperature

    async def complete(self, prompt: str) -> str:
        # Gemini SDK call is sync, run it in executor
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None,
            lambda: self._model.generate_content(
                prompt,
                generation_config=genai.types.GenerationConfig(
                    temperature=self._temperature,
                    max_output_tokens=self._max_tokens,
                ),
            ),
        )
        return response.text


def build_default_providers() -> list[TextProvider]:
    """Build the remote provider chain from settings.

    Providers without credentials are skipped. USE_FALLBACK_LLM forces the
    offline generator by returning an empty chain.
    """

    if settings.USE_FALLBACK_LLM:
        logger.info("USE_FALLBACK_LLM is set; remote LLM providers disabled")
        return []

    providers: list[TextProvider] = []
    for raw_name in settings.LLM_PROVIDER_ORDER.split(","):
        name = raw_name.strip().lower()
        if not name:
            continue
        provider = _build_provider(name)
        if provider is not None:
            providers.append(provider)

    logger.info(
        "LLM provider chain configured",
        extra={"providers": [provider.name for provider in providers]},
    )
    return providers


def _build_provider(name: str) -> Optional[TextProvider]:
    if name == PROVIDER_AZURE_OPENAI:
        if not (
            settings.AZURE_OPENAI_API_KEY
            and settings.AZURE_OPENAI_ENDPOINT
            and settings.AZURE_OPENAI_DEPLOYMENT_NAME
        ):
            return None
        return AzureOpenAIProvider(
            api_key=settings.AZURE_OPENAI_API_KEY,
            endpoint=settings.AZURE_OPENAI_ENDPOINT,
            deployment_name=settings.AZURE_OPENAI_DEPLOYMENT_NAME,
        )
    if name == PROVIDER_OPENAI:
        if not settings.OPENAI_API_KEY:
            return None
        return OpenAIProvider(api_key=settings.OPENAI_API_KEY)
    if name == PROVIDER_ANTHROPIC:
        if not settings.ANTHROPIC_API_KEY:
            return None
        return AnthropicProvider(api_key=settings.ANTHROPIC_API_KEY)
    if name == PROVIDER_GEMINI:
        if not settings.GEMINI_API_KEY:
            return None
        return GeminiProvider(api_key=settings.GEMINI_API_KEY)

    logger.warning("Unknown LLM provider in LLM_PROVIDER_ORDER", extra={"provider": name})
    return None
