"""Language-model provider chain."""

from app.services.llm.composite import Completion, CompositeProvider
from app.services.llm.offline import OfflineTextGenerator
from app.services.llm.providers import (
    AnthropicProvider,
    AzureOpenAIProvider,
    GeminiProvider,
    OpenAIProvider,
    TextProvider,
    build_default_providers,
)

__all__ = [
    "Completion",
    "CompositeProvider",
    "OfflineTextGenerator",
    "TextProvider",
    "OpenAIProvider",
    "AzureOpenAIProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "build_default_providers",
]
