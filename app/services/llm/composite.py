"""Ordered provider chain with per-call timeouts and an offline last resort."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from app.services.llm.offline import OfflineTextGenerator
from app.services.llm.providers import TextProvider, build_default_providers
from app.services.log_redaction import sanitize_log_extra

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 45.0


@dataclass(slots=True)
class Completion:
    """Text produced by the chain and which link produced it."""

    text: str
    provider: str
    is_offline: bool = False
    failures: list[str] = field(default_factory=list)


class CompositeProvider:
    """Tries each provider in order; the offline generator answers when all of them fail."""

    name = "composite"

    def __init__(
        self,
        providers: Optional[Sequence[TextProvider]] = None,
        *,
        offline: Optional[OfflineTextGenerator] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._providers = list(providers) if providers is not None else build_default_providers()
        self._offline = offline or OfflineTextGenerator()
        self._timeout_seconds = timeout_seconds

    @property
    def provider_names(self) -> list[str]:
        return [provider.name for provider in self._providers]

    async def complete(self, prompt: str) -> str:
        completion = await self.complete_with_details(prompt)
        return completion.text

    async def complete_with_details(
        self,
        prompt: str,
        *,
        timeout_seconds: Optional[float] = None,
    ) -> Completion:
        timeout = timeout_seconds or self._timeout_seconds
        failures: list[str] = []

        for provider in self._providers:
            provider_name = getattr(provider, "name", type(provider).__name__)
            try:
                text = await asyncio.wait_for(provider.complete(prompt), timeout=timeout)
            except asyncio.TimeoutError:
                failures.append(f"{provider_name}: timed out after {timeout:g}s")
                logger.warning(
                    "LLM provider timed out",
                    extra=sanitize_log_extra(provider=provider_name, timeout_seconds=timeout),
                )
                continue
            except Exception as exc:
                failures.append(f"{provider_name}: {exc}")
                logger.warning(
                    "LLM provider failed",
                    extra=sanitize_log_extra(provider=provider_name, error=str(exc)),
                )
                continue

            if not text or not text.strip():
                failures.append(f"{provider_name}: empty response")
                logger.warning(
                    "LLM provider returned empty response",
                    extra=sanitize_log_extra(provider=provider_name),
                )
                continue

            return Completion(text=text, provider=provider_name, failures=failures)

        if self._providers:
            logger.warning(
                "All LLM providers failed, using offline generator",
                extra=sanitize_log_extra(failures=failures),
            )
        return Completion(
            text=self._offline.generate(prompt),
            provider=self._offline.name,
            is_offline=True,
            failures=failures,
        )
