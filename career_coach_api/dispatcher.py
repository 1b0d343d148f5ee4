"""Sequential key/model fallback over LLM providers.

Each configured (API key, model) pair is tried in order until one answers.
The traversal is the resilience mechanism: there is no backoff and no
parallel fan-out, so at most one attempt is in flight and billing is never
multiplied.
"""

from dataclasses import dataclass, field
from typing import Protocol

import structlog

from career_coach_api.config import Settings
from career_coach_api.gemini_client import Attachment, GeminiError, LLMResponse
from career_coach_api.observability import (
    llm_dispatch_exhausted_total,
    log_llm_attempt,
    log_llm_result,
)

logger = structlog.get_logger()


class LLMClient(Protocol):
    async def generate(
        self,
        api_key: str,
        model: str,
        prompt: str,
        structured: bool = False,
        attachment: Attachment | None = None,
    ) -> LLMResponse: ...


@dataclass(frozen=True)
class ProviderDescriptor:
    """One credential/model pair the dispatcher may try."""

    api_key: str
    model: str
    key_index: int = 1

    @property
    def label(self) -> str:
        """Log-safe name; never includes the key itself."""
        return f"key#{self.key_index}/{self.model}"

    def __repr__(self) -> str:
        return f"ProviderDescriptor({self.label})"


@dataclass(frozen=True)
class AttemptFailure:
    provider: str
    error: str
    status_code: int | None = None
    rate_limited: bool = False


@dataclass
class DispatchResult:
    content: str
    provider: ProviderDescriptor
    attempts: int
    tokens_used: int = 0
    failures: list[AttemptFailure] = field(default_factory=list)


class DispatchError(Exception):
    """Base exception for dispatcher failures."""

    pass


class NoProvidersConfiguredError(DispatchError):
    """Raised before any attempt when no credential/model pair is configured."""

    pass


class ProviderExhaustedError(DispatchError):
    """Raised when every configured provider failed."""

    def __init__(self, failures: list[AttemptFailure]):
        self.failures = list(failures)
        summary = "; ".join(f"{f.provider}: {f.error}" for f in self.failures)
        super().__init__(f"All {len(self.failures)} LLM providers failed: {summary}")

    @property
    def rate_limited(self) -> bool:
        """True if any provider failed on quota, so the user should retry shortly."""
        return any(f.rate_limited for f in self.failures)


def build_providers(api_keys: list[str], models: list[str]) -> list[ProviderDescriptor]:
    """Cross keys with models, keys outer and models inner."""
    return [
        ProviderDescriptor(api_key=key, model=model, key_index=index)
        for index, key in enumerate(api_keys, start=1)
        for model in models
    ]


def providers_from_settings(settings: Settings) -> list[ProviderDescriptor]:
    keys = settings.api_keys
    if not keys and settings.mock_llm:
        keys = ["mock-key"]
    return build_providers(keys, settings.model_names)


class FallbackDispatcher:
    """Try providers in order and return the first successful response."""

    def __init__(self, client: LLMClient, providers: list[ProviderDescriptor]):
        self._client = client
        self._providers = list(providers)

    @property
    def providers(self) -> list[ProviderDescriptor]:
        return list(self._providers)

    async def dispatch(
        self,
        prompt: str,
        structured: bool = False,
        attachment: Attachment | None = None,
    ) -> DispatchResult:
        """Send ``prompt`` to each provider in turn until one succeeds.

        Raises:
            NoProvidersConfiguredError: No providers are configured.
            ProviderExhaustedError: Every provider failed; carries each failure.
        """
        if not self._providers:
            logger.error("No LLM providers configured")
            raise NoProvidersConfiguredError(
                "No LLM credentials configured. Set GEMINI_API_KEY or GEMINI_API_KEYS."
            )

        failures: list[AttemptFailure] = []
        for attempt, provider in enumerate(self._providers, start=1):
            attempt_log = log_llm_attempt(
                provider=provider.label,
                model=provider.model,
                structured=structured,
                prompt=prompt,
                has_attachment=attachment is not None,
                attempt=attempt,
            )
            try:
                response = await self._client.generate(
                    provider.api_key,
                    provider.model,
                    prompt,
                    structured=structured,
                    attachment=attachment,
                )
            except GeminiError as e:
                log_llm_result(attempt_log, error=str(e), rate_limited=e.rate_limited)
                failures.append(
                    AttemptFailure(
                        provider=provider.label,
                        error=str(e),
                        status_code=e.status_code,
                        rate_limited=e.rate_limited,
                    )
                )
                continue
            except Exception as e:
                log_llm_result(attempt_log, error=f"{type(e).__name__}: {e}")
                raise

            log_llm_result(
                attempt_log,
                tokens_total=response.tokens_used,
                finish_reason=response.finish_reason,
            )
            return DispatchResult(
                content=response.content,
                provider=provider,
                attempts=attempt,
                tokens_used=response.tokens_used,
                failures=failures,
            )

        error = ProviderExhaustedError(failures)
        llm_dispatch_exhausted_total.labels(rate_limited=str(error.rate_limited).lower()).inc()
        logger.error(
            "All LLM providers failed",
            attempts=len(failures),
            rate_limited=error.rate_limited,
            failures=[f"{f.provider}: {f.error}" for f in failures],
        )
        raise error
