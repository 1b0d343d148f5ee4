"""Pytest configuration and fixtures."""

import copy
import json
import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest

# Set test environment variables before importing app modules
os.environ["GEMINI_API_KEY"] = ""
os.environ["GEMINI_API_KEYS"] = ""
os.environ["UPLOAD_DIR"] = ""
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("STORAGE_BACKEND", "memory")
# Increase rate limit for testing
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")
# Serve canned LLM responses in tests
os.environ.setdefault("MOCK_LLM", "true")

from career_coach_api.config import Settings  # noqa: E402
from career_coach_api.dispatcher import FallbackDispatcher, build_providers  # noqa: E402
from career_coach_api.gemini_client import (  # noqa: E402
    MOCK_STRUCTURED_RESPONSE,
    Attachment,
    GeminiError,
    LLMResponse,
)


class ScriptedLLMClient:
    """Fake LLM client that replays scripted outcomes in call order.

    Each outcome is either response text or an exception instance to raise.
    Every call is recorded in ``calls``.
    """

    def __init__(self, *outcomes: str | Exception):
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        api_key: str,
        model: str,
        prompt: str,
        structured: bool = False,
        attachment: Attachment | None = None,
    ) -> LLMResponse:
        self.calls.append(
            {
                "api_key": api_key,
                "model": model,
                "prompt": prompt,
                "structured": structured,
                "attachment": attachment,
            }
        )
        if not self.outcomes:
            raise GeminiError("No scripted response left")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return LLMResponse(content=outcome, tokens_used=12, finish_reason="STOP", model=model)


@pytest.fixture(autouse=True)
def reset_caches() -> Iterator[None]:
    """Reset cached settings and rate limiter before each test."""
    from career_coach_api.config import get_settings

    get_settings.cache_clear()

    # Reset rate limiter storage
    try:
        from career_coach_api.main import limiter

        if hasattr(limiter, "_storage") and limiter._storage:
            limiter._storage.reset()
    except (ImportError, AttributeError):
        pass

    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Fixture to set test settings."""

    def _mock_settings(**kwargs: str) -> Settings:
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        from career_coach_api.config import get_settings

        get_settings.cache_clear()
        return get_settings()

    return _mock_settings


@pytest.fixture
def analysis_payload() -> dict[str, Any]:
    """A complete, valid analysis reply as a dict (safe to mutate)."""
    return copy.deepcopy(MOCK_STRUCTURED_RESPONSE)


@pytest.fixture
def analysis_json(analysis_payload: dict[str, Any]) -> str:
    """The valid analysis reply wrapped in a code fence, as models tend to send it."""
    return "```json\n" + json.dumps(analysis_payload) + "\n```"


@pytest.fixture
def make_dispatcher() -> Callable[..., tuple[FallbackDispatcher, ScriptedLLMClient]]:
    """Build a dispatcher over a scripted client.

    Usage: ``dispatcher, client = make_dispatcher("reply", models=["m1", "m2"])``
    """

    def _make(
        *outcomes: str | Exception,
        keys: list[str] | None = None,
        models: list[str] | None = None,
    ) -> tuple[FallbackDispatcher, ScriptedLLMClient]:
        client = ScriptedLLMClient(*outcomes)
        providers = build_providers(
            keys if keys is not None else ["test-key"],
            models if models is not None else ["model-a", "model-b"],
        )
        return FallbackDispatcher(client, providers), client

    return _make
