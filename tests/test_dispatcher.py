"""Tests for the sequential key/model fallback dispatcher."""

from collections.abc import Callable
from typing import Any

import pytest
from prometheus_client import REGISTRY

from career_coach_api.config import Settings
from career_coach_api.dispatcher import (
    NoProvidersConfiguredError,
    ProviderDescriptor,
    ProviderExhaustedError,
    build_providers,
    providers_from_settings,
)
from career_coach_api.gemini_client import (
    Attachment,
    GeminiAuthError,
    GeminiError,
    GeminiModelNotFoundError,
    GeminiRateLimitError,
)


class TestProviders:
    """Tests for provider list construction."""

    def test_keys_outer_models_inner(self) -> None:
        """Test every model is tried for a key before moving to the next key."""
        providers = build_providers(["k1", "k2"], ["m1", "m2"])
        assert [(p.api_key, p.model) for p in providers] == [
            ("k1", "m1"),
            ("k1", "m2"),
            ("k2", "m1"),
            ("k2", "m2"),
        ]
        assert [p.key_index for p in providers] == [1, 1, 2, 2]

    def test_label_and_repr_hide_key(self) -> None:
        """Test the API key never appears in labels or repr."""
        provider = ProviderDescriptor(api_key="secret-key-123", model="gemini-2.0-flash")
        assert provider.label == "key#1/gemini-2.0-flash"
        assert "secret-key-123" not in repr(provider)

    def test_providers_from_settings(self) -> None:
        """Test keys are deduplicated with GEMINI_API_KEY first."""
        settings = Settings(
            gemini_api_key="a",
            gemini_api_keys="b, a ,c",
            llm_models="m1,m2",
            mock_llm=False,
        )
        providers = providers_from_settings(settings)
        assert [(p.api_key, p.model) for p in providers] == [
            ("a", "m1"),
            ("a", "m2"),
            ("b", "m1"),
            ("b", "m2"),
            ("c", "m1"),
            ("c", "m2"),
        ]

    def test_providers_from_settings_without_keys(self) -> None:
        """Test no keys yields no providers outside mock mode."""
        settings = Settings(gemini_api_key="", gemini_api_keys="", mock_llm=False)
        assert providers_from_settings(settings) == []

    def test_providers_from_settings_mock_mode(self) -> None:
        """Test mock mode supplies a placeholder key."""
        settings = Settings(gemini_api_key="", gemini_api_keys="", llm_models="m1", mock_llm=True)
        providers = providers_from_settings(settings)
        assert len(providers) == 1
        assert providers[0].model == "m1"


class TestFallbackDispatcher:
    """Tests for FallbackDispatcher.dispatch."""

    @pytest.mark.asyncio
    async def test_first_provider_succeeds(self, make_dispatcher: Callable[..., Any]) -> None:
        """Test a healthy first provider is the only one called."""
        dispatcher, client = make_dispatcher("hello")
        result = await dispatcher.dispatch("prompt")

        assert result.content == "hello"
        assert result.attempts == 1
        assert result.provider.model == "model-a"
        assert result.failures == []
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_falls_through_in_order(self, make_dispatcher: Callable[..., Any]) -> None:
        """Test failures advance to the next model, then the next key."""
        dispatcher, client = make_dispatcher(
            GeminiRateLimitError("quota", 429),
            GeminiModelNotFoundError("gone", 404),
            "third time lucky",
            keys=["k1", "k2"],
            models=["m1", "m2"],
        )
        result = await dispatcher.dispatch("prompt")

        assert result.content == "third time lucky"
        assert result.attempts == 3
        assert [(c["api_key"], c["model"]) for c in client.calls] == [
            ("k1", "m1"),
            ("k1", "m2"),
            ("k2", "m1"),
        ]
        assert [f.status_code for f in result.failures] == [429, 404]

    @pytest.mark.asyncio
    async def test_exhaustion_tries_every_provider_once(
        self, make_dispatcher: Callable[..., Any]
    ) -> None:
        """Test N failing providers mean exactly N attempts and one aggregate error."""
        dispatcher, client = make_dispatcher(
            GeminiAuthError("bad key", 401),
            GeminiError("server error", 500),
            GeminiModelNotFoundError("gone", 404),
            models=["m1", "m2", "m3"],
        )
        with pytest.raises(ProviderExhaustedError) as exc_info:
            await dispatcher.dispatch("prompt")

        assert len(client.calls) == 3
        assert len(exc_info.value.failures) == 3
        assert exc_info.value.rate_limited is False

    @pytest.mark.asyncio
    async def test_exhaustion_reports_rate_limit(
        self, make_dispatcher: Callable[..., Any]
    ) -> None:
        """Test the aggregate error is rate limited if any attempt was."""
        dispatcher, _ = make_dispatcher(
            GeminiError("server error", 500),
            GeminiRateLimitError("quota", 429),
        )
        with pytest.raises(ProviderExhaustedError) as exc_info:
            await dispatcher.dispatch("prompt")
        assert exc_info.value.rate_limited is True

    @pytest.mark.asyncio
    async def test_no_providers(self, make_dispatcher: Callable[..., Any]) -> None:
        """Test an empty provider list fails before any call."""
        dispatcher, client = make_dispatcher("never used", keys=[])
        assert dispatcher.providers == []

        with pytest.raises(NoProvidersConfiguredError):
            await dispatcher.dispatch("prompt")
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_forwards_mode_and_attachment(
        self, make_dispatcher: Callable[..., Any]
    ) -> None:
        """Test structured mode and the attachment reach the client."""
        dispatcher, client = make_dispatcher("{}")
        attachment = Attachment(mime_type="application/pdf", data=b"%PDF-1.4")

        await dispatcher.dispatch("prompt", structured=True, attachment=attachment)

        assert client.calls[0]["structured"] is True
        assert client.calls[0]["attachment"] is attachment
        assert client.calls[0]["prompt"] == "prompt"

    @pytest.mark.asyncio
    async def test_non_client_errors_propagate(self, make_dispatcher: Callable[..., Any]) -> None:
        """Test unexpected exceptions are not treated as provider failures."""
        dispatcher, client = make_dispatcher(RuntimeError("bug"), "unused")
        with pytest.raises(RuntimeError):
            await dispatcher.dispatch("prompt")
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_non_client_errors_release_active_gauge(
        self, make_dispatcher: Callable[..., Any]
    ) -> None:
        """Test the in-flight gauge returns to its prior value when an attempt raises."""
        before = REGISTRY.get_sample_value("llm_active_requests")
        dispatcher, _ = make_dispatcher(TypeError("unexpected"))

        with pytest.raises(TypeError):
            await dispatcher.dispatch("prompt")

        assert REGISTRY.get_sample_value("llm_active_requests") == before
