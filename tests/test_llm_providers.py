from __future__ import annotations

import asyncio

import pytest

from notebatch.llm.providers import (
    LangChainChatProvider,
    ProviderDependencyError,
    ProviderError,
    ProviderSettings,
    build_provider,
    wrap_provider_error,
)


class _HttpError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def test_build_provider_prefers_explicit_over_env(monkeypatch: pytest.MonkeyPatch, dummy_chat_model) -> None:
    monkeypatch.setenv("NOTEBATCH_MODEL", "env-model")
    monkeypatch.setenv("NOTEBATCH_BASE_URL", "https://env.example")
    monkeypatch.setenv("NOTEBATCH_API_KEY", "env-key")
    monkeypatch.setenv("NOTEBATCH_TEMPERATURE", "0.25")
    monkeypatch.setenv("NOTEBATCH_MAX_TOKENS", "512")

    provider = build_provider(
        model="cli-model",
        temperature=0.9,
        max_tokens=2048,
        timeout=30.0,
    )

    assert isinstance(provider, LangChainChatProvider)
    assert provider.model == "cli-model"
    settings = provider.settings
    assert settings.base_url == "https://env.example"
    assert settings.api_key == "env-key"
    assert settings.temperature == 0.9
    assert settings.max_tokens == 2048
    assert settings.timeout == 30.0

    dummy_instance = provider._client  # type: ignore[attr-defined]
    assert dummy_instance.kwargs["model"] == "cli-model"
    assert dummy_instance.kwargs["temperature"] == 0.9
    assert dummy_instance.kwargs["max_retries"] == 0


def test_build_provider_uses_env_fallbacks_when_not_overridden(monkeypatch: pytest.MonkeyPatch, dummy_chat_model) -> None:
    monkeypatch.setenv("OPENAI_MODEL", "fallback-model")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://fallback.example")
    monkeypatch.setenv("GROQ_API_KEY", "groq-key")
    monkeypatch.setenv("NOTEBATCH_TEMPERATURE", "0.1")

    provider = build_provider()

    assert provider.model == "fallback-model"
    settings = provider.settings
    assert settings.base_url == "https://fallback.example"
    assert settings.api_key == "groq-key"
    assert settings.temperature == 0.1
    assert settings.max_tokens is None


def test_build_provider_raises_dependency_error(monkeypatch: pytest.MonkeyPatch) -> None:
    from notebatch import llm

    monkeypatch.setattr(llm.providers, "ChatOpenAI", None)
    with pytest.raises(ProviderDependencyError) as excinfo:
        build_provider()
    assert excinfo.value.retryable is False


def test_provider_settings_as_kwargs_filters_none() -> None:
    settings = ProviderSettings(model="demo", temperature=0.5, max_tokens=None, timeout=None)
    kwargs = settings.as_kwargs()
    assert kwargs == {"model": "demo", "temperature": 0.5, "max_retries": 0}


def test_langchain_chat_provider_propagates_invocation(dummy_chat_model) -> None:
    provider = build_provider(model="demo-model")
    response = provider.invoke([{"role": "user", "content": "hi"}], test=True)

    assert response.content == {"role": "user", "content": "hi"}
    dummy_instance = provider._client  # type: ignore[attr-defined]
    assert dummy_instance.invocations[0][0] == "invoke"
    assert dummy_instance.invocations[0][1][1] == {"test": True}

    asyncio.run(provider.ainvoke(["again"]))
    assert dummy_instance.invocations[1][0] == "ainvoke"


def test_invocation_errors_are_wrapped_with_retry_hint(dummy_chat_model) -> None:
    provider = build_provider(model="demo-model")
    dummy_chat_model.replies = [_HttpError("rate limited", 429), _HttpError("bad key", 401)]

    with pytest.raises(ProviderError) as transient:
        asyncio.run(provider.ainvoke(["x"]))
    assert transient.value.status_code == 429
    assert transient.value.retryable is True

    with pytest.raises(ProviderError) as fatal:
        provider.invoke(["x"])
    assert fatal.value.status_code == 401
    assert fatal.value.retryable is False
    assert "demo-model" in str(fatal.value)


def test_wrap_provider_error_reads_response_status() -> None:
    class _Response:
        status_code = 404

    exc = RuntimeError("missing")
    exc.response = _Response()  # type: ignore[attr-defined]

    wrapped = wrap_provider_error(exc, model="m", action="Lookup")
    assert wrapped.status_code == 404
    assert wrapped.retryable is False
    assert str(wrapped).startswith("Lookup failed")

    already = ProviderError("boom")
    assert wrap_provider_error(already, model="m") is already


def test_with_model_builds_new_client(dummy_chat_model) -> None:
    provider = build_provider(model="base", temperature=0.7)
    variant = provider.with_model("other", temperature=0.3)

    assert variant is not provider
    assert variant.model == "other"
    assert variant.settings.temperature == 0.3
    assert provider.settings.temperature == 0.7
    assert len(dummy_chat_model.instances) == 2
