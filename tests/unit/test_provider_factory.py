"""Tests for provider factory."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from bookquest.providers.base import ProviderError
from bookquest.providers.factory import (
    PROVIDER_DEFAULTS,
    create_chat_model,
    get_default_model,
    normalize_provider,
    parse_provider_spec,
)

# --- Tests for get_default_model ---


def test_get_default_model_openai() -> None:
    assert get_default_model("openai") == "gpt-5-mini"
    assert get_default_model("OpenAI") == "gpt-5-mini"  # Case insensitive


def test_get_default_model_anthropic() -> None:
    assert get_default_model("anthropic") == "claude-sonnet-4-20250514"


def test_get_default_model_gemini_alias() -> None:
    assert get_default_model("gemini") == "gemini-2.5-flash"


def test_get_default_model_ollama_returns_none() -> None:
    """Ollama requires explicit model - returns None."""
    assert get_default_model("ollama") is None


def test_get_default_model_unknown_provider() -> None:
    assert get_default_model("unknown") is None


def test_provider_defaults_dict_structure() -> None:
    assert set(PROVIDER_DEFAULTS) == {"anthropic", "openai", "google", "ollama"}


# --- Tests for provider names and specs ---


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("gemini", "google"), ("GEMINI", "google"), (" OpenAI ", "openai"), ("ollama", "ollama")],
)
def test_normalize_provider(raw: str, expected: str) -> None:
    assert normalize_provider(raw) == expected


@pytest.mark.parametrize(
    ("spec", "expected"),
    [
        ("anthropic", ("anthropic", None)),
        ("openai/gpt-4o", ("openai", "gpt-4o")),
        ("ollama/qwen3:8b", ("ollama", "qwen3:8b")),
        ("Gemini/gemini-2.5-pro", ("google", "gemini-2.5-pro")),
        ("openai/", ("openai", None)),
    ],
)
def test_parse_provider_spec(spec: str, expected: tuple[str, str | None]) -> None:
    assert parse_provider_spec(spec) == expected


# --- Tests for create_chat_model ---


def test_create_chat_model_unknown_provider() -> None:
    with pytest.raises(ProviderError) as exc_info:
        create_chat_model("unknown", "model")

    assert "Unknown provider" in str(exc_info.value)
    assert exc_info.value.provider == "unknown"


def test_create_chat_model_ollama_requires_model() -> None:
    with pytest.raises(ProviderError, match="No default model"):
        create_chat_model("ollama")


def test_create_chat_model_missing_api_key() -> None:
    with patch.dict("os.environ", {}, clear=True), pytest.raises(ProviderError) as exc_info:
        create_chat_model("anthropic")

    assert "ANTHROPIC_API_KEY not configured" in str(exc_info.value)
    assert exc_info.value.provider == "anthropic"


def test_create_chat_model_ollama_missing_host() -> None:
    with patch.dict("os.environ", {}, clear=True), pytest.raises(ProviderError, match="OLLAMA_HOST"):
        create_chat_model("ollama", "qwen3:8b")


def test_create_chat_model_uses_env_key() -> None:
    mock_chat = MagicMock()
    with (
        patch.dict("os.environ", {"ANTHROPIC_API_KEY": "sk-test"}, clear=True),
        patch("bookquest.providers.factory._init_chat_model", return_value=mock_chat) as mock_init,
    ):
        result = create_chat_model("anthropic", temperature=0.5)

    assert result is mock_chat
    mock_init.assert_called_once_with(
        "anthropic", "claude-sonnet-4-20250514", api_key="sk-test", temperature=0.5
    )


def test_create_chat_model_explicit_key_wins() -> None:
    with (
        patch.dict("os.environ", {"OPENAI_API_KEY": "from-env"}),
        patch("bookquest.providers.factory._init_chat_model") as mock_init,
    ):
        create_chat_model("openai", "gpt-4o", api_key="explicit")

    assert mock_init.call_args.kwargs["api_key"] == "explicit"


def test_create_chat_model_google_maps_provider_name() -> None:
    with (
        patch.dict("os.environ", {"GOOGLE_API_KEY": "g-key"}),
        patch("bookquest.providers.factory._init_chat_model") as mock_init,
    ):
        create_chat_model("gemini")

    assert mock_init.call_args.args == ("google_genai", "gemini-2.5-flash")


def test_create_chat_model_ollama_host_becomes_base_url() -> None:
    with (
        patch.dict("os.environ", {}, clear=True),
        patch("bookquest.providers.factory._init_chat_model") as mock_init,
    ):
        create_chat_model("ollama", "qwen3:8b", host="http://gpu:11434")

    assert mock_init.call_args.kwargs == {"base_url": "http://gpu:11434"}


def test_create_chat_model_ollama_host_from_env() -> None:
    with (
        patch.dict("os.environ", {"OLLAMA_HOST": "http://test:11434"}, clear=True),
        patch("bookquest.providers.factory._init_chat_model") as mock_init,
    ):
        create_chat_model("ollama", "qwen3:8b")

    assert mock_init.call_args.kwargs["base_url"] == "http://test:11434"


def test_create_chat_model_missing_package() -> None:
    with (
        patch.dict("os.environ", {"OPENAI_API_KEY": "sk"}),
        patch("bookquest.providers.factory._init_chat_model", side_effect=ImportError("no module")),
        pytest.raises(ProviderError, match="langchain-openai not installed"),
    ):
        create_chat_model("openai")
