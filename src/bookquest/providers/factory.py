"""Factory for LangChain chat models.

Uses LangChain's init_chat_model so every supported provider is created
through the same call. Provider-specific configuration (API keys, hosts)
is resolved from kwargs or the environment first.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from bookquest.observability.logging import get_logger
from bookquest.providers.base import ProviderError

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

# None means the model must be given explicitly
PROVIDER_DEFAULTS: dict[str, str | None] = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-5-mini",
    "google": "gemini-2.5-flash",
    "ollama": None,
}

# provider -> (kwarg name, environment variable)
_CREDENTIALS: dict[str, tuple[str, str]] = {
    "anthropic": ("api_key", "ANTHROPIC_API_KEY"),
    "openai": ("api_key", "OPENAI_API_KEY"),
    "google": ("api_key", "GOOGLE_API_KEY"),
    "ollama": ("base_url", "OLLAMA_HOST"),
}

_PACKAGES: dict[str, str] = {
    "anthropic": "langchain-anthropic",
    "openai": "langchain-openai",
    "google": "langchain-google-genai",
    "ollama": "langchain-ollama",
}


def get_default_model(provider_name: str) -> str | None:
    """Default model for a provider, or None if it must be specified."""
    return PROVIDER_DEFAULTS.get(normalize_provider(provider_name))


def normalize_provider(provider_name: str) -> str:
    """Lowercase a provider name, resolving aliases such as ``gemini``."""
    name = provider_name.strip().lower()
    if name == "gemini":
        return "google"
    return name


def parse_provider_spec(spec: str) -> tuple[str, str | None]:
    """Split ``provider/model`` into its parts; the model part is optional."""
    provider, _, model = spec.partition("/")
    return normalize_provider(provider), (model or None)


def create_chat_model(provider_name: str, model: str | None = None, **kwargs: Any) -> BaseChatModel:
    """Create a LangChain chat model.

    Args:
        provider_name: Provider identifier (anthropic, openai, google, ollama).
        model: Model name. Uses the provider default if None.
        **kwargs: Additional model options such as ``temperature``.

    Returns:
        Configured BaseChatModel.

    Raises:
        ProviderError: If the provider is unknown, unconfigured or not installed.
    """
    provider = normalize_provider(provider_name)
    if provider not in PROVIDER_DEFAULTS:
        log.error("provider_unknown", provider=provider)
        raise ProviderError(provider, f"Unknown provider: {provider}")

    resolved_model = model or PROVIDER_DEFAULTS[provider]
    if not resolved_model:
        raise ProviderError(provider, f"No default model for provider: {provider}")

    kwargs = _resolve_credentials(provider, kwargs)
    try:
        chat_model = _init_chat_model(_map_provider_for_init(provider), resolved_model, **kwargs)
    except ImportError as e:
        package = _PACKAGES[provider]
        log.error("provider_import_error", provider=provider, package=package)
        raise ProviderError(provider, f"{package} not installed. Run: pip install {package}") from e

    log.info("chat_model_created", provider=provider, model=resolved_model)
    return chat_model


def _init_chat_model(provider: str, model: str, **kwargs: Any) -> BaseChatModel:
    from langchain.chat_models import init_chat_model

    result: BaseChatModel = init_chat_model(model=model, model_provider=provider, **kwargs)
    return result


def _resolve_credentials(provider: str, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Fill the provider's credential kwarg from the environment if missing."""
    kwargs = dict(kwargs)
    kwarg, env_var = _CREDENTIALS[provider]
    if provider == "ollama":
        value = kwargs.pop("host", None) or kwargs.get(kwarg) or os.getenv(env_var)
    else:
        value = kwargs.get(kwarg) or os.getenv(env_var)
    if not value:
        log.error("provider_config_error", provider=provider, missing=env_var)
        raise ProviderError(provider, f"{env_var} not configured. Set the {env_var} environment variable.")
    kwargs[kwarg] = value
    return kwargs


def _map_provider_for_init(provider: str) -> str:
    # init_chat_model expects 'google_genai' not 'google'
    if provider == "google":
        return "google_genai"
    return provider
