"""Generation providers.

``LangChainGenerator`` lives in ``bookquest.providers.client`` and is
imported from there directly.
"""

from bookquest.providers.base import (
    Generator,
    MalformedOutputError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    TaskSpec,
)
from bookquest.providers.factory import (
    PROVIDER_DEFAULTS,
    create_chat_model,
    get_default_model,
    normalize_provider,
    parse_provider_spec,
)

__all__ = [
    "PROVIDER_DEFAULTS",
    "Generator",
    "MalformedOutputError",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderRateLimitError",
    "TaskSpec",
    "create_chat_model",
    "get_default_model",
    "normalize_provider",
    "parse_provider_spec",
]
