"""LangChain-backed generator.

Renders a prompt template, calls the chat model and decodes the JSON it
returns. Calls are paced to a minimum gap, rate limits are retried with
exponential backoff, and truncated JSON is repaired where possible.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from langchain_core.messages import HumanMessage, SystemMessage

from bookquest.observability.logging import get_logger
from bookquest.pipeline.batching import is_connectivity_error
from bookquest.prompts import PromptLoader, render_template
from bookquest.providers.base import (
    MalformedOutputError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    TaskSpec,
)
from bookquest.providers.json_repair import extract_json_text, repair_json

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from langchain_core.language_models import BaseChatModel

log = get_logger(__name__)

MAX_RATE_LIMIT_RETRIES = 3
BACKOFF_BASE_SECONDS = 5.0
MIN_CALL_INTERVAL_SECONDS = 2.0


def is_rate_limit_error(exc: BaseException) -> bool:
    """Check for an HTTP 429 or a provider rate-limit exception."""
    for attr in ("status_code", "status"):
        if getattr(exc, attr, None) == 429:
            return True
    if "RateLimit" in type(exc).__name__:
        return True
    message = str(exc)
    return "rate_limit" in message or "429" in message


def _response_text(content: Any) -> str:
    """Flatten message content that may arrive as a list of blocks."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


class LangChainGenerator:
    """Generator over a LangChain chat model.

    Args:
        model: Chat model to call.
        provider_name: Used to label errors and log events.
        loader: Template loader. Defaults to the packaged templates.
        min_interval: Minimum seconds between the start of two calls.
        max_retries: Rate-limit retries after the first attempt.
        backoff_base: First backoff delay; doubles on every retry.
        sleep: Awaitable sleep, replaceable in tests.
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        model: BaseChatModel,
        provider_name: str,
        *,
        loader: PromptLoader | None = None,
        min_interval: float = MIN_CALL_INTERVAL_SECONDS,
        max_retries: int = MAX_RATE_LIMIT_RETRIES,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._model = model
        self.provider_name = provider_name
        self._loader = loader or PromptLoader.packaged()
        self._min_interval = min_interval
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._sleep = sleep
        self._clock = clock
        self._pace_lock = asyncio.Lock()
        self._last_call: float | None = None
        self.calls = 0

    async def invoke(self, task: TaskSpec) -> dict[str, Any] | list[Any]:
        template = self._loader.load(task.template)
        context = {name: self._loader.load(name).system for name in template.components}
        context.update(task.variables)
        system_text, user_text = render_template(template, context)
        messages = [SystemMessage(content=system_text), HumanMessage(content=user_text)]

        text = await self._call_with_retries(task.template, messages)
        return self._decode(task.template, text)

    async def _pace(self) -> None:
        async with self._pace_lock:
            if self._last_call is not None:
                wait = self._min_interval - (self._clock() - self._last_call)
                if wait > 0:
                    await self._sleep(wait)
            self._last_call = self._clock()

    async def _call_with_retries(self, template: str, messages: list[Any]) -> str:
        attempt = 0
        while True:
            await self._pace()
            self.calls += 1
            start = time.perf_counter()
            try:
                response = await self._model.ainvoke(messages)
            except Exception as e:
                if is_rate_limit_error(e):
                    if attempt >= self._max_retries:
                        log.error("rate_limit_exhausted", template=template, attempts=attempt + 1)
                        raise ProviderRateLimitError(
                            self.provider_name, f"Rate limited after {attempt + 1} attempts"
                        ) from e
                    delay = self._backoff_base * (2**attempt)
                    attempt += 1
                    log.warning("rate_limited", template=template, attempt=attempt, delay=f"{delay:.0f}s")
                    await self._sleep(delay)
                    continue
                if is_connectivity_error(e):
                    log.error("provider_unreachable", template=template, error=str(e))
                    raise ProviderConnectionError(self.provider_name, str(e)) from e
                if isinstance(e, ProviderError):
                    raise
                raise ProviderError(self.provider_name, f"{type(e).__name__}: {e}") from e

            log.debug(
                "generation_call_complete",
                template=template,
                duration=f"{time.perf_counter() - start:.2f}s",
            )
            return _response_text(response.content)

    def _decode(self, template: str, text: str) -> dict[str, Any] | list[Any]:
        json_text = extract_json_text(text)
        data = repair_json(json_text)
        if data is None:
            log.error("malformed_output", template=template, preview=json_text[:200])
            raise MalformedOutputError(
                self.provider_name, f"Could not decode JSON from '{template}' output", raw=text
            )
        if not isinstance(data, (dict, list)):
            raise MalformedOutputError(self.provider_name, f"Unexpected JSON type from '{template}'", raw=text)
        return data
