"""LLM client abstraction — async protocol + mock, Anthropic and OpenAI implementations.

The protocol allows the extraction adapter and the schema proposer to work
with any LLM backend. Tests use MockLLMClient; production uses
AnthropicLLMClient or OpenAILLMClient (Azure or api.openai.com).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from loomgraph.logging import get_logger

log = get_logger("llm")

_MAX_TOKENS = 4000


class LLMClient(Protocol):
    """Protocol for LLM clients."""

    async def complete(
        self, system_prompt: str, user_message: str, *, temperature: float = 0.0,
    ) -> str:
        """Send a prompt to the LLM and return the raw text response.

        Args:
            system_prompt: System instructions.
            user_message: The input to act on (a row, a text blob, a header list).
            temperature: Sampling temperature; 0.0 for rule-following extraction.

        Returns:
            Raw LLM response text (expected to be JSON).

        Raises:
            LLMError: If the LLM call fails.
        """
        ...


class LLMError(Exception):
    """Raised when an LLM call fails."""


# ---------------------------------------------------------------------------
# Mock client: deterministic, no API calls
# ---------------------------------------------------------------------------

@dataclass
class _Scripted:
    substring: str
    payload: str | None = None
    failures_left: int = 0
    error: str = ""


class MockLLMClient:
    """Mock LLM that returns predetermined responses.

    Register responses with `set_response(message_substring, json_response)`
    or `set_raw_response(...)` for malformed output, and transient failures
    with `fail_times(message_substring, n)`. Messages are matched
    case-insensitively in registration order. Falls back to an empty
    extraction if no match is found.
    """

    def __init__(self) -> None:
        self._scripts: list[_Scripted] = []
        self._calls: list[tuple[str, str, float]] = []

    def set_response(self, message_contains: str, response: dict[str, Any]) -> None:
        """Register a canned JSON response for messages containing the substring."""
        self._scripts.append(_Scripted(message_contains.lower(), payload=json.dumps(response)))

    def set_raw_response(self, message_contains: str, text: str) -> None:
        """Register a raw text response (fenced, truncated, or not JSON at all)."""
        self._scripts.append(_Scripted(message_contains.lower(), payload=text))

    def fail_times(self, message_contains: str, times: int, error: str = "mock outage") -> None:
        """Raise LLMError for the next `times` matching calls."""
        self._scripts.insert(
            0, _Scripted(message_contains.lower(), failures_left=times, error=error)
        )

    async def complete(
        self, system_prompt: str, user_message: str, *, temperature: float = 0.0,
    ) -> str:
        self._calls.append((system_prompt, user_message, temperature))
        message = user_message.lower()

        for script in self._scripts:
            if script.substring not in message:
                continue
            if script.payload is None:
                if script.failures_left <= 0:
                    continue
                script.failures_left -= 1
                log.debug("mock_llm.failing", substring=script.substring)
                raise LLMError(script.error)
            log.debug("mock_llm.matched", substring=script.substring, message=user_message[:80])
            return script.payload

        log.debug("mock_llm.no_match", message=user_message[:80])
        return json.dumps({"entities": [], "relationships": []})

    @property
    def call_count(self) -> int:
        return len(self._calls)

    @property
    def calls(self) -> list[tuple[str, str, float]]:
        return list(self._calls)

    @property
    def last_system_prompt(self) -> str:
        return self._calls[-1][0] if self._calls else ""

    @property
    def last_user_message(self) -> str:
        return self._calls[-1][1] if self._calls else ""


# ---------------------------------------------------------------------------
# Anthropic client
# ---------------------------------------------------------------------------

class AnthropicLLMClient:
    """LLM client using the Anthropic async API."""

    def __init__(self, api_key: str, model: str) -> None:
        try:
            import anthropic
        except ImportError as e:
            raise ImportError("pip install anthropic") from e

        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model

    async def complete(
        self, system_prompt: str, user_message: str, *, temperature: float = 0.0,
    ) -> str:
        import anthropic

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=_MAX_TOKENS,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_message}],
            )
        except anthropic.APIError as e:
            log.error("anthropic.api_error", error=str(e))
            raise LLMError(f"Anthropic API error: {e}") from e

        if not response.content:
            raise LLMError("Anthropic API returned no content")
        log.info(
            "anthropic.complete",
            model=self._model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return response.content[0].text


# ---------------------------------------------------------------------------
# OpenAI / Azure OpenAI client
# ---------------------------------------------------------------------------

class OpenAILLMClient:
    """LLM client for Azure OpenAI deployments or the public OpenAI API.

    With an `endpoint`, `model` is the Azure deployment name. Responses are
    requested in JSON-object mode.
    """

    def __init__(
        self, api_key: str, model: str, *, endpoint: str = "", api_version: str = "",
    ) -> None:
        try:
            import openai
        except ImportError as e:
            raise ImportError("pip install 'loomgraph[openai]'") from e

        if endpoint:
            self._client = openai.AsyncAzureOpenAI(
                azure_endpoint=endpoint, api_key=api_key, api_version=api_version,
            )
        else:
            self._client = openai.AsyncOpenAI(api_key=api_key)
        self._model = model

    async def complete(
        self, system_prompt: str, user_message: str, *, temperature: float = 0.0,
    ) -> str:
        import openai

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                temperature=temperature,
                max_tokens=_MAX_TOKENS,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
            )
        except openai.OpenAIError as e:
            log.error("openai.api_error", error=str(e))
            raise LLMError(f"OpenAI API error: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMError("OpenAI API returned no content")
        if response.usage is not None:
            log.info(
                "openai.complete",
                model=self._model,
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )
        return content
