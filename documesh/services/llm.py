# =============================================================================
# Multi-Provider LLM Abstraction: Tool-Calling Completions
# =============================================================================
#
# Provides a common interface for one round-trip of a tool-calling chat
# completion, with concrete implementations for Anthropic (Claude) and
# OpenAI-compatible APIs (OpenAI, DeepSeek, Qwen, GLM, Gemini's OpenAI
# endpoint).
#
# A round-trip returns EITHER generated text OR a set of tool calls (or, in
# anomalous cases, neither). The agent loop executes the tool calls itself
# and asks the provider to format the follow-up turns, because the two APIs
# disagree on the wire shape:
#
#   Anthropic:  assistant {content: [text?, tool_use...]}
#               user      {content: [tool_result(tool_use_id)...]}
#   OpenAI:     assistant {content, tool_calls: [function...]}
#               tool      {tool_call_id, content}   (one per call)
#
# The assistant turn is replayed exactly as the provider reported it.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)
#   ├── AnthropicProvider         system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider  system prompt as first message
#   └── get_llm_provider()        lazy singleton, reads from config
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from documesh.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ToolSpec:
    """Provider-neutral description of a tool the model may call."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON schema of the arguments object


@dataclass
class ToolCall:
    """One tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class ToolOutcome:
    """The result the agent produced for one ToolCall."""

    call: ToolCall
    output: dict[str, Any]


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    `assistant_message` is the provider-native assistant turn, kept so the
    agent loop can append it verbatim before the tool results.
    """

    content: str           # Generated text ("" when the model only called tools)
    model: str             # Model identifier (e.g., "claude-sonnet-4-6")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response
    tool_calls: list[ToolCall] = field(default_factory=list)
    assistant_message: dict[str, Any] | None = None
    finish_reason: str | None = None


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """
    Protocol defining the LLM provider interface used by the agent loop.
    """

    async def complete(
        self,
        messages: list[dict[str, Any]],
        system: str | None = None,
        tools: list[ToolSpec] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Run one completion round-trip.

        Args:
            messages: Provider-native conversation messages. Plain text
                turns use {"role": "user"|"assistant", "content": str};
                tool turns are whatever `tool_turns()` produced earlier.
            system: System prompt.
            tools: Tools the model may call this round.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).
        """
        ...

    def tool_turns(
        self,
        response: LLMResponse,
        outcomes: list[ToolOutcome],
    ) -> list[dict[str, Any]]:
        """
        Build the turns to append after a tool-calling response: the
        assistant's tool-call turn followed by the tool results, in the
        order the calls were made.
        """
        ...


def serialize_tool_output(output: dict[str, Any]) -> str:
    """JSON-encode a tool result (UUIDs, datetimes, Decimals via str)."""
    return json.dumps(output, default=str)


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native SDK.

    Anthropic takes the system prompt as a top-level `system=` kwarg and
    reports tool calls as `tool_use` content blocks.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ValueError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, Any]],
        system: str | None = None,
        tools: list[ToolSpec] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Run one Claude round-trip."""
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": temperature if temperature is not None else self._temperature,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters,
                }
                for tool in tools
            ]
            kwargs["tool_choice"] = {"type": "auto"}

        response = await self._client.messages.create(**kwargs)

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        blocks: list[dict[str, Any]] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
                blocks.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))
                )
                blocks.append({
                    "type": "tool_use",
                    "id": block.id,
                    "name": block.name,
                    "input": block.input,
                })

        return LLMResponse(
            content="".join(text_parts),
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            tool_calls=tool_calls,
            assistant_message={"role": "assistant", "content": blocks},
            finish_reason=response.stop_reason,
        )

    def tool_turns(
        self,
        response: LLMResponse,
        outcomes: list[ToolOutcome],
    ) -> list[dict[str, Any]]:
        """Assistant tool_use turn + one user turn carrying every tool_result."""
        return anthropic_tool_turns(response, outcomes)


def anthropic_tool_turns(
    response: LLMResponse,
    outcomes: list[ToolOutcome],
) -> list[dict[str, Any]]:
    results = [
        {
            "type": "tool_result",
            "tool_use_id": outcome.call.id,
            "content": serialize_tool_output(outcome.output),
            "is_error": "error" in outcome.output,
        }
        for outcome in outcomes
    ]
    return [response.assistant_message, {"role": "user", "content": results}]


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    OpenAI-compatible provider for any API that follows the OpenAI spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_API_KEY=your-key
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, Any]],
        system: str | None = None,
        tools: list[ToolSpec] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Run one OpenAI-compatible round-trip."""
        all_messages: list[dict[str, Any]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        kwargs: dict = {
            "model": self._model,
            "messages": all_messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": temperature if temperature is not None else self._temperature,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in tools
            ]
            kwargs["tool_choice"] = "auto"

        response = await self._client.chat.completions.create(**kwargs)

        choice = response.choices[0]
        usage = response.usage
        tool_calls, assistant_message = parse_openai_message(choice.message)

        return LLMResponse(
            content=choice.message.content or "",
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            tool_calls=tool_calls,
            assistant_message=assistant_message,
            finish_reason=choice.finish_reason,
        )

    def tool_turns(
        self,
        response: LLMResponse,
        outcomes: list[ToolOutcome],
    ) -> list[dict[str, Any]]:
        """Assistant tool_calls turn + one `tool` turn per call."""
        return openai_tool_turns(response, outcomes)


def parse_openai_message(message: Any) -> tuple[list[ToolCall], dict[str, Any]]:
    """
    Extract tool calls and the replayable assistant turn from a
    chat.completions message.

    Arguments arrive as a JSON string. Malformed JSON becomes an empty
    arguments object; the tool then reports the missing argument back to
    the model instead of the loop failing.
    """
    tool_calls: list[ToolCall] = []
    raw_calls: list[dict[str, Any]] = []
    for call in message.tool_calls or []:
        raw_arguments = call.function.arguments or "{}"
        try:
            arguments = json.loads(raw_arguments)
        except json.JSONDecodeError:
            logger.warning(
                "Malformed tool arguments from model: tool=%s", call.function.name,
            )
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        tool_calls.append(ToolCall(id=call.id, name=call.function.name, arguments=arguments))
        raw_calls.append({
            "id": call.id,
            "type": "function",
            "function": {"name": call.function.name, "arguments": raw_arguments},
        })

    assistant_message: dict[str, Any] = {
        "role": "assistant",
        "content": message.content,
    }
    if raw_calls:
        assistant_message["tool_calls"] = raw_calls
    return tool_calls, assistant_message


def openai_tool_turns(
    response: LLMResponse,
    outcomes: list[ToolOutcome],
) -> list[dict[str, Any]]:
    turns: list[dict[str, Any]] = [response.assistant_message]
    for outcome in outcomes:
        turns.append({
            "role": "tool",
            "tool_call_id": outcome.call.id,
            "content": serialize_tool_output(outcome.output),
        })
    return turns


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singleton: avoid re-creating the SDK client on every request
_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Factory that returns the configured LLM provider.

    Reads `llm_provider` from settings:
    - "anthropic" → AnthropicProvider (Claude)
    - "openai_compatible" → OpenAICompatibleProvider

    Raises:
        ValueError: If the provider's API key is not configured.
    """
    global _provider
    if _provider is None:
        if settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider
