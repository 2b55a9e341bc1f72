# =============================================================================
# Agent Loop: Bounded Tool-Calling Chat
# =============================================================================
#
# One chat call = one user message answered by a plain async loop:
#
#   1. ASK      the model with the conversation so far + the tool specs
#   2. ANSWER   if it produced text, stream it out word by word and stop
#   3. ACT      otherwise run every requested tool in order, append the
#               assistant turn + the tool results, and go back to 1
#   4. BAIL     after MAX_STEPS rounds, emit a fixed fallback sentence
#
# The tenant id never comes from the model. It is captured here from the
# authenticated caller and handed to the tools through ToolContext.
#
# DESIGN DECISION: plain loop instead of a graph framework. There is one
# node (ask the model) and one edge (run tools, ask again), so a for-loop
# is the whole state machine.
#
# Completion errors are not caught: they end the stream and the caller
# decides how to surface them.
# =============================================================================

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any

from documesh.agents.prompts import SYSTEM_PROMPT
from documesh.agents.tools import DEFAULT_TOOLS, AgentTool, ToolContext
from documesh.services.llm import (
    LLMProvider,
    ToolCall,
    ToolOutcome,
    get_llm_provider,
)

logger = logging.getLogger(__name__)

MAX_STEPS = 20

STEP_LIMIT_MESSAGE = (
    "I've processed your request using the available tools, but I reached "
    "my step limit before generating a complete response. Please try asking "
    "your question in a simpler way or break it into smaller parts."
)

EMPTY_RESPONSE_MESSAGE = (
    "I wasn't able to produce an answer for that request. Please try "
    "rephrasing your question or breaking it into smaller parts."
)


@dataclass
class AgentTurn:
    """A prior turn of the conversation as replayed by the client."""

    role: str  # "user", "model" or "tool"; tool turns are dropped
    content: Any


def word_chunks(text: str) -> list[str]:
    """
    Split text on single spaces, keeping the separator on every chunk but
    the last. Concatenating the chunks gives back the original text.
    """
    words = text.split(" ")
    return [word + " " for word in words[:-1]] + [words[-1]]


def _turn_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return "" if content is None else str(content)


def history_to_messages(history: Sequence[Any]) -> list[dict[str, Any]]:
    """
    Convert replayed turns into provider messages.

    Only user and model turns survive; "model" becomes "assistant". Tool
    turns from earlier calls are dropped because their call ids belong to
    a finished exchange.
    """
    messages: list[dict[str, Any]] = []
    for turn in history:
        role = getattr(turn, "role", None)
        if role not in ("user", "model"):
            continue
        text = _turn_text(getattr(turn, "content", ""))
        if not text:
            continue
        messages.append({
            "role": "assistant" if role == "model" else "user",
            "content": text,
        })
    return messages


async def _run_tool(
    call: ToolCall,
    tools_by_name: dict[str, AgentTool],
    context: ToolContext,
) -> ToolOutcome:
    tool = tools_by_name.get(call.name)
    if tool is None:
        logger.warning(
            "Unknown tool requested: tool=%s, request_id=%s",
            call.name, context.request_id,
        )
        return ToolOutcome(call=call, output={"error": f"Unknown tool: {call.name}"})

    start_time = time.monotonic()
    output = await tool.execute(call.arguments, context)
    logger.info(
        "Tool executed: tool=%s, success=%s, duration_ms=%d, request_id=%s",
        call.name, "error" not in output,
        int((time.monotonic() - start_time) * 1000), context.request_id,
    )
    return ToolOutcome(call=call, output=output)


async def chat(
    message: str,
    history: Sequence[Any],
    org_id: str,
    *,
    llm: LLMProvider | None = None,
    tools: Sequence[AgentTool] | None = None,
    session_factory: Any = None,
    system_prompt: str = SYSTEM_PROMPT,
    request_id: str | None = None,
) -> AsyncIterator[str]:
    """
    Answer one user message, yielding the response as text chunks.

    Args:
        message: The new user message.
        history: Earlier turns (objects with `role` and `content`).
        org_id: Authenticated tenant; every tool call is scoped to it.
        llm: Provider to use (default: configured singleton).
        tools: Tools to offer (default: lookup + guarded SQL).
        session_factory: Async session factory the tools open sessions from.
        system_prompt: Override the default system prompt.
        request_id: Correlation id for logs (generated if omitted).

    Yields:
        Chunks whose concatenation is the final answer, or exactly one
        fallback sentence if no answer was produced.
    """
    if llm is None:
        llm = get_llm_provider()
    if tools is None:
        tools = DEFAULT_TOOLS
    if session_factory is None:
        # Imported lazily so the loop can be driven without a database
        from documesh.db.engine import async_session_factory

        session_factory = async_session_factory

    request_id = request_id or str(uuid.uuid4())
    context = ToolContext(
        org_id=str(org_id),
        request_id=request_id,
        session_factory=session_factory,
    )
    tools_by_name = {tool.spec.name: tool for tool in tools}
    tool_specs = [tool.spec for tool in tools]

    messages = history_to_messages(history)
    messages.append({"role": "user", "content": message})

    logger.info(
        "Chat started: org_id=%s, history_turns=%d, request_id=%s",
        org_id, len(messages) - 1, request_id,
    )

    for step in range(1, MAX_STEPS + 1):
        if step >= MAX_STEPS - 2:
            logger.warning(
                "Approaching step limit: step=%d/%d, request_id=%s",
                step, MAX_STEPS, request_id,
            )

        start_time = time.monotonic()
        response = await llm.complete(
            messages,
            system=system_prompt,
            tools=tool_specs,
        )
        logger.info(
            "Agent step: step=%d, tool_calls=%d, has_text=%s, "
            "input_tokens=%d, output_tokens=%d, duration_ms=%d, request_id=%s",
            step, len(response.tool_calls), bool(response.content),
            response.input_tokens, response.output_tokens,
            int((time.monotonic() - start_time) * 1000), request_id,
        )

        # Text ends the loop, even if tool calls came alongside it
        if response.content:
            for chunk in word_chunks(response.content):
                yield chunk
            logger.info("Chat completed: steps=%d, request_id=%s", step, request_id)
            return

        if not response.tool_calls:
            logger.warning(
                "Model returned neither text nor tool calls: step=%d, "
                "finish_reason=%s, request_id=%s",
                step, response.finish_reason, request_id,
            )
            yield EMPTY_RESPONSE_MESSAGE
            return

        outcomes = []
        for call in response.tool_calls:
            outcomes.append(await _run_tool(call, tools_by_name, context))
        messages.extend(llm.tool_turns(response, outcomes))

    logger.warning(
        "Step limit reached without a text answer: max_steps=%d, request_id=%s",
        MAX_STEPS, request_id,
    )
    yield STEP_LIMIT_MESSAGE
