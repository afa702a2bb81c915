"""
Claude API Client — the model boundary.

The dialogue engine treats the model as an opaque function: ordered history
plus tool descriptions in, either plain text or an ordered list of tool-call
requests out. ModelClient is that contract; ClaudeModel implements it on the
Anthropic Messages API.

Most of this module is translation. The conversation log is richer than the
Messages API allows, so history is rebuilt deterministically:

- user and system messages become user text (system notes are prefixed)
- an assistant message becomes text + tool_use blocks
- the tool results directly following it become one user message of
  tool_result blocks; a call with no result yet (awaiting confirmation) gets
  a placeholder result
- a tool result that arrives later (a late approval, a scheduled firing) is
  rendered as user text
- consecutive same-role messages are merged
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import anthropic
import structlog

from studybuddy.config import ClaudeConfig
from studybuddy.errors import ModelUnavailableError
from studybuddy.models import Message, ToolCallRequest

logger = structlog.get_logger(__name__)

CLAUDE_CODE_OAUTH_PREFIX = "sk-ant-oat"
CLAUDE_CODE_OAUTH_BETA_HEADER = "oauth-2025-04-20"

AWAITING_CONFIRMATION_TEXT = "Awaiting user confirmation; the call has not run yet."


@dataclass
class ModelReply:
    """Either plain text or tool calls. Text may accompany tool calls."""

    text: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class ModelClient(Protocol):
    async def complete(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[dict[str, Any]],
    ) -> ModelReply: ...


# -----------------------------------------------------------------------------
# History translation
# -----------------------------------------------------------------------------

def _result_block(message: Message) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": message.tool_call_id,
        "content": message.text,
    }
    if message.is_error:
        block["is_error"] = True
    return block


def _orphan_result_text(message: Message) -> str:
    label = "failed" if message.is_error else "result"
    return f"[{message.tool_name} {label} ({message.tool_call_id})]\n{message.text}"


def _append(api_messages: list[dict[str, Any]], role: str, blocks: list[dict[str, Any]]) -> None:
    if not blocks:
        return
    if api_messages and api_messages[-1]["role"] == role:
        api_messages[-1]["content"].extend(blocks)
    else:
        api_messages.append({"role": role, "content": list(blocks)})


def to_api_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert a conversation log into Messages API ``messages``."""
    api_messages: list[dict[str, Any]] = []
    i = 0
    while i < len(messages):
        message = messages[i]
        i += 1

        if message.role == "user":
            _append(api_messages, "user", [{"type": "text", "text": message.text}])
            continue

        if message.role == "system":
            _append(api_messages, "user", [{"type": "text", "text": f"[system] {message.text}"}])
            continue

        if message.role == "tool_result":
            _append(api_messages, "user", [{"type": "text", "text": _orphan_result_text(message)}])
            continue

        # assistant
        blocks: list[dict[str, Any]] = []
        if message.text:
            blocks.append({"type": "text", "text": message.text})
        calls = message.tool_calls
        for call in calls:
            blocks.append(
                {"type": "tool_use", "id": call.call_id, "name": call.name, "input": call.arguments}
            )
        if not blocks:
            continue
        _append(api_messages, "assistant", blocks)
        if not calls:
            continue

        results: dict[str, Message] = {}
        stray: list[Message] = []
        wanted = {call.call_id for call in calls}
        while i < len(messages) and messages[i].role == "tool_result":
            if messages[i].tool_call_id in wanted and messages[i].tool_call_id not in results:
                results[messages[i].tool_call_id] = messages[i]
            else:
                stray.append(messages[i])
            i += 1

        result_blocks = []
        for call in calls:
            found = results.get(call.call_id)
            if found is not None:
                result_blocks.append(_result_block(found))
            else:
                result_blocks.append(
                    {"type": "tool_result", "tool_use_id": call.call_id, "content": AWAITING_CONFIRMATION_TEXT}
                )
        result_blocks.extend({"type": "text", "text": _orphan_result_text(m)} for m in stray)
        api_messages.append({"role": "user", "content": result_blocks})

    return api_messages


def parse_response(response: Any) -> ModelReply:
    """Convert a Messages API response into a ModelReply."""
    texts: list[str] = []
    calls: list[ToolCallRequest] = []
    for block in response.content:
        if block.type == "text":
            texts.append(block.text)
        elif block.type == "tool_use":
            arguments = block.input if isinstance(block.input, dict) else {}
            calls.append(ToolCallRequest(id=block.id, name=block.name, arguments=arguments))
    return ModelReply(text="\n".join(texts).strip(), tool_calls=calls)


# -----------------------------------------------------------------------------
# Anthropic client
# -----------------------------------------------------------------------------

class ClaudeModel:
    """ModelClient backed by the Anthropic Messages API."""

    def __init__(self, config: ClaudeConfig, client: Optional[anthropic.AsyncAnthropic] = None):
        if client is not None:
            self._client = client
            self._auth_method = "injected"
        elif config.api_key:
            self._client = anthropic.AsyncAnthropic(api_key=config.api_key)
            self._auth_method = "api_key"
        else:
            oauth_kwargs: dict[str, Any] = {"auth_token": config.auth_token}
            if config.auth_token and config.auth_token.startswith(CLAUDE_CODE_OAUTH_PREFIX):
                oauth_kwargs["default_headers"] = {"anthropic-beta": CLAUDE_CODE_OAUTH_BETA_HEADER}
            self._client = anthropic.AsyncAnthropic(**oauth_kwargs)
            self._auth_method = "oauth"

        self._model = config.model
        self._max_tokens = config.max_tokens
        self._request_timeout_seconds = float(config.request_timeout_seconds)
        self._retry_settings = {
            "max_retries": config.retry_max_retries,
            "base_delay": config.retry_base_delay,
            "max_delay": config.retry_max_delay,
            "exponential_base": config.retry_exponential_base,
            "jitter_range": config.retry_jitter_range,
        }

        # Telemetry
        self._total_calls = 0
        self._total_input_tokens = 0
        self._total_output_tokens = 0

        logger.info("claude_model.initialized", model=self._model, auth_method=self._auth_method)

    async def complete(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[dict[str, Any]],
    ) -> ModelReply:
        start_time = time.monotonic()
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": system_prompt,
            "messages": to_api_messages(messages),
        }
        if tools:
            kwargs["tools"] = tools

        # Deferred import: studybuddy.harness.__init__ → loop → studybuddy.api.claude (circular).
        from studybuddy.harness.retry import RetryConfig, with_retries

        async def _create() -> Any:
            return await asyncio.wait_for(
                self._client.messages.create(**kwargs),
                timeout=self._request_timeout_seconds,
            )

        try:
            response = await with_retries(_create, config=RetryConfig(**self._retry_settings))
        except (anthropic.APIError, asyncio.TimeoutError, ConnectionError, TimeoutError) as e:
            logger.error(
                "claude_model.unavailable",
                error_type=type(e).__name__,
                error=str(e)[:200],
                status=getattr(e, "status_code", None),
            )
            raise ModelUnavailableError(f"Model call failed: {type(e).__name__}: {e}") from e

        elapsed = time.monotonic() - start_time
        usage = getattr(response, "usage", None)
        self._total_calls += 1
        if usage is not None:
            self._total_input_tokens += usage.input_tokens
            self._total_output_tokens += usage.output_tokens

        reply = parse_response(response)
        logger.debug(
            "claude_model.reply",
            elapsed_seconds=round(elapsed, 2),
            stop_reason=getattr(response, "stop_reason", None),
            tool_calls=len(reply.tool_calls),
        )
        return reply

    @property
    def telemetry(self) -> dict[str, Any]:
        return {
            "total_calls": self._total_calls,
            "total_input_tokens": self._total_input_tokens,
            "total_output_tokens": self._total_output_tokens,
        }


def describe_reply(reply: ModelReply) -> str:
    """One-line summary of a reply for logs and the CLI."""
    if not reply.wants_tools:
        return reply.text[:80]
    return ", ".join(f"{c.name}({json.dumps(c.arguments)[:40]})" for c in reply.tool_calls)
