"""Model Gateway backed by OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import inspect
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Sequence

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .orchestration.cancellation import CancellationToken
from .orchestration.types import (
    ConversationMessage,
    Fragment,
    RequestOptions,
    TextPart,
    ToolCallPart,
    ToolDescriptor,
    ToolMode,
)

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)

_UNREACHABLE_MARKERS = ("connection refused", "econnrefused", "etimedout", "enotfound", "network")
_ROUTING_MARKERS = ("no lowest priority node found", "routing")


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the model gateway."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    temperature: float | None = 0.2
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


def to_openai_messages(messages: Sequence[ConversationMessage]) -> List[ChatCompletionMessageParam]:
    """Convert conversation messages into chat-completion message params.

    Tool results travel as ``tool`` role messages, one per result, followed by
    a ``user`` message for any plain text sharing the turn.
    """

    converted: List[Dict[str, Any]] = []
    for message in messages:
        if message.role == "assistant":
            entry: Dict[str, Any] = {"role": "assistant", "content": message.text or None}
            calls = message.tool_calls
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(dict(call.input), ensure_ascii=False),
                        },
                    }
                    for call in calls
                ]
            converted.append(entry)
            continue

        results = message.tool_results
        for result in results:
            converted.append({"role": "tool", "tool_call_id": result.call_id, "content": result.text})
        text = message.text
        if text or not results:
            converted.append({"role": message.role, "content": text})
    return converted  # type: ignore[return-value]


def to_openai_tools(tools: Sequence[ToolDescriptor]) -> List[ChatCompletionToolParam]:
    """Convert tool descriptors into function tool params."""

    specs: List[Dict[str, Any]] = []
    for tool in tools:
        parameters = dict(tool.input_schema) if tool.input_schema else {"type": "object", "properties": {}}
        specs.append(
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": parameters,
                },
            }
        )
    return specs  # type: ignore[return-value]


class OpenAIModelGateway:
    """Model Gateway streaming rounds from an OpenAI-compatible endpoint.

    Each :meth:`send_request` call returns a fresh stream of :class:`TextPart`
    and :class:`ToolCallPart` fragments. Transient failures are retried until
    the first fragment has been yielded; after that they propagate.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def send_request(
        self,
        messages: Sequence[ConversationMessage],
        options: RequestOptions,
        token: CancellationToken,
    ) -> AsyncIterator[Fragment]:
        """Start one round and return its fragment stream."""

        if not messages:
            raise ValueError("At least one message is required to start a chat")
        payload = self._build_chat_payload(messages, options)
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s) and %s tool(s)",
            self._settings.model,
            len(payload["messages"]),
            len(options.tools),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)
        return self._stream(payload, token)

    async def _stream(self, payload: Dict[str, Any], token: CancellationToken) -> AsyncIterator[Fragment]:
        progress = {"yielded": False}

        async for attempt in self._retrying(lambda: progress["yielded"]):
            with attempt:
                call_ids: Dict[int, str] = {}
                async with self._client.chat.completions.stream(**payload) as stream:
                    async for event in stream:
                        if token.is_cancellation_requested:
                            LOGGER.debug("Stream abandoned after cancellation")
                            return
                        fragment = self._normalize_stream_event(event, call_ids)
                        if fragment is not None:
                            progress["yielded"] = True
                            yield fragment
                break

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self, has_yielded: Callable[[], bool]) -> AsyncRetrying:
        def _should_retry(exc: BaseException) -> bool:
            return isinstance(exc, _RETRYABLE_ERRORS) and not has_yielded()

        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(_should_retry),
        )

    def _build_chat_payload(self, messages: Sequence[ConversationMessage], options: RequestOptions) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": to_openai_messages(messages),
        }
        if self._settings.metadata:
            payload["metadata"] = dict(self._settings.metadata)
        if options.tools:
            payload["tools"] = to_openai_tools(options.tools)
            if options.tool_mode is ToolMode.REQUIRED:
                payload["tool_choice"] = "required"
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        return payload

    def _normalize_stream_event(
        self,
        event: ChatCompletionStreamEvent[Any],
        call_ids: Dict[int, str],
    ) -> Fragment | None:
        event_type = getattr(event, "type", None)
        if event_type is None:
            return None

        if event_type == "chunk":
            self._remember_call_ids(event, call_ids)
            return None
        if event_type == "content.delta":
            delta_text = getattr(event, "delta", None)
            if delta_text:
                return TextPart(str(delta_text))
            return None
        if event_type == "tool_calls.function.arguments.done":
            index = getattr(event, "index", None) or 0
            call_id = getattr(event, "id", None) or call_ids.get(index) or f"call_{index}_{uuid.uuid4().hex[:8]}"
            return ToolCallPart(
                id=call_id,
                name=getattr(event, "name", None) or "",
                input=self._decode_arguments(event),
            )
        return None

    @staticmethod
    def _remember_call_ids(event: Any, call_ids: Dict[int, str]) -> None:
        chunk = getattr(event, "chunk", None)
        for choice in getattr(chunk, "choices", None) or ():
            delta = getattr(choice, "delta", None)
            for tool_call in getattr(delta, "tool_calls", None) or ():
                call_id = getattr(tool_call, "id", None)
                if call_id:
                    call_ids[getattr(tool_call, "index", 0) or 0] = call_id

    @staticmethod
    def _decode_arguments(event: Any) -> Mapping[str, Any]:
        parsed = getattr(event, "parsed_arguments", None)
        if isinstance(parsed, Mapping):
            return dict(parsed)
        raw = getattr(event, "arguments", None) or ""
        if not raw.strip():
            return {}
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("Tool call %s carried malformed arguments; passing none", getattr(event, "name", None))
            return {}
        return decoded if isinstance(decoded, dict) else {"value": decoded}

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Model prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Model prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


def describe_gateway_error(error: BaseException) -> str:
    """Map a Model Gateway failure to guidance suitable for the user."""

    if isinstance(error, RateLimitError):
        return "⚠️ The model service is rate limiting requests. Wait a moment and try again."
    if isinstance(error, httpx.TimeoutException):
        return "⚠️ The model service timed out. Try again, or ask a narrower question."
    if isinstance(error, APIConnectionError):
        return "⚠️ Could not reach the model service. Check the base URL and your network connection."
    if isinstance(error, APIStatusError):
        status = getattr(error, "status_code", None)
        if status in (401, 403):
            return "⚠️ The model service rejected the credentials. Check the configured API key."
        if status == 404:
            return "⚠️ The configured model was not found. Check the model name in settings."
        if status == 400 and "context" in str(error).lower():
            return "⚠️ The conversation is too long for the model. Start a new conversation and try again."
        return f"⚠️ The model service returned an error (HTTP {status}). Try again later."

    message = str(error).lower()
    if any(marker in message for marker in _UNREACHABLE_MARKERS):
        return "⚠️ Could not reach the model service. Check that it is running and try again."
    if any(marker in message for marker in _ROUTING_MARKERS):
        return (
            "⚠️ The request could not be routed to a model. Check that the tool server is running, "
            "wait a few seconds for tools to register, and try again."
        )
    return f"⚠️ Error: {error}"


__all__ = [
    "ClientSettings",
    "OpenAIModelGateway",
    "describe_gateway_error",
    "to_openai_messages",
    "to_openai_tools",
]
