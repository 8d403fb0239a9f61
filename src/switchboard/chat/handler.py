"""Chat request handling on top of the tool loop.

The handler turns a chat request (prompt plus prior turns) into a
conversation, narrows the registry's tools to the configured prefixes, runs
the loop, and reports gateway failures to the user as guidance instead of
raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Sequence

from ..ai.client import describe_gateway_error
from ..ai.orchestration.cancellation import CancellationToken
from ..ai.orchestration.context import LoopContext
from ..ai.orchestration.pipeline.invoke import ToolRegistry
from ..ai.orchestration.pipeline.stream import ModelGateway
from ..ai.orchestration.runner import ToolLoopRunner
from ..ai.orchestration.sinks import OutputSink
from ..ai.orchestration.types import ConversationMessage, LoopResult, ToolDescriptor
from ..services.settings import Settings

__all__ = [
    "ChatTurn",
    "ChatRequest",
    "ChatOutcome",
    "ChatRequestHandler",
    "NO_TOOLS_WARNING",
]

LOGGER = logging.getLogger(__name__)

NO_TOOLS_WARNING = (
    "⚠️ **No tools available.**\n\n"
    "The tool server may not be running. Please:\n"
    "1. Check the application log\n"
    "2. Start the tool server\n"
    "3. Verify the configured tool prefixes\n\n"
    "Try your question again after the tool server is running."
)


@dataclass(slots=True, frozen=True)
class ChatTurn:
    """One prior exchange entry shown to the model as history."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(slots=True, frozen=True)
class ChatRequest:
    """A user prompt and the conversation that preceded it."""

    prompt: str
    history: tuple[ChatTurn, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.history, tuple):
            object.__setattr__(self, "history", tuple(self.history))


@dataclass(slots=True, frozen=True)
class ChatOutcome:
    """How a chat request ended.

    Attributes:
        result: The loop result, absent when the loop never ran or failed.
        error: Guidance shown to the user when the gateway failed.
        tools_available: False when no tools matched and the loop was skipped.
    """

    result: LoopResult | None = None
    error: str | None = None
    tools_available: bool = True

    @property
    def ok(self) -> bool:
        return self.result is not None and self.error is None


class ChatRequestHandler:
    """Runs chat requests through the tool loop.

    Example:
        >>> handler = ChatRequestHandler(gateway, registry, settings=settings)
        >>> outcome = await handler.handle(ChatRequest("Why did latency spike?"), sink)
    """

    def __init__(
        self,
        gateway: ModelGateway,
        registry: ToolRegistry,
        *,
        settings: Settings | None = None,
        system_prompt: str | None = None,
        runner: ToolLoopRunner | None = None,
    ) -> None:
        self._gateway = gateway
        self._registry = registry
        self._settings = settings or Settings()
        self._system_prompt = self._settings.system_prompt if system_prompt is None else system_prompt
        self._runner = runner or ToolLoopRunner(self._settings.loop.to_runner_config())

    @property
    def runner(self) -> ToolLoopRunner:
        return self._runner

    @property
    def gateway(self) -> ModelGateway:
        return self._gateway

    def build_messages(self, request: ChatRequest) -> list[ConversationMessage]:
        """System prompt, then the most recent history turns, then the prompt."""
        messages: list[ConversationMessage] = []
        if self._system_prompt:
            messages.append(ConversationMessage.system(self._system_prompt))

        limit = max(0, self._settings.history_limit)
        recent = request.history[-limit:] if limit else ()
        for turn in recent:
            if not turn.content:
                continue
            if turn.role == "user":
                messages.append(ConversationMessage.user(turn.content))
            else:
                messages.append(ConversationMessage.assistant(turn.content))

        messages.append(ConversationMessage.user(request.prompt))
        return messages

    def select_tools(self) -> list[ToolDescriptor]:
        """Registry tools whose names start with a configured prefix (all when none configured)."""
        tools = list(self._registry.list_tools())
        prefixes = tuple(self._settings.tool_name_prefixes)
        if prefixes:
            tools = [tool for tool in tools if tool.name.startswith(prefixes)]
        LOGGER.debug("Tools to pass to model: %d", len(tools))
        return tools

    async def handle(
        self,
        request: ChatRequest,
        sink: OutputSink,
        token: CancellationToken | None = None,
    ) -> ChatOutcome:
        """Run one chat request, rendering everything to ``sink``."""
        LOGGER.info("Handling chat request (%d history turn(s))", len(request.history))

        tools = self.select_tools()
        if not tools:
            LOGGER.warning("No tools matched prefixes %s; skipping the loop", self._settings.tool_name_prefixes)
            sink.emit_warning(NO_TOOLS_WARNING)
            return ChatOutcome(tools_available=False)

        context = LoopContext(
            gateway=self._gateway,
            registry=self._registry,
            sink=sink,
            truncation=self._settings.loop.to_truncation_policy(),
            conclusion_enforcer=self._settings.conclusion.build_enforcer(),
        )
        messages = self.build_messages(request)

        try:
            result = await self._runner.run(
                context,
                messages,
                tools,
                token=token,
                user_prompt=request.prompt,
            )
        except Exception as exc:
            LOGGER.exception("Chat request failed")
            guidance = describe_gateway_error(exc)
            sink.emit_warning(guidance)
            return ChatOutcome(error=guidance)

        return ChatOutcome(result=result)
