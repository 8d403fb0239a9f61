"""Tests for the chat request handler."""

from __future__ import annotations

import pytest

from switchboard.ai.orchestration.sinks import RecordingOutputSink
from switchboard.ai.orchestration.types import TerminationReason, TextPart
from switchboard.chat.handler import (
    NO_TOOLS_WARNING,
    ChatRequest,
    ChatRequestHandler,
    ChatTurn,
)
from switchboard.services.settings import ConclusionSettings, LoopSettings, Settings

from tests.helpers import FakeRegistry, ScriptedGateway, call


def _registry() -> FakeRegistry:
    return FakeRegistry(
        {
            "telemetry_query": lambda args: "rows",
            "telemetry_schema": lambda args: "schema",
            "weather": lambda args: "sunny",
        }
    )


def _settings(**kwargs) -> Settings:
    kwargs.setdefault("conclusion", ConclusionSettings(enabled=False))
    return Settings(**kwargs)


# =============================================================================
# Message Building
# =============================================================================


class TestBuildMessages:
    def test_system_history_then_prompt(self):
        handler = ChatRequestHandler(ScriptedGateway(), _registry(), settings=_settings(system_prompt="Be brief."))
        request = ChatRequest(
            "and now?",
            history=(ChatTurn("user", "hello"), ChatTurn("assistant", "hi there")),
        )

        messages = handler.build_messages(request)

        assert [m.role for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[0].text == "Be brief."
        assert messages[-1].text == "and now?"

    def test_history_is_limited_to_most_recent(self):
        handler = ChatRequestHandler(ScriptedGateway(), _registry(), settings=_settings(history_limit=3))
        history = tuple(ChatTurn("user", f"turn {i}") for i in range(12))

        messages = handler.build_messages(ChatRequest("latest", history=history))

        assert [m.text for m in messages] == ["turn 9", "turn 10", "turn 11", "latest"]

    def test_zero_history_limit(self):
        handler = ChatRequestHandler(ScriptedGateway(), _registry(), settings=_settings(history_limit=0))

        messages = handler.build_messages(ChatRequest("latest", history=(ChatTurn("user", "old"),)))

        assert [m.text for m in messages] == ["latest"]

    def test_empty_turns_skipped(self):
        handler = ChatRequestHandler(ScriptedGateway(), _registry(), settings=_settings())

        messages = handler.build_messages(ChatRequest("q", history=(ChatTurn("assistant", ""),)))

        assert len(messages) == 1

    def test_explicit_system_prompt_wins(self):
        handler = ChatRequestHandler(
            ScriptedGateway(), _registry(), settings=_settings(system_prompt="from settings"), system_prompt="explicit"
        )

        assert handler.build_messages(ChatRequest("q"))[0].text == "explicit"


# =============================================================================
# Tool Selection
# =============================================================================


class TestSelectTools:
    def test_all_tools_without_prefixes(self):
        handler = ChatRequestHandler(ScriptedGateway(), _registry(), settings=_settings())

        assert [t.name for t in handler.select_tools()] == ["telemetry_query", "telemetry_schema", "weather"]

    def test_prefix_filter(self):
        handler = ChatRequestHandler(
            ScriptedGateway(), _registry(), settings=_settings(tool_name_prefixes=["telemetry_"])
        )

        assert [t.name for t in handler.select_tools()] == ["telemetry_query", "telemetry_schema"]


# =============================================================================
# Handling
# =============================================================================


class TestHandle:
    @pytest.mark.asyncio
    async def test_runs_loop(self, sink: RecordingOutputSink):
        gateway = ScriptedGateway([[call("a", "telemetry_query")], [TextPart("Found 3 rows.")]])
        registry = _registry()
        handler = ChatRequestHandler(gateway, registry, settings=_settings())

        outcome = await handler.handle(ChatRequest("list errors"), sink)

        assert outcome.ok
        assert outcome.result is not None
        assert outcome.result.reason is TerminationReason.NATURAL_STOP
        assert registry.calls == [("telemetry_query", {})]
        assert sink.text == "Found 3 rows."

    @pytest.mark.asyncio
    async def test_no_matching_tools_skips_loop(self, sink: RecordingOutputSink):
        gateway = ScriptedGateway()
        handler = ChatRequestHandler(gateway, _registry(), settings=_settings(tool_name_prefixes=["bc_"]))

        outcome = await handler.handle(ChatRequest("list errors"), sink)

        assert not outcome.tools_available
        assert not outcome.ok
        assert gateway.requests == []
        assert sink.warnings == [NO_TOOLS_WARNING]

    @pytest.mark.asyncio
    async def test_gateway_failure_becomes_guidance(self, sink: RecordingOutputSink):
        gateway = ScriptedGateway(error=RuntimeError("connect ECONNREFUSED 127.0.0.1:443"))
        handler = ChatRequestHandler(gateway, _registry(), settings=_settings())

        outcome = await handler.handle(ChatRequest("list errors"), sink)

        assert outcome.error is not None
        assert "Could not reach" in outcome.error
        assert sink.warnings == [outcome.error]

    @pytest.mark.asyncio
    async def test_loop_settings_apply(self, sink: RecordingOutputSink):
        gateway = ScriptedGateway([[call(f"c{i}", "weather")] for i in range(10)])
        settings = _settings(loop=LoopSettings(max_iterations=2))
        handler = ChatRequestHandler(gateway, _registry(), settings=settings)

        outcome = await handler.handle(ChatRequest("weather?"), sink)

        assert outcome.result is not None
        assert outcome.result.reason is TerminationReason.ITERATION_CAP
        assert outcome.result.rounds == 2

    @pytest.mark.asyncio
    async def test_conclusion_enabled_by_settings(self, sink: RecordingOutputSink):
        gateway = ScriptedGateway([[TextPart("Errors spiked.")], [TextPart("## Next Steps\n- check deploys")]])
        settings = Settings(conclusion=ConclusionSettings(required_sections=["Next Steps"]))
        handler = ChatRequestHandler(gateway, _registry(), settings=settings)

        outcome = await handler.handle(ChatRequest("Analyze the error spike"), sink)

        assert outcome.result is not None
        assert outcome.result.conclusion_text == "## Next Steps\n- check deploys"
        assert gateway.requests[1][1].tools == ()
