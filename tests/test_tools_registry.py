"""Tests for the in-process tool registry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import pytest

from switchboard.ai.orchestration.cancellation import (
    CancellationSource,
    CancellationToken,
    OperationCancelledError,
)
from switchboard.ai.orchestration.runner import ToolLoopRunner
from switchboard.ai.orchestration.tools import (
    DuplicateToolError,
    LocalToolRegistry,
    SimpleTool,
    ToolNotFoundError,
    format_tool_result_content,
    to_content_parts,
)
from switchboard.ai.orchestration.types import (
    TerminationReason,
    TextPart,
    ToolDescriptor,
    ConversationMessage,
    is_well_formed,
)

from tests.helpers import ScriptedGateway, call, make_context


def _descriptor(name: str) -> ToolDescriptor:
    return ToolDescriptor(name=name, description=f"{name} tool", input_schema={"type": "object"})


# =============================================================================
# Registration
# =============================================================================


class TestRegistration:
    def test_register_function(self):
        registry = LocalToolRegistry()
        registration = registry.register_function(_descriptor("greet"), lambda args: "hi")

        assert registration.name == "greet"
        assert "greet" in registry
        assert registry.has("greet")
        assert len(registry) == 1
        assert isinstance(registry.get("greet"), SimpleTool)

    def test_duplicate_rejected(self):
        registry = LocalToolRegistry()
        registry.register_function(_descriptor("greet"), lambda args: "hi")

        with pytest.raises(DuplicateToolError) as excinfo:
            registry.register_function(_descriptor("greet"), lambda args: "hello")

        assert excinfo.value.name == "greet"

    def test_override_allowed(self):
        registry = LocalToolRegistry()
        registry.register_function(_descriptor("greet"), lambda args: "hi")
        registry.register_function(_descriptor("greet"), lambda args: "hello", allow_override=True)

        assert len(registry) == 1

    def test_unregister(self):
        registry = LocalToolRegistry()
        registry.register_function(_descriptor("greet"), lambda args: "hi")

        assert registry.unregister("greet") is True
        assert registry.unregister("greet") is False
        assert registry.get("greet") is None

    def test_list_tools_keeps_registration_order(self):
        registry = LocalToolRegistry()
        for name in ("b", "a", "c"):
            registry.register_function(_descriptor(name), lambda args: None)

        assert [t.name for t in registry.list_tools()] == ["b", "a", "c"]
        assert registry.list_names() == ["b", "a", "c"]

    def test_register_custom_tool(self):
        @dataclass
        class EchoTool:
            descriptor: ToolDescriptor

            @property
            def name(self) -> str:
                return self.descriptor.name

            async def execute(self, arguments):
                return dict(arguments)

        registry = LocalToolRegistry()
        registry.register(EchoTool(_descriptor("echo")), metadata={"owner": "tests"})

        assert registry.list_tools()[0].name == "echo"


# =============================================================================
# Invocation
# =============================================================================


class TestInvoke:
    @pytest.mark.asyncio
    async def test_sync_handler(self):
        registry = LocalToolRegistry()
        registry.register_function(_descriptor("greet"), lambda args: f"Hello, {args['name']}!")

        result = await registry.invoke("greet", {"name": "World"}, CancellationToken.none())

        assert result.content == (TextPart("Hello, World!"),)

    @pytest.mark.asyncio
    async def test_async_handler(self):
        async def fetch(args):
            await asyncio.sleep(0)
            return {"rows": [1, 2]}

        registry = LocalToolRegistry()
        registry.register_function(_descriptor("fetch"), fetch)

        result = await registry.invoke("fetch", {}, CancellationToken.none())

        assert '"rows"' in result.content[0].value  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_missing_tool(self):
        with pytest.raises(ToolNotFoundError):
            await LocalToolRegistry().invoke("ghost", {}, CancellationToken.none())

    @pytest.mark.asyncio
    async def test_handler_errors_propagate(self):
        def broken(_args):
            raise RuntimeError("connection refused")

        registry = LocalToolRegistry()
        registry.register_function(_descriptor("query"), broken)

        with pytest.raises(RuntimeError, match="connection refused"):
            await registry.invoke("query", {}, CancellationToken.none())

    @pytest.mark.asyncio
    async def test_cancellation_abandons_slow_tool(self, cancellation: CancellationSource):
        async def slow(_args):
            await asyncio.sleep(10)

        registry = LocalToolRegistry()
        registry.register_function(_descriptor("slow"), slow)
        cancellation.cancel_after(0.01)

        with pytest.raises(OperationCancelledError):
            await registry.invoke("slow", {}, cancellation.token)

    @pytest.mark.asyncio
    async def test_drives_loop_end_to_end(self):
        registry = LocalToolRegistry()
        registry.register_function(_descriptor("count"), lambda args: len(args.get("items", [])))
        gateway = ScriptedGateway([[call("a", "count", items=[1, 2, 3])], [TextPart("Three.")]])
        context, _sink = make_context(gateway, registry)  # type: ignore[arg-type]
        messages = [ConversationMessage.user("how many?")]

        result = await ToolLoopRunner().run(context, messages, registry.list_tools())

        assert result.reason is TerminationReason.NATURAL_STOP
        assert messages[2].tool_results[0].text == "3"
        assert is_well_formed(messages)


# =============================================================================
# Result Normalization
# =============================================================================


class TestResultNormalization:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, "null"),
            ("text", "text"),
            (True, "true"),
            (3, "3"),
            (1.5, "1.5"),
        ],
    )
    def test_scalars(self, value, expected):
        assert format_tool_result_content(value) == expected

    def test_mappings_become_json(self):
        assert format_tool_result_content({"a": 1}) == '{\n  "a": 1\n}'

    def test_to_dict_objects(self):
        class Row:
            def to_dict(self):
                return {"id": 1}

        assert '"id": 1' in format_tool_result_content(Row())

    def test_content_parts_pass_through(self):
        parts = [TextPart("a"), TextPart("b")]

        assert to_content_parts(parts) == (TextPart("a"), TextPart("b"))
        assert to_content_parts(TextPart("solo")) == (TextPart("solo"),)

    def test_mixed_list_becomes_json_text(self):
        result = to_content_parts([1, "two"])

        assert len(result) == 1
        assert isinstance(result[0], TextPart)
