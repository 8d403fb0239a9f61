"""In-process tool registry.

This module provides :class:`LocalToolRegistry`, a Tool Registry backed by
Python callables. It satisfies the registry protocol the loop consumes:
``list_tools()`` for descriptors and ``invoke()`` for cancellable execution.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..cancellation import CancellationToken, run_cancellable
from ..types import ToolDescriptor, ToolInvocationResult
from .types import AsyncToolHandler, SimpleTool, Tool, ToolHandler, to_content_parts

__all__ = [
    "LocalToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


# -----------------------------------------------------------------------------
# Tool Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool.

    Attributes:
        name: Tool name.
        tool: The tool implementation.
        descriptor: Descriptor presented to the model.
        metadata: Additional registration metadata.
    """

    name: str
    tool: Tool
    descriptor: ToolDescriptor
    metadata: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Tool Registry
# -----------------------------------------------------------------------------


class LocalToolRegistry:
    """Registry of in-process tools.

    Example:
        registry = LocalToolRegistry()
        registry.register_function(
            ToolDescriptor(name="greet", description="Greet someone"),
            lambda args: f"Hello, {args['name']}!",
        )
        result = await registry.invoke("greet", {"name": "World"}, token)
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(
        self,
        tool: Tool,
        *,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        name = tool.name
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name)

        registration = ToolRegistration(
            name=name,
            tool=tool,
            descriptor=tool.descriptor,
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        return registration

    def register_function(
        self,
        descriptor: ToolDescriptor,
        handler: ToolHandler | AsyncToolHandler,
        *,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a sync or async function as a tool.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        tool = SimpleTool(descriptor=descriptor, handler=handler)
        return self.register(tool, allow_override=allow_override, metadata=metadata)

    def unregister(self, name: str) -> bool:
        """Unregister a tool by name. Returns False if it was not registered."""
        if name in self._tools:
            del self._tools[name]
            LOGGER.debug("Unregistered tool: %s", name)
            return True
        return False

    def get(self, name: str) -> Tool | None:
        registration = self._tools.get(name)
        return registration.tool if registration is not None else None

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[ToolDescriptor]:
        """List descriptors of all registered tools, in registration order."""
        return [registration.descriptor for registration in self._tools.values()]

    def list_names(self) -> list[str]:
        return list(self._tools)

    async def invoke(
        self,
        name: str,
        input: Mapping[str, Any],
        token: CancellationToken,
    ) -> ToolInvocationResult:
        """Run a tool, abandoning it if ``token`` fires first.

        Raises:
            ToolNotFoundError: If no tool is registered under ``name``.
            OperationCancelledError: If the token fires before the tool returns.
            Exception: Whatever the tool raises.
        """
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name)

        start_time = time.perf_counter()
        raw = await run_cancellable(tool.execute(input), token, operation=name)
        LOGGER.debug("Tool %s completed in %.1fms", name, (time.perf_counter() - start_time) * 1000)
        return ToolInvocationResult(content=to_content_parts(raw))

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
