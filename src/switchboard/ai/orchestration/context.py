"""Per-run collaborator bundle.

A :class:`LoopContext` is built for each loop invocation and threaded through
the runner, the tool invoker, and the conclusion enforcer. Nothing in the
orchestration package holds collaborators in module state, so independent
runs never observe each other.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from .pipeline.invoke import DEFAULT_REMEDIATION_HINTS, ToolRegistry
from .pipeline.stream import ModelGateway
from .sinks import OutputSink
from .types import TruncationPolicy

if TYPE_CHECKING:
    from .pipeline.conclusion import ConclusionEnforcer

__all__ = ["LoopContext"]


@dataclass(slots=True, frozen=True)
class LoopContext:
    """Collaborators and policies for one loop run.

    Attributes:
        gateway: Streaming model access.
        registry: Tool listing and invocation.
        sink: Where text, progress, and warnings are rendered.
        truncation: Bound applied to every tool result.
        remediation_hints: Hints appended to contained tool failures.
        conclusion_enforcer: Optional post-pass run after the loop.
    """

    gateway: ModelGateway
    registry: ToolRegistry
    sink: OutputSink
    truncation: TruncationPolicy = field(default_factory=TruncationPolicy)
    remediation_hints: tuple[str, ...] = DEFAULT_REMEDIATION_HINTS
    conclusion_enforcer: ConclusionEnforcer | None = None

    def with_sink(self, sink: OutputSink) -> LoopContext:
        """Return a copy rendering to ``sink``."""
        return replace(self, sink=sink)

    def with_updates(self, **kwargs: Any) -> LoopContext:
        """Return a copy with the given fields replaced."""
        return replace(self, **kwargs)
