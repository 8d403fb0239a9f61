"""Output sinks that render what the loop produces.

The loop only knows the :class:`OutputSink` protocol. Two implementations are
provided: :class:`RecordingOutputSink`, which keeps every emission in order,
and :class:`StreamOutputSink`, which writes markdown-ish text to a file-like
object such as ``sys.stdout``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Protocol, TextIO, runtime_checkable

__all__ = [
    "OutputSink",
    "SinkEvent",
    "RecordingOutputSink",
    "StreamOutputSink",
]

LOGGER = logging.getLogger(__name__)

SinkEventKind = Literal["text", "progress", "warning"]


@runtime_checkable
class OutputSink(Protocol):
    """Protocol for rendering loop output.

    ``emit_text`` receives streamed model text, ``emit_progress`` per-tool-call
    progress labels, and ``emit_warning`` tool failures and loop notices.
    """

    def emit_text(self, value: str) -> None:
        ...

    def emit_progress(self, label: str) -> None:
        ...

    def emit_warning(self, value: str) -> None:
        ...


@dataclass(slots=True, frozen=True)
class SinkEvent:
    """One emission captured by :class:`RecordingOutputSink`."""

    kind: SinkEventKind
    value: str


@dataclass
class RecordingOutputSink:
    """Sink that records every emission in order."""

    events: list[SinkEvent] = field(default_factory=list)

    def emit_text(self, value: str) -> None:
        self.events.append(SinkEvent("text", value))

    def emit_progress(self, label: str) -> None:
        self.events.append(SinkEvent("progress", label))

    def emit_warning(self, value: str) -> None:
        self.events.append(SinkEvent("warning", value))

    @property
    def text(self) -> str:
        """All streamed model text, concatenated."""
        return "".join(e.value for e in self.events if e.kind == "text")

    @property
    def progress(self) -> list[str]:
        return [e.value for e in self.events if e.kind == "progress"]

    @property
    def warnings(self) -> list[str]:
        return [e.value for e in self.events if e.kind == "warning"]

    def clear(self) -> None:
        self.events.clear()


class StreamOutputSink:
    """Sink writing to a text stream.

    Progress labels are rendered in italics on their own line and warnings
    are set apart by blank lines, mirroring how a chat panel shows them.
    """

    def __init__(self, stream: TextIO, *, show_progress: bool = True) -> None:
        self._stream = stream
        self._show_progress = show_progress

    def emit_text(self, value: str) -> None:
        self._write(value)

    def emit_progress(self, label: str) -> None:
        LOGGER.debug("Progress: %s", label)
        if self._show_progress:
            self._write(f"\n_{label}_\n")

    def emit_warning(self, value: str) -> None:
        self._write(f"\n\n{value}\n\n")

    def _write(self, text: str) -> None:
        self._stream.write(text)
        self._stream.flush()
