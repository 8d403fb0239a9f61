"""Loop pipeline stages.

- truncate: bound oversized tool results
- stream: run one Model Gateway round and route its fragments
- invoke: execute one tool call with failure containment
- conclusion: optional tool-free round for missing answer sections
"""

from .truncate import (
    truncate,
    total_text_length,
    build_truncation_notice,
)
from .stream import (
    ModelGateway,
    RoundOutput,
    stream_round,
)
from .invoke import (
    ToolRegistry,
    DEFAULT_REMEDIATION_HINTS,
    invoke_tool,
    cancelled_tool_call,
    sanitize_error_message,
    format_failure_text,
)
from .conclusion import (
    RequestClassifier,
    KeywordClassifier,
    ConclusionPolicy,
    ConclusionEnforcer,
    find_missing_sections,
    build_directive,
    DEFAULT_ANALYSIS_KEYWORDS,
    DEFAULT_REQUIRED_SECTIONS,
)

__all__ = [
    # Truncate
    "truncate",
    "total_text_length",
    "build_truncation_notice",
    # Stream
    "ModelGateway",
    "RoundOutput",
    "stream_round",
    # Invoke
    "ToolRegistry",
    "DEFAULT_REMEDIATION_HINTS",
    "invoke_tool",
    "cancelled_tool_call",
    "sanitize_error_message",
    "format_failure_text",
    # Conclusion
    "RequestClassifier",
    "KeywordClassifier",
    "ConclusionPolicy",
    "ConclusionEnforcer",
    "find_missing_sections",
    "build_directive",
    "DEFAULT_ANALYSIS_KEYWORDS",
    "DEFAULT_REQUIRED_SECTIONS",
]
