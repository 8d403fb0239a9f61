"""Pipeline stage: Truncate.

Bounds oversized tool-result payloads before they are handed back to the
model. Lengths are measured in characters of the text-bearing parts; other
parts cost nothing and pass through while budget remains.
"""

from __future__ import annotations

import logging
from typing import Sequence, assert_never

from ..types import ContentPart, TextPart, ToolCallPart, ToolResultPart, TruncationPolicy, text_length

__all__ = [
    "truncate",
    "total_text_length",
    "build_truncation_notice",
]

LOGGER = logging.getLogger(__name__)


def total_text_length(parts: Sequence[ContentPart]) -> int:
    """Return the cumulative length of all text-bearing parts."""
    return sum(text_length(part) for part in parts)


def build_truncation_notice(total: int, limit: int) -> str:
    """Return the diagnostic appended to a truncated result."""
    return (
        f"\n\n[... TRUNCATED - Result too large ({total} chars). Showing first {limit} chars. "
        "To get a smaller result, narrow the request: apply filters, request specific items, "
        "or use a shorter time range.]"
    )


def truncate(
    parts: Sequence[ContentPart],
    policy: TruncationPolicy,
) -> Sequence[ContentPart]:
    """Shorten ``parts`` so their text fits within ``policy.max_bytes``.

    Args:
        parts: Tool result content in order.
        policy: The truncation policy to apply.

    Returns:
        ``parts`` itself when within budget. Otherwise a new tuple holding the
        prefix that fits (the last text sliced to fill the budget exactly)
        followed by one diagnostic text part.
    """
    total = total_text_length(parts)
    limit = policy.max_bytes
    if total <= limit:
        return parts

    kept: list[ContentPart] = []
    remaining = limit
    for part in parts:
        if remaining <= 0:
            break
        if isinstance(part, TextPart):
            if len(part.value) <= remaining:
                kept.append(part)
                remaining -= len(part.value)
            else:
                kept.append(TextPart(part.value[:remaining]))
                remaining = 0
        elif isinstance(part, (ToolCallPart, ToolResultPart)):
            kept.append(part)
        else:
            assert_never(part)

    LOGGER.info("Tool result truncated: %d chars -> %d chars", total, limit)
    kept.append(TextPart(build_truncation_notice(total, limit)))
    return tuple(kept)
