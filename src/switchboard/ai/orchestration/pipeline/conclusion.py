"""Pipeline stage: Conclusion.

Optional post-pass for analysis-style requests. When the answer produced by
the tool loop lacks required structured sections, exactly one more model
round is issued with no tools attached, asking only for the missing sections.
The classifier deciding what counts as "analysis" is injected.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Sequence

from ..cancellation import CancellationToken
from ..types import ConversationMessage, RequestOptions, ToolMode
from .stream import stream_round

if TYPE_CHECKING:
    from ..context import LoopContext

__all__ = [
    "RequestClassifier",
    "KeywordClassifier",
    "ConclusionPolicy",
    "ConclusionEnforcer",
    "find_missing_sections",
    "build_directive",
    "DEFAULT_ANALYSIS_KEYWORDS",
    "DEFAULT_REQUIRED_SECTIONS",
]

LOGGER = logging.getLogger(__name__)

# Decides whether a user prompt asked for analysis rather than a lookup.
RequestClassifier = Callable[[str], bool]

DEFAULT_ANALYSIS_KEYWORDS: tuple[str, ...] = (
    "analyze",
    "analyse",
    "analysis",
    "investigate",
    "diagnose",
    "root cause",
    "why",
    "trend",
    "compare",
    "performance",
    "recommend",
)

DEFAULT_REQUIRED_SECTIONS: tuple[str, ...] = (
    "Key Findings",
    "Recommendations",
    "Next Steps",
)

_HEADING_PREFIX_RE = re.compile(r"^[\s#>*_\-\d.]*")


class KeywordClassifier:
    """Classifier matching whole-word keywords (case-insensitive)."""

    def __init__(self, keywords: Sequence[str] = DEFAULT_ANALYSIS_KEYWORDS) -> None:
        cleaned = [k.strip() for k in keywords if k and k.strip()]
        self._keywords = tuple(cleaned)
        if cleaned:
            alternation = "|".join(re.escape(k) for k in cleaned)
            self._pattern: re.Pattern[str] | None = re.compile(rf"\b(?:{alternation})\b", re.IGNORECASE)
        else:
            self._pattern = None

    @property
    def keywords(self) -> tuple[str, ...]:
        return self._keywords

    def __call__(self, prompt: str) -> bool:
        if self._pattern is None or not prompt:
            return False
        return self._pattern.search(prompt) is not None


@dataclass(slots=True, frozen=True)
class ConclusionPolicy:
    """Which sections an analysis answer must contain."""

    required_sections: tuple[str, ...] = DEFAULT_REQUIRED_SECTIONS
    separator: str = "\n\n"


def find_missing_sections(text: str, required: Sequence[str]) -> tuple[str, ...]:
    """Return the required section names that do not start any line of ``text``.

    A section counts as present when some line, once heading/bullet/emphasis
    markup is stripped, begins with the section name (case-insensitive).
    """
    starts = [
        _HEADING_PREFIX_RE.sub("", line).lower()
        for line in text.splitlines()
        if line.strip()
    ]
    missing: list[str] = []
    for section in required:
        needle = section.lower()
        if not any(line.startswith(needle) for line in starts):
            missing.append(section)
    return tuple(missing)


def build_directive(missing: Sequence[str]) -> str:
    """Build the instruction sent in the supplementary round."""
    headings = "\n".join(f"## {name}" for name in missing)
    return (
        "Your previous answer is missing required sections. Using only the analysis you "
        "already wrote above, produce just the following sections, each under its own "
        "markdown heading:\n\n"
        f"{headings}\n\n"
        "Do not call tools and do not repeat the rest of the answer."
    )


class ConclusionEnforcer:
    """Ensures analysis answers end with the required structured sections.

    Example:
        >>> enforcer = ConclusionEnforcer(classifier=KeywordClassifier(["analyze"]))
        >>> await enforcer.maybe_enforce(context, prompt, text, messages, token)
    """

    def __init__(
        self,
        classifier: RequestClassifier | None = None,
        policy: ConclusionPolicy | None = None,
    ) -> None:
        self._classifier = classifier or KeywordClassifier()
        self._policy = policy or ConclusionPolicy()

    @property
    def policy(self) -> ConclusionPolicy:
        return self._policy

    def is_analysis_request(self, user_prompt: str) -> bool:
        try:
            return bool(self._classifier(user_prompt))
        except Exception:
            LOGGER.warning("Request classifier raised; treating prompt as a lookup", exc_info=True)
            return False

    async def maybe_enforce(
        self,
        context: LoopContext,
        user_prompt: str,
        accumulated_text: str,
        messages: Sequence[ConversationMessage],
        token: CancellationToken,
        *,
        pending_text: str | None = None,
    ) -> str | None:
        """Issue the supplementary round if the answer needs it.

        Args:
            context: Collaborators for this run.
            user_prompt: The prompt that started the run.
            accumulated_text: All text the loop streamed.
            messages: Conversation so far. Not mutated.
            token: Cancellation token, forwarded to the gateway.
            pending_text: The part of ``accumulated_text`` not yet recorded in
                ``messages`` (the final round's answer). Defaults to all of
                ``accumulated_text`` for callers that keep no tool turns.

        Returns:
            The supplementary round's text, or None when no round was issued.
        """
        if token.is_cancellation_requested:
            return None
        if not self.is_analysis_request(user_prompt):
            return None

        missing = find_missing_sections(accumulated_text, self._policy.required_sections)
        if not missing:
            return None

        LOGGER.info("Answer lacks sections %s; requesting a conclusion round", ", ".join(missing))
        request_messages = list(messages)
        unrecorded = accumulated_text if pending_text is None else pending_text
        if unrecorded:
            request_messages.append(ConversationMessage.assistant(unrecorded))
        request_messages.append(ConversationMessage.user(build_directive(missing)))

        context.sink.emit_text(self._policy.separator)
        output = await stream_round(
            context,
            request_messages,
            RequestOptions(tools=(), tool_mode=ToolMode.AUTO),
            token,
            accept_tool_calls=False,
        )
        return output.text
