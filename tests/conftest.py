"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from switchboard.ai.orchestration.cancellation import CancellationSource
from switchboard.ai.orchestration.sinks import RecordingOutputSink


@pytest.fixture
def sink() -> RecordingOutputSink:
    return RecordingOutputSink()


@pytest.fixture
def cancellation() -> CancellationSource:
    return CancellationSource()


@pytest.fixture(autouse=True)
def _isolate_switchboard_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment overrides out of the tests."""
    for name in list(os.environ):
        if name.startswith("SWITCHBOARD_"):
            monkeypatch.delenv(name, raising=False)
