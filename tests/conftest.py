"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from hypnosis_script_generator.conversation_store import ConversationStore
from hypnosis_script_generator.storage import MemoryKeyValueStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_CONFIG = FIXTURES_DIR / "sample_config.yaml"


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def sample_config_path() -> Path:
    return SAMPLE_CONFIG


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv: MemoryKeyValueStore) -> ConversationStore:
    return ConversationStore(kv, throttle_ms=0)


@pytest.fixture
def sample_outline() -> str:
    return (
        "# Calm Before Sleep\n"
        "\n"
        "## Introduction\n"
        "Welcome the listener and set the intention.\n"
        "\n"
        "## Induction\n"
        "Slow the breath and close the eyes.\n"
        "\n"
        "## Emergence\n"
        "Drift into sleep instead of waking.\n"
    )


@pytest.fixture
def sample_script() -> str:
    return (
        "# Calm Before Sleep\n"
        "\n"
        "## Introduction\n"
        "Welcome. Find a comfortable position and let your eyes rest.\n"
        "\n"
        "## Induction\n"
        "Breathe in slowly. Breathe out slowly.\n"
        "Each breath takes you deeper.\n"
        "\n"
        "## Emergence\n"
        "Now let sleep come.\n"
    )
