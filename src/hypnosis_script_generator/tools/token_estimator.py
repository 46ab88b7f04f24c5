"""Token estimation and example-count budgeting.

Uses the ~4 characters per token rule of thumb; no tokenizer dependency.
"""

from __future__ import annotations

import math

from ..models import ContextConfig

_DEFAULT_LIMITS = ContextConfig()


def estimate_tokens(text: str | None) -> int:
    """Estimate the token count of *text* (characters / 4, rounded up)."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def recommended_example_count(
    system_prompt: str | None,
    conversation_tokens: int = 0,
    *,
    limits: ContextConfig = _DEFAULT_LIMITS,
) -> int:
    """Number of example documents that fit the remaining context budget.

    ``available = window - reserved - system tokens - conversation tokens``,
    divided by the average per-example cost and clamped to
    ``[limits.min_examples, limits.max_examples]``. A negative budget
    clamps to the floor.
    """
    available = (
        limits.max_context_window
        - limits.reserved_tokens
        - estimate_tokens(system_prompt)
        - conversation_tokens
    )
    per_example = max(1, limits.average_example_tokens)
    fitting = available // per_example
    return max(limits.min_examples, min(limits.max_examples, fitting))
