"""Exponential backoff driven by HTTP 429 responses.

The refresh loop keeps a single non-negative integer of seconds (``0`` means
no backoff is active) and replaces it after every poll with the return value
of :func:`next_backoff`.  Only rate limiting grows the value; a success
clears it; every other outcome leaves it as it was.

Sequence for consecutive rate limits::

    0 ─▶ 30 ─▶ 60 ─▶ 120 ─▶ 240 ─▶ 300 ─▶ 300 ...

Typical usage::

    from usagewatch.core.models import PollOutcome
    from usagewatch.orchestrator.backoff import next_backoff

    backoff = next_backoff(backoff, PollOutcome.RATE_LIMITED)
"""

from __future__ import annotations

import logging
from typing import Final

from usagewatch.core.models import PollOutcome

__all__ = [
    "INITIAL_BACKOFF_S",
    "MAX_BACKOFF_S",
    "BACKOFF_MULTIPLIER",
    "next_backoff",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Backoff applied after the first rate-limited poll.
INITIAL_BACKOFF_S: Final[int] = 30

#: Upper bound for the backoff value.
MAX_BACKOFF_S: Final[int] = 300

#: Growth factor applied on every further rate-limited poll.
BACKOFF_MULTIPLIER: Final[int] = 2


def next_backoff(current: int, outcome: PollOutcome) -> int:
    """Return the backoff to use after a poll with *outcome*.

    Args:
        current: Backoff in seconds before this poll (``0`` = inactive).
        outcome: Classification of the poll that just finished.

    Returns:
        The new backoff in seconds, always within ``[0, MAX_BACKOFF_S]``
        when *current* is.
    """
    if outcome is PollOutcome.SUCCESS:
        return 0
    if outcome is PollOutcome.RATE_LIMITED:
        if current == 0:
            return INITIAL_BACKOFF_S
        return min(current * BACKOFF_MULTIPLIER, MAX_BACKOFF_S)
    return current
