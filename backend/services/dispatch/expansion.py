"""
Expanding-search policy.

A request's search is split into fixed-length rounds counted from its
creation time. Each round widens the pool of notified operators; once the
round number passes the configured maximum the search has timed out.
Everything is derived from elapsed time, so it survives restarts.
"""

from datetime import datetime

from .types import DispatchConfig


def elapsed_seconds(created_at: datetime, now: datetime) -> float:
    """Seconds since creation, clamped at zero for clock skew."""
    return max(0.0, (now - created_at).total_seconds())


def expansion_round(elapsed: float, config: DispatchConfig) -> int:
    """Round number for the elapsed time (integer division by the round length)."""
    if elapsed <= 0:
        return 0
    return int(elapsed // config.round_duration_seconds)


def pool_size(round_number: int, config: DispatchConfig) -> int:
    """How many nearest operators are in the pool during this round."""
    return config.initial_pool_size + max(round_number, 0) * config.expansion_increment


def has_timed_out(round_number: int, config: DispatchConfig) -> bool:
    return round_number > config.max_rounds


def should_notify(round_number: int, last_notified_round) -> bool:
    """Notify only when the search has moved into a round not yet announced."""
    return last_notified_round is None or round_number > last_notified_round
