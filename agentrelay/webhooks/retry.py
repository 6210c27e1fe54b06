"""Delivery retry policy and state machine.

Each delivery to one subscription moves through::

    pending -> delivered
    pending -> retrying -> ... -> delivered | abandoned

The policy is plain data: the attempt bound and the backoff schedule can be
computed and tested without any network call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List

from .models import DeliveryOutcome

_TRANSITIONS: Dict[DeliveryOutcome, FrozenSet[DeliveryOutcome]] = {
    DeliveryOutcome.pending: frozenset({DeliveryOutcome.delivered, DeliveryOutcome.retrying, DeliveryOutcome.abandoned}),
    DeliveryOutcome.retrying: frozenset({DeliveryOutcome.delivered, DeliveryOutcome.retrying, DeliveryOutcome.abandoned}),
    DeliveryOutcome.delivered: frozenset(),
    DeliveryOutcome.abandoned: frozenset(),
}


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a bounded attempt count and a total-delay cap."""

    max_attempts: int = 5
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    max_total_delay_seconds: float = 120.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0 or self.max_total_delay_seconds < 0:
            raise ValueError("delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def schedule(self) -> List[float]:
        """Delays to wait before attempts ``2..max_attempts``.

        The sum never exceeds ``max_total_delay_seconds``; once the budget is
        spent the remaining retries happen back-to-back.
        """
        delays: List[float] = []
        total = 0.0
        for n in range(1, self.max_attempts):
            delay = min(self.base_delay_seconds * self.multiplier ** (n - 1), self.max_delay_seconds)
            delay = max(0.0, min(delay, self.max_total_delay_seconds - total))
            delays.append(delay)
            total += delay
        return delays

    def delay_after(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        schedule = self.schedule()
        if attempt < 1 or attempt > len(schedule):
            return 0.0
        return schedule[attempt - 1]


def next_outcome(*, success: bool, attempt: int, policy: RetryPolicy) -> DeliveryOutcome:
    """Outcome to record for attempt number ``attempt``."""
    if success:
        return DeliveryOutcome.delivered
    if attempt >= policy.max_attempts:
        return DeliveryOutcome.abandoned
    return DeliveryOutcome.retrying


def transition(current: DeliveryOutcome, new: DeliveryOutcome) -> DeliveryOutcome:
    """
    Validate a state change of a delivery.

    Raises:
        ValueError: If ``current`` is terminal or the move is not allowed.
    """
    if new not in _TRANSITIONS[current]:
        raise ValueError(f"illegal delivery transition {current.value} -> {new.value}")
    return new


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 300
