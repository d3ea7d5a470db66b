"""
Quota ledger for free-tier allowances.

Pure local state: no I/O, no awaits. Every check-then-act runs without a
suspension point, so concurrent tasks on the event loop cannot interleave
between can_consume and consume. Callers persist states() after mutations.
"""

from collections.abc import Callable
from datetime import datetime

from clarity.models.quota import (
    ConsumeResult,
    ConsumeStatus,
    QuotaCategory,
    QuotaPolicy,
    QuotaState,
    ResetPolicy,
)
from clarity.utils.calendar import same_month
from clarity.utils.logger import get_logger

logger = get_logger(__name__)


class QuotaLedger:
    """
    Per-category counters with a once-per-category free grant.

    - The first consume of a category is granted without decrementing.
    - Later consumes decrement down to a floor of zero.
    - MONTHLY categories refill on calendar-month rollover; NEVER ones don't.
    """

    def __init__(
        self,
        policies: dict[QuotaCategory, QuotaPolicy],
        states: list[QuotaState] | None = None,
        free_grant: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the ledger.

        Args:
            policies: Allowance and reset cadence per category
            states: Previously persisted states; missing categories start full
            free_grant: Whether the first use of each category is free
            clock: Source of "now", injectable for tests
        """
        self.policies = policies
        self.free_grant = free_grant
        self._clock = clock
        self._states: dict[QuotaCategory, QuotaState] = {}

        now = clock()
        for category, policy in policies.items():
            self._states[category] = QuotaState(
                category=category,
                remaining=policy.maximum,
                period_start=now if policy.reset == ResetPolicy.MONTHLY else None,
            )
        for state in states or []:
            if state.category in self.policies:
                self.restore(state)

    def restore(self, state: QuotaState) -> None:
        """Load a persisted state, clamped to the category's maximum."""
        maximum = self.policies[state.category].maximum
        self._states[state.category] = state.model_copy(
            update={"remaining": max(0, min(state.remaining, maximum))}
        )

    def state(self, category: QuotaCategory) -> QuotaState:
        return self._states[category].model_copy()

    def states(self) -> list[QuotaState]:
        return [state.model_copy() for state in self._states.values()]

    def remaining(self, category: QuotaCategory) -> int:
        return self._states[category].remaining

    def can_consume(self, category: QuotaCategory) -> bool:
        """True if a consume call would be granted right now."""
        state = self._states[category]
        if self.free_grant and not state.free_grant_used:
            return True
        return state.remaining > 0

    def consume(self, category: QuotaCategory) -> ConsumeResult:
        """
        Take one unit of category.

        Returns:
            ConsumeResult with FREE_GRANT (nothing decremented), CONSUMED, or
            QUOTA_EXCEEDED (nothing changed)
        """
        state = self._states[category]

        if self.free_grant and not state.free_grant_used:
            state.free_grant_used = True
            logger.debug(f"Free grant used for {category.value}", extra={"category": category.value})
            return ConsumeResult(
                category=category, status=ConsumeStatus.FREE_GRANT, remaining=state.remaining
            )

        if state.remaining <= 0:
            logger.info(
                f"Quota exceeded for {category.value}",
                extra={"category": category.value, "remaining": 0},
            )
            return ConsumeResult(category=category, status=ConsumeStatus.QUOTA_EXCEEDED, remaining=0)

        state.remaining -= 1
        return ConsumeResult(
            category=category, status=ConsumeStatus.CONSUMED, remaining=state.remaining
        )

    def refund(self, result: ConsumeResult) -> int:
        """
        Return a unit taken by result after the gated call failed.

        Free grants are not handed back.

        Returns:
            Remaining count after the refund
        """
        state = self._states[result.category]
        if result.status == ConsumeStatus.CONSUMED:
            maximum = self.policies[result.category].maximum
            state.remaining = min(maximum, state.remaining + 1)
            logger.debug(
                f"Refunded one {result.category.value} unit",
                extra={"category": result.category.value, "remaining": state.remaining},
            )
        return state.remaining

    def reset_if_period_elapsed(self, now: datetime | None = None) -> list[QuotaCategory]:
        """
        Refill MONTHLY categories whose period started in an earlier month.

        Returns:
            Categories that were reset
        """
        now = now or self._clock()
        reset = []

        for category, policy in self.policies.items():
            if policy.reset != ResetPolicy.MONTHLY:
                continue
            state = self._states[category]
            if state.period_start is not None and same_month(state.period_start, now):
                continue
            state.remaining = policy.maximum
            state.period_start = now
            reset.append(category)

        if reset:
            logger.info(
                f"Quota period rolled over for {len(reset)} categories",
                extra={"categories": [c.value for c in reset]},
            )
        return reset
