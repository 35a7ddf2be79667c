"""Subscription state machine

Pure transition function over canonical statuses. It is idempotent
(next_status(next_status(s, m), m) == next_status(s, m)), which lets webhook
delivery, redirect callbacks and periodic sync race and still converge.
"""

from typing import Dict, FrozenSet, Optional
from src.domain.subscription import SubscriptionStatus

S = SubscriptionStatus

ALLOWED_TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    S.PENDING_APPROVAL: frozenset({S.TRIALING, S.ACTIVE, S.PAST_DUE, S.CANCELLED}),
    S.TRIALING: frozenset({S.ACTIVE, S.PAST_DUE, S.CANCELLED}),
    S.ACTIVE: frozenset({S.PAST_DUE, S.CANCELLED}),
    S.PAST_DUE: frozenset({S.ACTIVE, S.CANCELLED}),
    # Terminal for the billing cycle; only a new charge leaves it
    S.CANCELLED: frozenset(),
}


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def next_status(
    current: SubscriptionStatus, mapped: Optional[SubscriptionStatus]
) -> SubscriptionStatus:
    """
    Compute the next canonical status

    Args:
        current: Status currently persisted
        mapped: Status reported by the provider, already mapped to the
                canonical enum (None when the event carries no status)

    Returns:
        mapped if the transition is allowed, current otherwise
    """
    if mapped is None or mapped == current:
        return current
    if can_transition(current, mapped):
        return mapped
    return current
