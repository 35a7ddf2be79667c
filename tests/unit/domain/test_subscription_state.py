"""Unit tests for the subscription state machine"""

import pytest

from src.domain.subscription import SubscriptionStatus
from src.domain.subscription_state import ALLOWED_TRANSITIONS, can_transition, next_status

S = SubscriptionStatus


class TestNextStatus:

    @pytest.mark.parametrize(
        "current,mapped,expected",
        [
            (S.PENDING_APPROVAL, S.TRIALING, S.TRIALING),
            (S.PENDING_APPROVAL, S.ACTIVE, S.ACTIVE),
            (S.PENDING_APPROVAL, S.CANCELLED, S.CANCELLED),
            (S.TRIALING, S.ACTIVE, S.ACTIVE),
            (S.TRIALING, S.PAST_DUE, S.PAST_DUE),
            (S.ACTIVE, S.PAST_DUE, S.PAST_DUE),
            (S.PAST_DUE, S.ACTIVE, S.ACTIVE),
            (S.ACTIVE, S.CANCELLED, S.CANCELLED),
        ],
    )
    def test_allowed_transitions(self, current, mapped, expected):
        assert next_status(current, mapped) == expected

    @pytest.mark.parametrize(
        "current,mapped",
        [
            (S.ACTIVE, S.TRIALING),
            (S.ACTIVE, S.PENDING_APPROVAL),
            (S.PAST_DUE, S.TRIALING),
            (S.CANCELLED, S.ACTIVE),
            (S.CANCELLED, S.TRIALING),
        ],
    )
    def test_disallowed_transition_keeps_current(self, current, mapped):
        assert next_status(current, mapped) == current

    def test_none_means_no_change(self):
        for status in S:
            assert next_status(status, None) == status

    def test_cancelled_is_terminal(self):
        assert ALLOWED_TRANSITIONS[S.CANCELLED] == frozenset()
        assert not any(can_transition(S.CANCELLED, target) for target in S)

    def test_idempotent_for_every_pair(self):
        """
        Given: Any current status and any mapped status
        When: next_status is applied twice
        Then: The second application changes nothing
        """
        for current in S:
            for mapped in list(S) + [None]:
                once = next_status(current, mapped)
                assert next_status(once, mapped) == once
