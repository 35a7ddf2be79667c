"""Subscription Reconciler

Single writer of subscription state. Every path (redirect callback, inline
confirmation, webhook, cancel, periodic sync) funnels through reconcile():

1. Read the latest row
2. Compute the next state with a pure function of (row, observation)
3. Write it conditionally on the version that was read
4. On a lost race, re-read and recompute (bounded)

Entitlements are materialized in the same transaction whenever plan or
status changes.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional
from src.app.repositories.organization_repository import OrganizationRepository
from src.app.repositories.subscription_repository import SubscriptionRepository
from src.domain.plans import PERIOD_DAYS, PLANS, PlanTier
from src.domain.subscription import Subscription, SubscriptionStatus
from src.domain.subscription_state import next_status
from .errors import ConcurrentUpdateError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

S = SubscriptionStatus


@dataclass
class Transition:
    """
    Field changes computed for one subscription

    Attributes:
        changes: Column values to write (empty means no-op)
        reason: Short label for logs ("activated", "stale", ...)
        entitlement_start: Subscription start recorded on the organization
    """
    changes: Dict[str, Any] = field(default_factory=dict)
    reason: str = ""
    entitlement_start: Optional[datetime] = None

    @property
    def is_noop(self) -> bool:
        return not self.changes


@dataclass
class ReconcileOutcome:
    subscription: Optional[Subscription]
    changed: bool
    reason: str = ""


def status_changes(
    subscription: Subscription, target: SubscriptionStatus, observed_at: datetime
) -> Dict[str, Any]:
    """
    Changes implied by moving subscription to target

    Entering CANCELLED stamps cancelled_at and clears a pending deferred
    cancel. Leaving PENDING_APPROVAL for a live status grants the plan's
    credit counters.
    """
    changes: Dict[str, Any] = {"status": target}
    if target == S.CANCELLED:
        changes["cancelled_at"] = observed_at
        changes["cancel_at_period_end"] = False
    elif subscription.status == S.PENDING_APPROVAL:
        limits = PLANS[subscription.plan].limits
        changes["email_credits"] = limits.max_emails_per_month
        changes["sms_credits"] = limits.max_sms_per_month
    return changes


def activation_changes(
    subscription: Subscription,
    mapped: Optional[SubscriptionStatus],
    trial_days: int,
    observed_at: datetime,
) -> Transition:
    """
    Transition for an approved charge

    A live charge becomes TRIALING when the provider grants trial days and
    ACTIVE otherwise. Any other reported status goes through next_status
    unchanged.
    """
    if mapped in (S.TRIALING, S.ACTIVE):
        mapped = S.TRIALING if trial_days > 0 else S.ACTIVE
    resolved = next_status(subscription.status, mapped)
    if resolved == subscription.status:
        return Transition(reason=f"already {subscription.status.value}")

    in_trial = resolved == S.TRIALING
    limits = PLANS[subscription.plan].limits
    period_days = PERIOD_DAYS[subscription.billing_period]
    changes = {
        "status": resolved,
        "current_period_start": observed_at,
        "current_period_end": observed_at + timedelta(days=period_days),
        "trial_start": observed_at if in_trial else None,
        "trial_end": observed_at + timedelta(days=trial_days) if in_trial else None,
        "cancel_at_period_end": False,
        "cancelled_at": None,
        "email_credits": limits.max_emails_per_month,
        "sms_credits": limits.max_sms_per_month,
        "last_event_at": observed_at,
    }
    return Transition(changes=changes, reason="activated", entitlement_start=observed_at)


class SubscriptionReconciler:
    """
    Applies transitions with read-latest / conditional-write semantics

    Args:
        subscription_repo: Subscription persistence
        organization_repo: Entitlement persistence
        max_attempts: Conditional write attempts before giving up
    """

    def __init__(
        self,
        subscription_repo: SubscriptionRepository,
        organization_repo: OrganizationRepository,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.subscription_repo = subscription_repo
        self.organization_repo = organization_repo
        self.max_attempts = max_attempts

    async def reconcile(
        self,
        load: Callable[[], Awaitable[Optional[Subscription]]],
        compute: Callable[[Subscription], Transition],
    ) -> ReconcileOutcome:
        """
        Read, compute, conditionally write

        Args:
            load: Fetches the latest row (None when there is none)
            compute: Pure function from the latest row to a Transition

        Returns:
            ReconcileOutcome with the row as persisted afterwards

        Raises:
            ConcurrentUpdateError: every attempt lost the version race
        """
        tenant_id = "unknown"
        for attempt in range(1, self.max_attempts + 1):
            subscription = await load()
            if subscription is None:
                return ReconcileOutcome(subscription=None, changed=False, reason="not_found")
            tenant_id = subscription.tenant_id

            transition = compute(subscription)
            if transition.is_noop:
                logger.debug(f"Tenant {tenant_id}: no change ({transition.reason})")
                return ReconcileOutcome(subscription=subscription, changed=False, reason=transition.reason)

            previous_status = subscription.status
            previous_plan = subscription.plan
            saved = await self.subscription_repo.save_if_version(
                subscription.id, subscription.version, transition.changes
            )
            if not saved:
                logger.info(
                    f"Tenant {tenant_id}: version {subscription.version} is stale "
                    f"(attempt {attempt}/{self.max_attempts}), re-reading"
                )
                continue

            updated = await load()
            new_status = transition.changes.get("status", previous_status)
            new_plan = transition.changes.get("plan", previous_plan)
            if new_status != previous_status or new_plan != previous_plan:
                await self.sync_entitlements(updated, transition.entitlement_start)
            logger.info(
                f"Tenant {tenant_id}: {previous_status.value} -> {new_status.value} "
                f"({transition.reason})"
            )
            return ReconcileOutcome(subscription=updated, changed=True, reason=transition.reason)

        raise ConcurrentUpdateError(tenant_id, self.max_attempts)

    async def sync_entitlements(
        self, subscription: Subscription, start_date: Optional[datetime] = None
    ) -> None:
        """
        Mirror subscription plan/status onto the organization

        CANCELLED downgrades to FREE limits. PENDING_APPROVAL grants nothing
        new and leaves the organization untouched.
        """
        if subscription.status == S.PENDING_APPROVAL:
            return
        tier = PlanTier.FREE if subscription.status == S.CANCELLED else subscription.plan
        await self.organization_repo.apply_entitlements(
            tenant_id=subscription.tenant_id,
            tier=tier,
            status=subscription.status,
            limits=PLANS[tier].limits,
            start_date=start_date,
        )
