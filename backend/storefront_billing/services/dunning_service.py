"""
Dunning Service

Recovers failed recurring payments on a fixed retry schedule and cancels
the subscription once retries and the grace period are used up.

The batch entry point is invoked by an external scheduler. Every due
attempt is worked in its own unit of work: one attempt's failure rolls
back only that attempt and is reported in the result's error list.
"""

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from storefront_billing.domain.dunning import (
    DunningConfig,
    PaymentRetryAttempt,
    RetryBatchResult,
    RetryStatus,
    episode_anchor,
    get_next_retry_date,
    grace_period_end,
    is_exhausted,
)
from storefront_billing.domain.state_machine import record_event, transition
from storefront_billing.domain.subscription import (
    InvoiceStatus,
    Subscription,
    SubscriptionEventType,
    SubscriptionInvoice,
    SubscriptionStatus,
)
from storefront_billing.infrastructure.db.models.base import utc_now
from storefront_billing.infrastructure.db.repositories import (
    BillingRepositories,
    billing_unit_of_work,
)
from storefront_billing.infrastructure.exceptions import PaymentGatewayError
from storefront_billing.infrastructure.notifications.email_sender import EmailNotifier
from storefront_billing.infrastructure.payments.gateway import BillingGateway
from storefront_billing.services.best_effort import best_effort


logger = logging.getLogger(__name__)

EXHAUSTED_REASON = "payment failed after all retry attempts"
STATUS_CHANGED_REASON = "Subscription status changed"
NO_PROVIDER_REASON = "No payment provider configured"

UnitOfWork = Callable[[], AbstractAsyncContextManager[BillingRepositories]]


class AttemptOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class DunningService:
    """
    Payment retry engine.

    Args:
        gateway: Billing gateway used to collect open invoices
        notifier: Email sender for payment-failed notices
        config: Retry policy
        unit_of_work: Factory for a transaction-scoped repository set
        clock: Source of "now", injectable for tests
    """

    def __init__(
        self,
        gateway: BillingGateway,
        notifier: EmailNotifier,
        config: DunningConfig,
        unit_of_work: UnitOfWork = billing_unit_of_work,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._gateway = gateway
        self._notifier = notifier
        self._config = config
        self._unit_of_work = unit_of_work
        self._clock = clock

    @property
    def config(self) -> DunningConfig:
        return self._config

    # =========================================================================
    # Episode Start
    # =========================================================================

    async def start_dunning(
        self,
        repos: BillingRepositories,
        subscription: Subscription,
        invoice: SubscriptionInvoice,
        failed_at: datetime,
        failure_reason: Optional[str] = None,
    ) -> Optional[PaymentRetryAttempt]:
        """
        Open a retry episode for a subscription that just went past due.

        Returns None without scheduling when an attempt is already pending.
        """
        if await repos.retries.has_pending(subscription.id):
            logger.info(f"Subscription {subscription.id} already has a pending retry")
            return None

        scheduled_at = get_next_retry_date(0, failed_at, self._config)
        attempt = await repos.retries.create(PaymentRetryAttempt(
            id=uuid4(),
            subscription_id=subscription.id,
            invoice_id=invoice.id,
            attempt_number=1,
            amount=invoice.amount_due,
            currency_code=invoice.currency_code,
            episode_started_at=failed_at,
            scheduled_at=scheduled_at,
            created_at=failed_at,
        ))
        logger.info(
            f"Dunning started for subscription {subscription.id} "
            f"({failure_reason or 'payment failed'}): "
            f"attempt 1 scheduled at {scheduled_at.isoformat()}"
        )

        await self._notify_failure(
            repos, subscription, 0, attempt.amount, attempt.currency_code, scheduled_at
        )
        return attempt

    # =========================================================================
    # Batch Processing
    # =========================================================================

    async def process_due_retries(self) -> RetryBatchResult:
        """
        Work every pending attempt whose scheduled time has passed, then
        cancel subscriptions whose grace period ran out.
        """
        now = self._clock()
        result = RetryBatchResult()

        async with self._unit_of_work() as repos:
            due = await repos.retries.list_due(now)

        logger.info(f"Processing {len(due)} due payment retries")

        for attempt in due:
            result.processed += 1
            try:
                async with self._unit_of_work() as repos:
                    outcome = await self._process_attempt(repos, attempt, now, result)
            except Exception as e:
                logger.error(f"Error processing retry {attempt.id}: {e}")
                result.errors.append(f"Error processing retry {attempt.id}: {e}")
                continue

            if outcome == AttemptOutcome.SUCCEEDED:
                result.succeeded += 1
            elif outcome in (AttemptOutcome.FAILED, AttemptOutcome.CANCELLED):
                result.failed += 1
            if outcome == AttemptOutcome.CANCELLED:
                result.cancelled += 1

        await self.expire_grace_periods(now, result)

        logger.info(
            f"Retry batch done: processed={result.processed} succeeded={result.succeeded} "
            f"failed={result.failed} cancelled={result.cancelled} errors={len(result.errors)}"
        )
        return result

    async def _process_attempt(
        self,
        repos: BillingRepositories,
        attempt: PaymentRetryAttempt,
        now: datetime,
        result: RetryBatchResult,
    ) -> AttemptOutcome:
        subscription = await repos.subscriptions.get_by_id(attempt.subscription_id)
        if subscription is None:
            result.errors.append(f"Subscription {attempt.subscription_id} not found")
            await self._mark_failed(repos, attempt, now, "Subscription not found")
            return AttemptOutcome.SKIPPED

        if subscription.status != SubscriptionStatus.PAST_DUE:
            # Resolved some other way (paid elsewhere, cancelled, ...)
            await self._mark_failed(repos, attempt, now, STATUS_CHANGED_REASON)
            return AttemptOutcome.SKIPPED

        if not subscription.stripe_subscription_id:
            await self._mark_failed(repos, attempt, now, NO_PROVIDER_REASON)
            return AttemptOutcome.FAILED

        try:
            collection = await self._gateway.collect_open_invoice(subscription.stripe_subscription_id)
        except PaymentGatewayError as e:
            return await self._handle_failure(repos, subscription, attempt, now, e.message)

        if not collection.paid:
            return await self._handle_failure(
                repos, subscription, attempt, now, collection.failure_reason or "Payment declined"
            )

        await repos.retries.update(attempt.model_copy(update={
            "status": RetryStatus.SUCCEEDED,
            "attempted_at": now,
            "stripe_payment_intent_id": collection.payment_intent_id,
        }))
        await self._mark_invoice_paid(repos, attempt, now)

        event_data = {
            "retry_attempt": attempt.attempt_number,
            "invoice_id": collection.invoice_id,
        }
        await repos.events.append(record_event(
            subscription, SubscriptionEventType.PAYMENT_SUCCEEDED, data=event_data, now=now,
        ))
        change = transition(
            subscription,
            SubscriptionStatus.ACTIVE,
            SubscriptionEventType.ACTIVATED,
            data={**event_data, "reason": "payment_recovered"},
            now=now,
        )
        await repos.subscriptions.save_transition(change, SubscriptionStatus.PAST_DUE)

        logger.info(
            f"Retry {attempt.attempt_number} recovered payment for subscription {subscription.id}"
        )
        return AttemptOutcome.SUCCEEDED

    async def _handle_failure(
        self,
        repos: BillingRepositories,
        subscription: Subscription,
        attempt: PaymentRetryAttempt,
        now: datetime,
        failure_reason: str,
    ) -> AttemptOutcome:
        anchor = episode_anchor(attempt, self._config)
        next_retry_at = get_next_retry_date(attempt.attempt_number, anchor, self._config)

        await repos.retries.update(attempt.model_copy(update={
            "status": RetryStatus.FAILED,
            "failure_reason": failure_reason,
            "attempted_at": now,
            "next_retry_at": next_retry_at,
        }))
        logger.info(
            f"Retry {attempt.attempt_number} failed for subscription {subscription.id}: {failure_reason}"
        )

        if next_retry_at is not None:
            follow_up = await repos.retries.create(PaymentRetryAttempt(
                id=uuid4(),
                subscription_id=attempt.subscription_id,
                invoice_id=attempt.invoice_id,
                attempt_number=attempt.attempt_number + 1,
                amount=attempt.amount,
                currency_code=attempt.currency_code,
                episode_started_at=anchor,
                scheduled_at=next_retry_at,
                created_at=now,
            ))
            await self._notify_failure(
                repos, subscription, attempt.attempt_number,
                attempt.amount, attempt.currency_code, follow_up.scheduled_at,
            )
            return AttemptOutcome.FAILED

        if now > grace_period_end(attempt, self._config):
            await self._cancel_for_nonpayment(repos, subscription, attempt.attempt_number, now)
            return AttemptOutcome.CANCELLED

        return AttemptOutcome.FAILED

    # =========================================================================
    # Grace Period Expiry
    # =========================================================================

    async def expire_grace_periods(self, now: datetime, result: RetryBatchResult) -> None:
        """
        Cancel past-due subscriptions whose final retry failed and whose
        grace period has ended.
        """
        async with self._unit_of_work() as repos:
            past_due = await repos.subscriptions.list_by_status(SubscriptionStatus.PAST_DUE)

        for subscription in past_due:
            try:
                async with self._unit_of_work() as repos:
                    latest = await repos.retries.get_latest_for_subscription(subscription.id)
                    if not self._grace_period_over(latest, now):
                        continue
                    current = await repos.subscriptions.get_by_id(subscription.id)
                    if current is None or current.status != SubscriptionStatus.PAST_DUE:
                        continue
                    await self._cancel_for_nonpayment(repos, current, latest.attempt_number, now)
            except Exception as e:
                logger.error(f"Error expiring grace period of {subscription.id}: {e}")
                result.errors.append(f"Error expiring grace period of {subscription.id}: {e}")
                continue

            result.cancelled += 1

    def _grace_period_over(self, latest: Optional[PaymentRetryAttempt], now: datetime) -> bool:
        return (
            latest is not None
            and latest.status == RetryStatus.FAILED
            and latest.next_retry_at is None
            and is_exhausted(latest, self._config)
            and now > grace_period_end(latest, self._config)
        )

    async def _cancel_for_nonpayment(
        self,
        repos: BillingRepositories,
        subscription: Subscription,
        total_attempts: int,
        now: datetime,
    ) -> Subscription:
        change = transition(
            subscription,
            SubscriptionStatus.CANCELLED,
            SubscriptionEventType.CANCELLED,
            data={"reason": "dunning_exhausted", "total_attempts": total_attempts},
            changes={"cancelled_at": now, "ended_at": now, "cancel_reason": EXHAUSTED_REASON},
            now=now,
        )
        saved = await repos.subscriptions.save_transition(change, SubscriptionStatus.PAST_DUE)
        logger.info(f"Subscription {subscription.id} cancelled after {total_attempts} failed retries")

        if subscription.stripe_subscription_id:
            await best_effort(
                "gateway cancellation after dunning",
                self._gateway.cancel_subscription(subscription.stripe_subscription_id),
            )
        return saved

    # =========================================================================
    # Status
    # =========================================================================

    async def get_retry_status(self) -> dict[str, Any]:
        """Pending attempts due within the next 24 hours, plus the policy."""
        horizon = self._clock() + timedelta(hours=24)
        async with self._unit_of_work() as repos:
            pending = await repos.retries.list_due(horizon, limit=1000)

        return {
            "pending_count": len(pending),
            "pending_retries": [
                {
                    "id": str(attempt.id),
                    "subscription_id": str(attempt.subscription_id),
                    "attempt_number": attempt.attempt_number,
                    "amount": attempt.amount,
                    "scheduled_at": attempt.scheduled_at.isoformat(),
                }
                for attempt in pending
            ],
            "dunning_config": self._config.model_dump(),
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _mark_failed(
        self,
        repos: BillingRepositories,
        attempt: PaymentRetryAttempt,
        now: datetime,
        reason: str,
    ) -> None:
        await repos.retries.update(attempt.model_copy(update={
            "status": RetryStatus.FAILED,
            "failure_reason": reason,
            "attempted_at": now,
        }))

    async def _mark_invoice_paid(
        self,
        repos: BillingRepositories,
        attempt: PaymentRetryAttempt,
        now: datetime,
    ) -> None:
        invoice = None
        if attempt.invoice_id is not None:
            invoice = await repos.invoices.get_by_id(attempt.invoice_id)
        if invoice is None or invoice.status != InvoiceStatus.OPEN:
            return

        await repos.invoices.update(invoice.model_copy(update={
            "status": InvoiceStatus.PAID,
            "amount_paid": invoice.amount_due,
            "amount_due": 0,
            "paid_at": now,
        }))

    async def _notify_failure(
        self,
        repos: BillingRepositories,
        subscription: Subscription,
        failed_attempt_number: int,
        amount: int,
        currency: str,
        next_retry_at: Optional[datetime],
    ) -> None:
        """Payment-failed notice; ``failed_attempt_number`` 0 is the original charge."""
        if not subscription.customer_email:
            return

        plan = await repos.plans.get_by_id(subscription.plan_id)
        await best_effort(
            "payment failed email",
            self._notifier.send_payment_failed(
                to=subscription.customer_email,
                plan_name=plan.name if plan else "Subscription",
                amount=amount,
                currency=currency,
                attempt_number=failed_attempt_number,
                max_attempts=self._config.max_attempts,
                next_retry_date=next_retry_at,
            ),
        )
