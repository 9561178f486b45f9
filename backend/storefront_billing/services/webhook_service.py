"""
Payment Provider Event Effects

Applies verified Stripe events to local billing state. Each event is
applied in one unit of work together with its processed-id record, so an
event either takes full effect once or not at all.

Handled events:
- invoice.payment_succeeded: invoice paid, recover past-due or log renewal
- invoice.payment_failed: active -> past_due and open a retry episode
- customer.subscription.updated: sync period and cancel flag, apply status moves
- customer.subscription.paused / resumed: paused <-> active
- customer.subscription.trial_will_end: trial_ended notice event
- customer.subscription.deleted: immediate cancellation

Status moves reported by Stripe still go through the state machine; a move
it rejects is logged and skipped.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from storefront_billing.domain.state_machine import can_transition, record_event, transition
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
from storefront_billing.services.dunning_service import DunningService, UnitOfWork


logger = logging.getLogger(__name__)

# Stripe subscription status -> local status
STRIPE_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "incomplete": SubscriptionStatus.PENDING,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELLED,
    "paused": SubscriptionStatus.PAUSED,
}

# Event recorded when Stripe moves a subscription into a status
STATUS_EVENTS: dict[SubscriptionStatus, SubscriptionEventType] = {
    SubscriptionStatus.TRIALING: SubscriptionEventType.TRIAL_STARTED,
    SubscriptionStatus.ACTIVE: SubscriptionEventType.ACTIVATED,
    SubscriptionStatus.PAUSED: SubscriptionEventType.PAUSED,
    SubscriptionStatus.PAST_DUE: SubscriptionEventType.PAYMENT_FAILED,
    SubscriptionStatus.CANCELLED: SubscriptionEventType.CANCELLED,
    SubscriptionStatus.EXPIRED: SubscriptionEventType.EXPIRED,
}


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def subscription_period(remote: dict) -> tuple[Optional[datetime], Optional[datetime]]:
    """Billing period of a subscription payload, old or new API shape."""
    start = remote.get("current_period_start")
    end = remote.get("current_period_end")
    if start is None:
        items = (remote.get("items") or {}).get("data") or []
        if items:
            start = items[0].get("current_period_start")
            end = items[0].get("current_period_end")
    return _from_timestamp(start), _from_timestamp(end)


def synced_fields(remote: dict) -> dict[str, Any]:
    """Columns copied from a Stripe subscription, skipping absent values."""
    fields: dict[str, Any] = {}
    start, end = subscription_period(remote)
    if start and end:
        fields["current_period_start"] = start
        fields["current_period_end"] = end
    if "cancel_at_period_end" in remote:
        fields["cancel_at_period_end"] = bool(remote["cancel_at_period_end"])
    for column, key in (
        ("trial_end", "trial_end"),
        ("cancelled_at", "canceled_at"),
        ("ended_at", "ended_at"),
    ):
        value = _from_timestamp(remote.get(key))
        if value is not None:
            fields[column] = value
    return fields


def invoice_subscription_id(invoice: dict) -> Optional[str]:
    """Gateway subscription id of an invoice payload, old or new API shape."""
    subscription_id = invoice.get("subscription")
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else subscription_id.get("id")

    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


class WebhookService:
    """
    Dispatches provider events to their handlers.

    Args:
        dunning: Retry engine, used to open an episode on payment failure
        unit_of_work: Factory for a transaction-scoped repository set
        clock: Source of "now", injectable for tests
    """

    def __init__(
        self,
        dunning: DunningService,
        unit_of_work: UnitOfWork = billing_unit_of_work,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._dunning = dunning
        self._unit_of_work = unit_of_work
        self._clock = clock
        self._handlers = {
            "invoice.payment_succeeded": self.handle_invoice_payment_succeeded,
            "invoice.payment_failed": self.handle_invoice_payment_failed,
            "customer.subscription.updated": self.handle_subscription_updated,
            "customer.subscription.paused": self.handle_subscription_paused,
            "customer.subscription.resumed": self.handle_subscription_resumed,
            "customer.subscription.trial_will_end": self.handle_trial_will_end,
            "customer.subscription.deleted": self.handle_subscription_deleted,
        }

    async def process_event(self, event: dict[str, Any]) -> str:
        """
        Apply one event.

        Returns:
            "already_processed", "ignored" or "success"
        """
        event_id = event.get("id")
        event_type = event.get("type")

        async with self._unit_of_work() as repos:
            if await repos.webhook_events.is_processed(event_id):
                logger.info(f"Event {event_id} already processed, skipping")
                return "already_processed"

            handler = self._handlers.get(event_type)
            if handler is None:
                logger.debug(f"Unhandled event type: {event_type}")
                await repos.webhook_events.mark_processed(event_id, event_type)
                return "ignored"

            logger.info(f"Processing webhook event: {event_type} ({event_id})")
            await handler(repos, event["data"]["object"], event_id)
            await repos.webhook_events.mark_processed(event_id, event_type)
            return "success"

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def handle_invoice_payment_succeeded(
        self,
        repos: BillingRepositories,
        invoice: dict,
        event_id: Optional[str] = None,
    ) -> None:
        subscription = await self._find_subscription(repos, invoice)
        if subscription is None:
            return

        now = self._clock()
        local_invoice = await repos.invoices.upsert_by_stripe_id(
            self._to_invoice(subscription, invoice, InvoiceStatus.PAID, paid_at=now)
        )
        event_data = {
            "invoice_id": str(local_invoice.id),
            "stripe_invoice_id": invoice.get("id"),
            "amount_paid": invoice.get("amount_paid", 0),
        }
        await repos.events.append(record_event(
            subscription, SubscriptionEventType.PAYMENT_SUCCEEDED,
            data=event_data, now=now, stripe_event_id=event_id,
        ))

        if subscription.status == SubscriptionStatus.PAST_DUE:
            change = transition(
                subscription,
                SubscriptionStatus.ACTIVE,
                SubscriptionEventType.ACTIVATED,
                data={**event_data, "reason": "payment_recovered"},
                now=now,
                stripe_event_id=event_id,
            )
            await repos.subscriptions.save_transition(change, SubscriptionStatus.PAST_DUE)
            return

        if subscription.status == SubscriptionStatus.ACTIVE:
            await repos.events.append(record_event(
                subscription, SubscriptionEventType.RENEWED,
                data={
                    "period_start": local_invoice.period_start.isoformat() if local_invoice.period_start else None,
                    "period_end": local_invoice.period_end.isoformat() if local_invoice.period_end else None,
                },
                now=now, stripe_event_id=event_id,
            ))
            logger.info(f"Renewed subscription {subscription.id}")

    async def handle_invoice_payment_failed(
        self,
        repos: BillingRepositories,
        invoice: dict,
        event_id: Optional[str] = None,
    ) -> None:
        subscription = await self._find_subscription(repos, invoice)
        if subscription is None:
            return

        now = self._clock()
        local_invoice = await repos.invoices.upsert_by_stripe_id(
            self._to_invoice(subscription, invoice, InvoiceStatus.OPEN)
        )
        failure_reason = (invoice.get("last_finalization_error") or {}).get("message")

        if subscription.status == SubscriptionStatus.ACTIVE:
            change = transition(
                subscription,
                SubscriptionStatus.PAST_DUE,
                SubscriptionEventType.PAYMENT_FAILED,
                data={
                    "invoice_id": str(local_invoice.id),
                    "stripe_invoice_id": invoice.get("id"),
                    "amount_due": local_invoice.amount_due,
                    "attempt_count": invoice.get("attempt_count"),
                },
                now=now,
                stripe_event_id=event_id,
            )
            subscription = await repos.subscriptions.save_transition(
                change, SubscriptionStatus.ACTIVE
            )
        elif subscription.status != SubscriptionStatus.PAST_DUE:
            logger.warning(
                f"Payment failed for {subscription.status.value} subscription "
                f"{subscription.id}, no dunning started"
            )
            return

        await self._dunning.start_dunning(repos, subscription, local_invoice, now, failure_reason)

    async def handle_subscription_updated(
        self,
        repos: BillingRepositories,
        remote: dict,
        event_id: Optional[str] = None,
    ) -> None:
        """Sync period, trial and cancellation fields, then any status move."""
        subscription = await self._find_by_remote(repos, remote)
        if subscription is None:
            return

        now = self._clock()
        fields = synced_fields(remote)
        target = STRIPE_STATUS_MAP.get(remote.get("status"))
        pause_collection = remote.get("pause_collection")
        if pause_collection and target == SubscriptionStatus.ACTIVE:
            # Paused collection keeps the Stripe status active
            target = SubscriptionStatus.PAUSED
            fields["resume_at"] = _from_timestamp(pause_collection.get("resumes_at"))

        if target is not None and target != subscription.status:
            if can_transition(subscription.status, target):
                await self._apply_status(
                    repos, subscription, target, fields, now, event_id,
                    data={"stripe_status": remote.get("status")},
                )
                return
            logger.warning(
                f"Ignoring Stripe move {subscription.status.value} -> {target.value} "
                f"for subscription {subscription.id}"
            )

        if fields:
            await repos.subscriptions.update_fields(subscription.id, {**fields, "updated_at": now})
            logger.info(f"Synced subscription {subscription.id} from Stripe")

    async def handle_subscription_paused(
        self,
        repos: BillingRepositories,
        remote: dict,
        event_id: Optional[str] = None,
    ) -> None:
        subscription = await self._find_by_remote(repos, remote)
        if subscription is None or subscription.status == SubscriptionStatus.PAUSED:
            return
        if not can_transition(subscription.status, SubscriptionStatus.PAUSED):
            logger.warning(
                f"Ignoring Stripe pause of {subscription.status.value} subscription {subscription.id}"
            )
            return

        now = self._clock()
        resume_at = _from_timestamp((remote.get("pause_collection") or {}).get("resumes_at"))
        await self._apply_status(
            repos, subscription, SubscriptionStatus.PAUSED,
            {"paused_at": now, "resume_at": resume_at}, now, event_id,
            data={"source": "stripe", "resume_at": resume_at.isoformat() if resume_at else None},
        )

    async def handle_subscription_resumed(
        self,
        repos: BillingRepositories,
        remote: dict,
        event_id: Optional[str] = None,
    ) -> None:
        subscription = await self._find_by_remote(repos, remote)
        if subscription is None or subscription.status != SubscriptionStatus.PAUSED:
            return

        now = self._clock()
        await self._apply_status(
            repos, subscription, SubscriptionStatus.ACTIVE,
            synced_fields(remote), now, event_id,
            data={"source": "stripe"},
        )

    async def handle_trial_will_end(
        self,
        repos: BillingRepositories,
        remote: dict,
        event_id: Optional[str] = None,
    ) -> None:
        """Record the upcoming trial end; the status moves when Stripe bills."""
        subscription = await self._find_by_remote(repos, remote)
        if subscription is None:
            return

        now = self._clock()
        trial_end = _from_timestamp(remote.get("trial_end"))
        await repos.events.append(record_event(
            subscription,
            SubscriptionEventType.TRIAL_ENDED,
            data={"trial_end": trial_end.isoformat() if trial_end else None},
            now=now,
            stripe_event_id=event_id,
        ))
        if trial_end is not None and trial_end != subscription.trial_end:
            await repos.subscriptions.update_fields(
                subscription.id, {"trial_end": trial_end, "updated_at": now}
            )
        logger.info(f"Trial of subscription {subscription.id} ends {trial_end}")

    async def handle_subscription_deleted(
        self,
        repos: BillingRepositories,
        remote: dict,
        event_id: Optional[str] = None,
    ) -> None:
        subscription = await self._find_by_remote(repos, remote)
        if subscription is None:
            return
        if subscription.is_terminal:
            return

        now = self._clock()
        change = transition(
            subscription,
            SubscriptionStatus.CANCELLED,
            SubscriptionEventType.CANCELLED,
            data={"reason": "deleted_at_gateway", "immediate": True},
            changes={"cancelled_at": now, "ended_at": now, "cancel_reason": "deleted_at_gateway"},
            now=now,
            stripe_event_id=event_id,
        )
        await repos.subscriptions.save_transition(change, subscription.status)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _apply_status(
        self,
        repos: BillingRepositories,
        subscription: Subscription,
        target: SubscriptionStatus,
        changes: dict[str, Any],
        now: datetime,
        event_id: Optional[str],
        data: Optional[dict[str, Any]] = None,
    ) -> Subscription:
        if subscription.status == SubscriptionStatus.PAUSED and target == SubscriptionStatus.ACTIVE:
            event_type = SubscriptionEventType.RESUMED
            changes = {**changes, "paused_at": None, "resume_at": None}
        else:
            event_type = STATUS_EVENTS[target]
        if target == SubscriptionStatus.PAUSED:
            changes = {"paused_at": now, **changes}
        if target == SubscriptionStatus.CANCELLED:
            changes = {"cancelled_at": now, "ended_at": now, **changes}

        change = transition(
            subscription, target, event_type,
            data=data, changes=changes, now=now, stripe_event_id=event_id,
        )
        return await repos.subscriptions.save_transition(change, subscription.status)

    async def _find_by_remote(
        self,
        repos: BillingRepositories,
        remote: dict,
    ) -> Optional[Subscription]:
        subscription = await repos.subscriptions.get_by_stripe_subscription_id(remote.get("id"))
        if subscription is None:
            logger.warning(f"No local subscription for Stripe subscription {remote.get('id')}")
        return subscription

    async def _find_subscription(
        self,
        repos: BillingRepositories,
        invoice: dict,
    ) -> Optional[Subscription]:
        stripe_subscription_id = invoice_subscription_id(invoice)
        if not stripe_subscription_id:
            logger.debug(f"Invoice {invoice.get('id')} is not for a subscription")
            return None

        subscription = await repos.subscriptions.get_by_stripe_subscription_id(stripe_subscription_id)
        if subscription is None:
            logger.warning(f"No local subscription for Stripe subscription {stripe_subscription_id}")
        return subscription

    @staticmethod
    def _to_invoice(
        subscription: Subscription,
        invoice: dict,
        status: InvoiceStatus,
        paid_at: Optional[datetime] = None,
    ) -> SubscriptionInvoice:
        total = invoice.get("total", 0)
        discount = sum(
            item.get("amount", 0) for item in invoice.get("total_discount_amounts") or []
        )
        return SubscriptionInvoice(
            subscription_id=subscription.id,
            stripe_invoice_id=invoice.get("id"),
            subtotal_amount=invoice.get("subtotal", 0),
            discount_amount=discount,
            tax_amount=invoice.get("tax") or 0,
            total_amount=total,
            amount_paid=invoice.get("amount_paid", 0),
            amount_due=invoice.get("amount_due", total) if status == InvoiceStatus.OPEN else 0,
            currency_code=(invoice.get("currency") or "usd").upper(),
            status=status,
            period_start=_from_timestamp(invoice.get("period_start")),
            period_end=_from_timestamp(invoice.get("period_end")),
            paid_at=paid_at,
        )
