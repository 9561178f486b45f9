"""
Unit tests for the Stripe gateway's error translation and invoice collection.

The Stripe SDK calls are patched; no network access.
"""

import pytest
from unittest.mock import MagicMock, patch

import stripe

from storefront_billing.infrastructure.exceptions import (
    GatewayUnavailableError,
    PaymentDeclinedError,
    PaymentGatewayError,
)
from storefront_billing.infrastructure.payments.stripe_gateway import (
    StripeBillingGateway,
    _is_proration,
    _translate_error,
)


@pytest.fixture
def gateway():
    return StripeBillingGateway()


class TestErrorTranslation:

    def test_card_error_is_a_decline(self):
        error = _translate_error(stripe.CardError("Your card was declined.", None, "card_declined"), "pay")
        assert isinstance(error, PaymentDeclinedError)
        assert error.failure_reason == "Your card was declined."

    def test_connection_error_is_unavailable(self):
        error = _translate_error(stripe.APIConnectionError("timeout"), "pay")
        assert isinstance(error, GatewayUnavailableError)

    def test_other_errors_are_generic(self):
        error = _translate_error(stripe.InvalidRequestError("No such subscription", "id"), "pay")
        assert type(error) is PaymentGatewayError
        assert error.original_error is not None


class TestProrationLines:

    def test_flag_on_line(self):
        assert _is_proration({"proration": True}) is True
        assert _is_proration({"proration": False}) is False

    def test_flag_under_parent(self):
        line = {"parent": {"subscription_item_details": {"proration": True}}}
        assert _is_proration(line) is True

    def test_no_flag(self):
        assert _is_proration({}) is False


class TestCollectOpenInvoice:

    @pytest.mark.asyncio
    async def test_paid_invoice(self, gateway):
        with patch.object(stripe.Invoice, "list") as mock_list, \
             patch.object(stripe.Invoice, "pay") as mock_pay:
            mock_list.return_value = MagicMock(data=[MagicMock(id="in_1")])
            mock_pay.return_value = {"status": "paid", "payment_intent": "pi_1"}

            collection = await gateway.collect_open_invoice("sub_1")

        assert collection.paid is True
        assert collection.invoice_id == "in_1"
        assert collection.payment_intent_id == "pi_1"
        mock_list.assert_called_once_with(subscription="sub_1", status="open", limit=1)

    @pytest.mark.asyncio
    async def test_unpaid_invoice_reports_status(self, gateway):
        with patch.object(stripe.Invoice, "list") as mock_list, \
             patch.object(stripe.Invoice, "pay") as mock_pay:
            mock_list.return_value = MagicMock(data=[MagicMock(id="in_1")])
            mock_pay.return_value = {"status": "open"}

            collection = await gateway.collect_open_invoice("sub_1")

        assert collection.paid is False
        assert collection.failure_reason == "Invoice status is open"

    @pytest.mark.asyncio
    async def test_no_open_invoice(self, gateway):
        with patch.object(stripe.Invoice, "list") as mock_list:
            mock_list.return_value = MagicMock(data=[])

            with pytest.raises(GatewayUnavailableError):
                await gateway.collect_open_invoice("sub_1")

    @pytest.mark.asyncio
    async def test_declined_charge(self, gateway):
        with patch.object(stripe.Invoice, "list") as mock_list, \
             patch.object(stripe.Invoice, "pay") as mock_pay:
            mock_list.return_value = MagicMock(data=[MagicMock(id="in_1")])
            mock_pay.side_effect = stripe.CardError("Insufficient funds", None, "card_declined")

            with pytest.raises(PaymentDeclinedError):
                await gateway.collect_open_invoice("sub_1")


class TestWebhookSignature:

    def test_invalid_signature(self, gateway):
        gateway._webhook_secret = "whsec_test"
        with pytest.raises(PaymentGatewayError):
            gateway.verify_webhook_signature(b'{"id": "evt_1"}', "t=1,v1=bad")
