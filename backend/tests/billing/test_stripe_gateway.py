"""Tests for the Stripe-backed payment gateway."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import stripe

from tenant_licensing.billing.gateway import CheckoutSessionRequest, StripeGateway, build_license_session_params
from tenant_licensing.core.exceptions import PaymentGatewayError

pytestmark = pytest.mark.unit


def session_request(**overrides) -> CheckoutSessionRequest:
    values = dict(
        amount_cents=90000,
        currency="EUR",
        product_name="Python Fundamentals",
        description='10 seat license for "Python Fundamentals"',
        metadata={"type": "b2b_license", "tenantId": "t-1", "courseId": "c-1", "userId": "u-1", "seats": "10"},
        success_url="https://app.example.com/admin/licenses/success?session_id={CHECKOUT_SESSION_ID}",
        cancel_url="https://app.example.com/admin/licenses?course=python",
        customer_id="cus_1",
    )
    values.update(overrides)
    return CheckoutSessionRequest(**values)


class TestSessionParams:
    def test_line_item_and_payment_methods(self):
        params = build_license_session_params(session_request())

        assert params["mode"] == "payment"
        assert params["payment_method_types"] == ["card", "customer_balance"]
        item = params["line_items"][0]
        assert item["quantity"] == 1
        assert item["price_data"]["currency"] == "eur"
        assert item["price_data"]["unit_amount"] == 90000
        assert params["customer"] == "cus_1"
        assert "customer_email" not in params

    def test_metadata_on_session_and_payment_intent(self):
        params = build_license_session_params(session_request())

        assert params["metadata"]["tenantId"] == "t-1"
        assert params["payment_intent_data"]["metadata"] == params["metadata"]
        assert params["invoice_creation"]["invoice_data"]["metadata"] == {
            "type": "b2b_license",
            "tenantId": "t-1",
            "courseId": "c-1",
        }

    def test_email_used_without_customer(self):
        params = build_license_session_params(session_request(customer_id=None, customer_email="a@b.test"))

        assert params["customer_email"] == "a@b.test"
        assert "customer" not in params


class TestStripeGateway:
    async def test_checkout_uses_async_sdk(self):
        gateway = StripeGateway("sk_test")
        fake_session = MagicMock(id="cs_live_1", url="https://checkout.stripe.com/c/cs_live_1")

        with patch("stripe.checkout.Session.create_async", new_callable=AsyncMock, return_value=fake_session) as create:
            result = await gateway.create_checkout_session(session_request())

        assert result.session_id == "cs_live_1"
        assert result.url == "https://checkout.stripe.com/c/cs_live_1"
        assert create.await_args.kwargs["customer"] == "cus_1"

    async def test_checkout_without_url_fails(self):
        gateway = StripeGateway("sk_test")

        with patch(
            "stripe.checkout.Session.create_async", new_callable=AsyncMock, return_value=MagicMock(id="cs_1", url=None)
        ):
            with pytest.raises(PaymentGatewayError):
                await gateway.create_checkout_session(session_request())

    async def test_stripe_error_becomes_gateway_error(self):
        gateway = StripeGateway("sk_test")

        with patch(
            "stripe.Refund.create_async",
            new_callable=AsyncMock,
            side_effect=stripe.InvalidRequestError("charge already refunded", param="payment_intent"),
        ):
            with pytest.raises(PaymentGatewayError):
                await gateway.create_refund("pi_1")

    async def test_timeout_becomes_gateway_error(self):
        gateway = StripeGateway("sk_test", timeout_seconds=0.01)

        async def slow(**kwargs):
            await asyncio.sleep(1)

        with patch("stripe.Customer.create_async", side_effect=slow):
            with pytest.raises(PaymentGatewayError, match="timed out"):
                await gateway.create_customer("a@b.test", "Acme", {"tenantId": "t-1"})

    async def test_refund_passes_metadata(self):
        gateway = StripeGateway("sk_test")
        fake_refund = MagicMock(id="re_1", amount=30000, status="succeeded")

        with patch("stripe.Refund.create_async", new_callable=AsyncMock, return_value=fake_refund) as create:
            result = await gateway.create_refund("pi_1", metadata={"licenseId": "lic-1"})

        assert result.refund_id == "re_1"
        assert result.amount_cents == 30000
        assert create.await_args.kwargs == {
            "payment_intent": "pi_1",
            "reason": "requested_by_customer",
            "metadata": {"licenseId": "lic-1"},
        }

    def test_construct_event_delegates_to_stripe(self):
        gateway = StripeGateway("sk_test", webhook_secret="whsec_1")
        event = {"id": "evt_1", "type": "charge.refunded", "data": {"object": {}}}

        with patch("stripe.Webhook.construct_event", return_value=event) as construct:
            assert gateway.construct_event(b"{}", "t=1,v1=abc") == event

        construct.assert_called_once_with(b"{}", "t=1,v1=abc", "whsec_1")
