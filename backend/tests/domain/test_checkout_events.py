"""Tests for checkout metadata and Stripe event decoding."""

import pytest

from tenant_licensing.domain.checkout_events import (
    ChargeRefunded,
    CheckoutMetadata,
    FlowKind,
    PaymentConfirmed,
    PaymentFailed,
    decode_event,
)
from tenant_licensing.domain.pricing import LicenseType

pytestmark = pytest.mark.unit

LICENSE_METADATA = {
    "type": "b2b_license",
    "tenantId": "tenant-1",
    "courseId": "course-1",
    "userId": "admin-1",
    "licenseType": "seats",
    "seats": "10",
}


def stripe_event(event_type: str, obj: dict, event_id: str = "evt_1") -> dict:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


# ============================================================================
# CheckoutMetadata
# ============================================================================


def test_metadata_to_stripe_is_string_only():
    metadata = CheckoutMetadata(
        flow=FlowKind.B2B_LICENSE,
        tenant_id="tenant-1",
        course_id="course-1",
        user_id="admin-1",
        license_type=LicenseType.SEATS,
        seats=10,
    )

    assert metadata.to_stripe() == LICENSE_METADATA
    assert CheckoutMetadata.from_stripe(metadata.to_stripe()) == metadata


def test_metadata_unlimited_seats_marker():
    metadata = CheckoutMetadata(flow=FlowKind.B2B_LICENSE, license_type=LicenseType.UNLIMITED)

    flat = metadata.to_stripe()
    assert flat["seats"] == "unlimited"
    assert CheckoutMetadata.from_stripe(flat).seats is None


def test_metadata_carries_renewal_license_id():
    flat = CheckoutMetadata(flow=FlowKind.B2B_LICENSE, renewal_license_id="lic-1").to_stripe()

    assert flat == {"type": "b2b_license", "renewalLicenseId": "lic-1"}
    assert CheckoutMetadata.from_stripe(flat).renewal_license_id == "lic-1"


@pytest.mark.parametrize("raw", [None, {}, {"type": "gift_card"}])
def test_metadata_unknown_flow_decodes_to_none(raw):
    assert CheckoutMetadata.from_stripe(raw) is None


def test_metadata_other_flows_are_recognised():
    assert CheckoutMetadata.from_stripe({"type": "course_purchase"}).flow is FlowKind.COURSE_PURCHASE


# ============================================================================
# decode_event
# ============================================================================


def test_decode_checkout_completed():
    event = decode_event(
        stripe_event(
            "checkout.session.completed",
            {
                "id": "cs_1",
                "payment_status": "paid",
                "payment_intent": "pi_1",
                "invoice": {"id": "in_1"},
                "customer": "cus_1",
                "metadata": LICENSE_METADATA,
            },
        )
    )

    assert isinstance(event, PaymentConfirmed)
    assert event.event_id == "evt_1"
    assert event.checkout_session_id == "cs_1"
    assert event.payment_intent_id == "pi_1"
    assert event.invoice_id == "in_1"
    assert event.customer_id == "cus_1"
    assert event.metadata.flow is FlowKind.B2B_LICENSE
    assert event.metadata.seats == 10


def test_decode_unpaid_completion_waits_for_async_payment():
    raw = {"id": "cs_1", "payment_status": "unpaid", "metadata": LICENSE_METADATA}

    assert decode_event(stripe_event("checkout.session.completed", raw)) is None
    assert isinstance(decode_event(stripe_event("checkout.session.async_payment_succeeded", raw)), PaymentConfirmed)


@pytest.mark.parametrize("event_type", ["checkout.session.async_payment_failed", "checkout.session.expired"])
def test_decode_session_failures(event_type):
    event = decode_event(stripe_event(event_type, {"id": "cs_1", "payment_intent": None, "metadata": LICENSE_METADATA}))

    assert isinstance(event, PaymentFailed)
    assert event.checkout_session_id == "cs_1"
    assert event.payment_intent_id is None


def test_decode_payment_intent_failure():
    event = decode_event(stripe_event("payment_intent.payment_failed", {"id": "pi_9", "metadata": LICENSE_METADATA}))

    assert isinstance(event, PaymentFailed)
    assert event.payment_intent_id == "pi_9"
    assert event.checkout_session_id is None


def test_decode_charge_refunded_partial():
    event = decode_event(
        stripe_event(
            "charge.refunded",
            {
                "id": "ch_1",
                "payment_intent": "pi_1",
                "amount": 90000,
                "amount_refunded": 30000,
                "refunds": {"data": [{"id": "re_1"}]},
                "metadata": {},
            },
        )
    )

    assert isinstance(event, ChargeRefunded)
    assert event.refund_id == "re_1"
    assert event.is_partial
    assert event.metadata is None


def test_decode_charge_refunded_full_without_refund_list():
    event = decode_event(
        stripe_event("charge.refunded", {"id": "ch_1", "payment_intent": "pi_1", "amount": 500, "amount_refunded": 500})
    )

    assert event.refund_id is None
    assert not event.is_partial


def test_decode_ignores_unconsumed_types():
    assert decode_event(stripe_event("customer.subscription.updated", {"id": "sub_1"})) is None
