"""Stripe webhook endpoint: signature handling, idempotency and dispatch."""

import json
from unittest.mock import MagicMock, patch

import pytest
import stripe

from tenant_licensing.api.deps import get_gateway
from tenant_licensing.domain.licenses import LicenseStatus

from tests.conftest import COURSE_ID, TENANT_ID

pytestmark = pytest.mark.integration

URL = "/api/webhooks/stripe"


class FakeVerifier:
    """Stands in for StripeGateway.construct_event."""

    def __init__(self):
        self.error: Exception | None = None

    def construct_event(self, payload: bytes, sig_header: str) -> dict:
        if self.error is not None:
            raise self.error
        return json.loads(payload)


@pytest.fixture
def verifier(app) -> FakeVerifier:
    fake = FakeVerifier()
    app.dependency_overrides[get_gateway] = lambda: fake
    return fake


@pytest.fixture
def webhook_secret():
    settings = MagicMock(stripe_webhook_secret="whsec_test")
    with patch("tenant_licensing.api.routes.webhooks.get_settings", return_value=settings):
        yield settings


def completed(session_id: str, event_id: str = "evt_1") -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_status": "paid",
                "payment_intent": "pi_hook",
                "metadata": {"type": "b2b_license", "tenantId": TENANT_ID, "courseId": COURSE_ID},
            }
        },
    }


async def post_event(client, event: dict, signature: str | None = "t=1,v1=sig"):
    headers = {"stripe-signature": signature} if signature else {}
    return await client.post(URL, content=json.dumps(event), headers=headers)


async def test_returns_503_when_secret_missing(client, verifier):
    with patch(
        "tenant_licensing.api.routes.webhooks.get_settings",
        return_value=MagicMock(stripe_webhook_secret=""),
    ):
        response = await post_event(client, completed("cs_1"))

    assert response.status_code == 503


async def test_rejects_missing_signature(client, verifier, webhook_secret):
    response = await post_event(client, completed("cs_1"), signature=None)

    assert response.status_code == 400
    assert response.json()["detail"] == "Missing stripe-signature header"


async def test_rejects_invalid_signature(client, verifier, webhook_secret):
    verifier.error = stripe.SignatureVerificationError("bad signature", "t=1,v1=sig")

    response = await post_event(client, completed("cs_1"))

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid signature"


async def test_rejects_invalid_payload(client, verifier, webhook_secret):
    verifier.error = ValueError("not json")

    response = await post_event(client, completed("cs_1"))

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid payload"


async def test_confirms_license_once(client, verifier, webhook_secret, orchestrator, requester, store, notifier):
    checkout = await orchestrator.create_license_checkout(requester, COURSE_ID, "seats", 5)

    first = await post_event(client, completed(checkout.session_id))
    duplicate = await post_event(client, completed(checkout.session_id))

    assert first.status_code == 200
    assert duplicate.status_code == 200
    assert first.json() == {"status": "ok"}
    record = await store.get(checkout.license.id)
    assert record.status is LicenseStatus.COMPLETED
    assert record.stripe_payment_intent_id == "pi_hook"
    assert len(notifier.sent) == 1


async def test_unknown_session_still_acknowledged(client, verifier, webhook_secret):
    response = await post_event(client, completed("cs_unknown"))

    assert response.status_code == 200


async def test_unhandled_event_type_acknowledged(client, verifier, webhook_secret, events):
    event = {"id": "evt_x", "type": "invoice.paid", "data": {"object": {"id": "in_1"}}}

    response = await post_event(client, event)

    assert response.status_code == 200
    assert "evt_x" in events.claimed
