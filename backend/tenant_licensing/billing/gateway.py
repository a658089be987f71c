"""Payment gateway client for B2B license checkouts.

``StripeGateway`` wraps the async Stripe SDK. Every call is bounded by the
configured timeout; Stripe errors and timeouts surface as
``PaymentGatewayError``. Retry policy is left to the Stripe client.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import stripe
import structlog

from tenant_licensing.core.exceptions import PaymentGatewayError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutSessionRequest:
    amount_cents: int
    currency: str
    product_name: str
    description: str
    metadata: dict[str, str]
    success_url: str
    cancel_url: str
    customer_id: str | None = None
    customer_email: str | None = None


@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    url: str


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount_cents: int
    status: str = "succeeded"


@runtime_checkable
class PaymentGateway(Protocol):
    async def create_customer(self, email: str | None, name: str, metadata: dict[str, str]) -> str:
        """Create a gateway customer. Returns its id."""
        ...

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResult:
        ...

    async def create_refund(
        self,
        payment_intent_id: str,
        reason: str = "requested_by_customer",
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        ...


def build_license_session_params(request: CheckoutSessionRequest) -> dict:
    """Checkout session params for a B2B license: card or EU bank transfer, invoiced."""
    params = {
        "mode": "payment",
        "payment_method_types": ["card", "customer_balance"],
        "payment_method_options": {
            "customer_balance": {
                "funding_type": "bank_transfer",
                "bank_transfer": {
                    "type": "eu_bank_transfer",
                    "eu_bank_transfer": {"country": "FR"},
                },
            },
        },
        "line_items": [
            {
                "price_data": {
                    "currency": request.currency.lower(),
                    "product_data": {
                        "name": request.product_name,
                        "description": request.description,
                    },
                    "unit_amount": request.amount_cents,
                },
                "quantity": 1,
            }
        ],
        "success_url": request.success_url,
        "cancel_url": request.cancel_url,
        "metadata": request.metadata,
        "payment_intent_data": {"metadata": request.metadata},
        "invoice_creation": {
            "enabled": True,
            "invoice_data": {
                "description": f"Course License: {request.product_name}",
                "metadata": {
                    key: value
                    for key, value in request.metadata.items()
                    if key in ("type", "tenantId", "courseId")
                },
            },
        },
    }
    if request.customer_id:
        params["customer"] = request.customer_id
    elif request.customer_email:
        params["customer_email"] = request.customer_email
    return params


class StripeGateway:
    """PaymentGateway backed by the Stripe API."""

    def __init__(self, secret_key: str, webhook_secret: str = "", timeout_seconds: float = 20.0):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, coro):
        stripe.api_key = self.secret_key
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except TimeoutError as exc:
            logger.error("stripe_call_timeout", operation=operation, timeout=self.timeout_seconds)
            raise PaymentGatewayError(f"Payment gateway timed out during {operation}") from exc
        except stripe.StripeError as exc:
            logger.error("stripe_call_failed", operation=operation, error=str(exc))
            raise PaymentGatewayError(f"Payment gateway error during {operation}") from exc

    async def create_customer(self, email: str | None, name: str, metadata: dict[str, str]) -> str:
        customer = await self._call(
            "create_customer",
            stripe.Customer.create_async(email=email, name=name, metadata=metadata),
        )
        return customer.id

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResult:
        session = await self._call(
            "create_checkout_session",
            stripe.checkout.Session.create_async(**build_license_session_params(request)),
        )
        if not session.url:
            raise PaymentGatewayError("Stripe did not return a checkout URL")
        return CheckoutSessionResult(session_id=session.id, url=session.url)

    async def create_refund(
        self,
        payment_intent_id: str,
        reason: str = "requested_by_customer",
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        refund = await self._call(
            "create_refund",
            stripe.Refund.create_async(
                payment_intent=payment_intent_id,
                reason=reason,
                metadata=metadata or {},
            ),
        )
        return RefundResult(refund_id=refund.id, amount_cents=refund.amount, status=refund.status or "succeeded")

    def construct_event(self, payload: bytes, sig_header: str) -> dict:
        """Verify the webhook signature and return the event as a plain dict.

        Raises:
            ValueError: payload is not valid JSON
            stripe.SignatureVerificationError: signature mismatch
        """
        event = stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        return event.to_dict() if hasattr(event, "to_dict") else event


@dataclass
class RecordingGateway:
    """In-memory PaymentGateway for tests and local runs without Stripe."""

    checkout_url: str = "https://checkout.stripe.test/session"
    customers: list[dict] = field(default_factory=list)
    sessions: list[CheckoutSessionRequest] = field(default_factory=list)
    refunds: list[dict] = field(default_factory=list)
    fail_refunds: bool = False

    async def create_customer(self, email: str | None, name: str, metadata: dict[str, str]) -> str:
        customer_id = f"cus_test_{len(self.customers) + 1}"
        self.customers.append({"id": customer_id, "email": email, "name": name, "metadata": metadata})
        return customer_id

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSessionResult:
        self.sessions.append(request)
        session_id = f"cs_test_{len(self.sessions)}"
        return CheckoutSessionResult(session_id=session_id, url=f"{self.checkout_url}/{session_id}")

    async def create_refund(
        self,
        payment_intent_id: str,
        reason: str = "requested_by_customer",
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        if self.fail_refunds:
            raise PaymentGatewayError("Refund declined")
        refund_id = f"re_test_{len(self.refunds) + 1}"
        self.refunds.append({"id": refund_id, "payment_intent": payment_intent_id, "reason": reason, "metadata": metadata})
        return RefundResult(refund_id=refund_id, amount_cents=0)
