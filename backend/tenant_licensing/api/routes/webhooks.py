"""Stripe webhook endpoint for license payments."""

import stripe
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from tenant_licensing.api.deps import get_gateway, get_orchestrator
from tenant_licensing.billing.gateway import StripeGateway
from tenant_licensing.checkout.orchestrator import CheckoutOrchestrator
from tenant_licensing.core.config import get_settings

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_gateway),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Handle Stripe webhook events with signature verification.

    Only signature problems are rejected. Everything else returns 200 so
    Stripe does not redeliver events that cannot be applied.
    """
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(status_code=503, detail="Stripe webhook endpoint is not configured")

    body = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    try:
        event = gateway.construct_event(body, sig_header)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    await orchestrator.process_webhook(event)
    return {"status": "ok"}
