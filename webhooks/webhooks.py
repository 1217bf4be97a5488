import json
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Request, Header, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from booking_schemas import PaymentNotification
from config import Config

logger = logging.getLogger(__name__)

router = APIRouter()

EVENT_OUTCOMES = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
}


def notification_from_event(event) -> Optional[PaymentNotification]:
    """Map a Stripe event onto a payment notification; None for event types we ignore."""
    outcome = EVENT_OUTCOMES.get(event["type"])
    if outcome is None:
        return None
    intent = event["data"]["object"]
    metadata = intent.get("metadata") or {}
    return PaymentNotification(
        external_ref=intent["id"],
        outcome=outcome,
        reservation_id=metadata.get("reservation_id"),
    )


@router.post("/api/payments/webhook", tags=["Payments"])
async def stripe_webhook(request: Request, stripe_signature: str = Header(None)):
    payload = await request.body()
    sig_header = stripe_signature or request.headers.get("stripe-signature")
    secret = Config.STRIPE_WEBHOOK_SECRET
    if not secret:
        if Config.PAYMENT_PROCESSOR != "mock":
            logger.error("STRIPE_WEBHOOK_SECRET is not set, rejecting unsigned webhook")
            raise HTTPException(status_code=503, detail="Webhook signing secret not configured")
        # unsigned events are only accepted with the mock processor
        try:
            event = json.loads(payload)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")
    else:
        try:
            event = stripe.Webhook.construct_event(payload, sig_header, secret)
        except stripe.SignatureVerificationError:
            raise HTTPException(status_code=400, detail="Invalid Stripe signature")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")

    notification = notification_from_event(event)
    if notification is None:
        logger.info(f"Unhandled event type: {event['type']}")
        return JSONResponse(content={"received": True})

    service = request.app.state.service
    result = await run_in_threadpool(service.notify_payment, notification)
    if not result.success and result.error.kind in ("InternalError", "ProcessorUnavailable"):
        # non-2xx makes the processor redeliver
        return JSONResponse(status_code=500, content={"received": False})
    return JSONResponse(content={"received": True, "applied": result.data is not None})
