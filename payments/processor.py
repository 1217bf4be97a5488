"""
Payment processor adapters.

Every processor offers ``open_intent``, ``query_intent`` and ``refund``.
``StripePaymentProcessor`` talks to Stripe; ``MockPaymentProcessor`` keeps
intents in memory so the whole booking flow can run locally.
"""
import itertools
import logging
import threading
from typing import Dict

import stripe

from booking_schemas import IntentStatus, PaymentIntent, RefundResult
from config import Config
from errors import InternalError, ProcessorUnavailable

logger = logging.getLogger(__name__)


def _intent_status(intent) -> str:
    if intent.status == "succeeded":
        return "succeeded"
    if intent.status == "canceled":
        return "failed"
    if intent.status == "requires_payment_method" and getattr(intent, "last_payment_error", None):
        return "failed"
    return "pending"


class StripePaymentProcessor:
    def __init__(self, api_key: str = None, timeout: float = None):
        stripe.api_key = api_key or Config.STRIPE_API_KEY
        # retries are done by the payment coordinator
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout or Config.PROCESSOR_TIMEOUT_SECONDS)

    def open_intent(self, amount_minor: int, currency: str, metadata: dict) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_minor,
                currency=currency,
                metadata=metadata,
                description=f"Car booking {metadata.get('reservation_id', '')}".strip(),
            )
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise ProcessorUnavailable(f"Payment processor unavailable: {e}")
        except stripe.StripeError as e:
            raise InternalError(f"Payment processor rejected intent: {e}")
        return PaymentIntent(ref=intent.id, client_secret=intent.client_secret,
                             amount_minor=amount_minor, currency=currency)

    def query_intent(self, external_ref: str) -> IntentStatus:
        try:
            intent = stripe.PaymentIntent.retrieve(external_ref)
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise ProcessorUnavailable(f"Payment processor unavailable: {e}")
        except stripe.StripeError as e:
            raise InternalError(f"Could not fetch payment intent {external_ref}: {e}")
        return IntentStatus(ref=intent.id, status=_intent_status(intent), metadata=dict(intent.metadata or {}))

    def refund(self, external_ref: str) -> RefundResult:
        try:
            refund = stripe.Refund.create(payment_intent=external_ref)
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise ProcessorUnavailable(f"Payment processor unavailable: {e}")
        except stripe.StripeError as e:
            logger.warning(f"Refund declined for {external_ref}: {e}")
            return RefundResult(succeeded=False, raw={"error": str(e)})
        return RefundResult(succeeded=refund.status == "succeeded", refund_ref=refund.id,
                            raw={"status": refund.status})


class MockPaymentProcessor:
    """
    In-memory processor: intents stay pending until ``settle`` marks them
    succeeded or failed. ``fail_next_calls`` makes the next N calls raise
    ProcessorUnavailable; ``decline_refunds`` makes refunds fail.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.intents: Dict[str, dict] = {}
        self.refunds: Dict[str, str] = {}
        self.fail_next_calls = 0
        self.decline_refunds = False
        self.calls = 0

    def _tick(self):
        with self._lock:
            self.calls += 1
            if self.fail_next_calls > 0:
                self.fail_next_calls -= 1
                raise ProcessorUnavailable("Mock processor unavailable")

    def open_intent(self, amount_minor: int, currency: str, metadata: dict) -> PaymentIntent:
        self._tick()
        with self._lock:
            ref = f"pi_mock_{next(self._ids)}"
            self.intents[ref] = {"status": "pending", "amount": amount_minor,
                                 "currency": currency, "metadata": dict(metadata)}
        return PaymentIntent(ref=ref, client_secret=f"{ref}_secret", amount_minor=amount_minor, currency=currency)

    def settle(self, external_ref: str, outcome: str = "succeeded"):
        with self._lock:
            self.intents[external_ref]["status"] = outcome

    def query_intent(self, external_ref: str) -> IntentStatus:
        self._tick()
        with self._lock:
            intent = self.intents.get(external_ref)
            if intent is None:
                raise InternalError(f"No such payment intent: {external_ref}")
            return IntentStatus(ref=external_ref, status=intent["status"], metadata=dict(intent["metadata"]))

    def refund(self, external_ref: str) -> RefundResult:
        self._tick()
        with self._lock:
            if self.decline_refunds or self.intents.get(external_ref, {}).get("status") != "succeeded":
                return RefundResult(succeeded=False, raw={"error": "refund_declined"})
            refund_ref = f"re_mock_{next(self._ids)}"
            self.refunds[refund_ref] = external_ref
        return RefundResult(succeeded=True, refund_ref=refund_ref, raw={"status": "succeeded"})


def build_processor():
    if Config.PAYMENT_PROCESSOR == "mock":
        return MockPaymentProcessor()
    return StripePaymentProcessor()
