# imprints/services/stripe_gateway.py
# Thin async wrapper around the Stripe client: refunds and payment lookups.
# Never raises to callers; failures come back as error strings.
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import stripe
from pydantic import BaseModel

from imprints.core.config import settings

logger = logging.getLogger(__name__)

PAYMENT_INTENT_PREFIX = "pi_"
CHECKOUT_SESSION_PREFIX = "cs_"


class RefundResult(BaseModel):
    success: bool
    refund_id: Optional[str] = None
    amount: Optional[Decimal] = None
    error: Optional[str] = None


class ResolvedPaymentIntent(BaseModel):
    payment_intent_id: Optional[str] = None
    is_paid: bool = False
    error: Optional[str] = None


def to_minor_units(amount) -> int:
    """Pounds to pence."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def _field(obj: Any, name: str):
    # Stripe objects are dicts with attribute access; test doubles may be either
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


class StripeGateway:
    """
    Payment gateway adapter.

    The Stripe client is created lazily from STRIPE_SECRET_KEY unless one is
    passed in (tests pass a double exposing refunds / payment_intents /
    checkout.sessions with *_async methods).
    """

    def __init__(self, client: Optional[Any] = None, api_key: Optional[str] = None):
        self._client = client
        self._api_key = api_key

    @property
    def client(self):
        if self._client is None:
            key = self._api_key or settings.STRIPE_SECRET_KEY
            if not key:
                raise RuntimeError("STRIPE_SECRET_KEY is not configured")
            self._client = stripe.StripeClient(key)
        return self._client

    async def create_refund(
        self,
        payment_intent_id: str,
        reason: str = "requested_by_customer",
        amount=None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        """
        Refunds a payment intent. amount is in pounds; omit it for a full refund.
        idempotency_key makes retries of the same refund safe.
        """
        try:
            params: dict[str, Any] = {"payment_intent": payment_intent_id, "reason": reason}
            if amount is not None:
                params["amount"] = to_minor_units(amount)
            options = {"idempotency_key": f"refund_{idempotency_key}"} if idempotency_key else {}

            refund = await self.client.refunds.create_async(params=params, options=options)

            logger.info(f"Stripe refund {_field(refund, 'id')} created for {payment_intent_id}")
            return RefundResult(
                success=True,
                refund_id=_field(refund, "id"),
                amount=from_minor_units(_field(refund, "amount")),
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund error for {payment_intent_id}: {e}")
            return RefundResult(success=False, error=e.user_message or str(e))
        except Exception as e:
            logger.error(f"Refund failed for {payment_intent_id}: {e}", exc_info=True)
            return RefundResult(success=False, error=str(e) or "Unknown error creating refund")

    async def get_payment_intent(self, payment_intent_id: str):
        try:
            return await self.client.payment_intents.retrieve_async(payment_intent_id)
        except Exception as e:
            logger.error(f"Error retrieving payment intent {payment_intent_id}: {e}")
            return None

    async def get_checkout_session(self, session_id: str):
        try:
            return await self.client.checkout.sessions.retrieve_async(session_id)
        except Exception as e:
            logger.error(f"Error retrieving checkout session {session_id}: {e}")
            return None

    async def resolve_payment_intent_id(self, payment_id: str) -> ResolvedPaymentIntent:
        """
        Resolves a stored Stripe reference to a payment intent id.

        Older payments stored the checkout session id instead of the payment
        intent id, so both shapes are accepted.
        """
        try:
            if payment_id.startswith(PAYMENT_INTENT_PREFIX):
                intent = await self.client.payment_intents.retrieve_async(payment_id)
                return ResolvedPaymentIntent(
                    payment_intent_id=payment_id,
                    is_paid=_field(intent, "status") == "succeeded",
                )

            if payment_id.startswith(CHECKOUT_SESSION_PREFIX):
                session = await self.client.checkout.sessions.retrieve_async(payment_id)
                embedded = _field(session, "payment_intent")
                # either a bare id or an expanded PaymentIntent
                intent_id = embedded if isinstance(embedded, str) else (_field(embedded, "id") if embedded else None)
                if not intent_id:
                    return ResolvedPaymentIntent(error="Checkout session has no payment intent attached")
                return ResolvedPaymentIntent(
                    payment_intent_id=intent_id,
                    is_paid=_field(session, "payment_status") == "paid",
                )

            return ResolvedPaymentIntent(error=f"Unknown payment ID format: {payment_id}")
        except Exception as e:
            logger.error(f"Error resolving payment intent for {payment_id}: {e}")
            return ResolvedPaymentIntent(error=str(e) or "Unknown error resolving payment")
