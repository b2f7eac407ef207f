"""
Payment gateway (Stripe)

The checkout core only needs two calls: create a PaymentIntent for an amount
in minor units, and read an intent's status back. The Stripe SDK is
synchronous, so each call runs in a worker thread under a timeout.

Stripe failures and timeouts surface as UpstreamUnavailableError; a
non-succeeded intent status is NOT an error here, the caller decides.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import stripe

from storefront.core.exceptions import UpstreamUnavailableError

logger = logging.getLogger(__name__)

INTENT_SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: Optional[str]
    status: str


class PaymentGateway(Protocol):
    async def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: Dict[str, str],
    ) -> PaymentIntent:
        ...

    async def retrieve_intent(self, payment_intent_id: str) -> PaymentIntent:
        ...


class StripePaymentGateway:
    """PaymentGateway backed by the Stripe SDK."""

    service = "stripe"

    def __init__(self, api_key: str, timeout: float = 15.0):
        self.api_key = api_key
        self.timeout = timeout
        if api_key:
            stripe.api_key = api_key

    async def _call(self, operation: str, fn, *args, **kwargs) -> Any:
        if not self.api_key:
            raise UpstreamUnavailableError("Payment provider not configured", service=self.service)

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Stripe %s timed out after %.1fs", operation, self.timeout)
            raise UpstreamUnavailableError("Payment provider timed out", service=self.service)
        except stripe.StripeError as e:
            logger.error("Stripe %s failed: %s", operation, e)
            raise UpstreamUnavailableError("Payment provider error", service=self.service)

    async def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: Dict[str, str],
    ) -> PaymentIntent:
        intent = await self._call(
            "create_intent",
            stripe.PaymentIntent.create,
            amount=amount_minor,
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
        )
        return PaymentIntent(id=intent.id, client_secret=intent.client_secret, status=intent.status)

    async def retrieve_intent(self, payment_intent_id: str) -> PaymentIntent:
        intent = await self._call(
            "retrieve_intent",
            stripe.PaymentIntent.retrieve,
            payment_intent_id,
        )
        return PaymentIntent(id=intent.id, client_secret=intent.client_secret, status=intent.status)
