"""
Stripe Checkout sessions and signed webhooks
"""
import asyncio
import json
from decimal import Decimal
from functools import partial
from typing import Any, Dict
import stripe
import structlog

from donation_ledger.core.exceptions import ProviderError, ProviderUnavailableError
from donation_ledger.middleware.metrics import provider_requests_total
from donation_ledger.providers.base import (
    ProviderAdapter,
    DonationIntent,
    OutboundOrder,
    InboundNotification,
    InboundConfirmation,
    to_minor_units,
)

logger = structlog.get_logger(__name__)

COMPLETED_EVENTS = ("checkout.session.completed", "checkout.session.async_payment_succeeded")


class StripeCheckoutAdapter(ProviderAdapter):
    name = "stripe"
    ledger_provider = "stripe"
    requires_return_urls = True

    _sdk_client = None

    def validate_settings(self):
        self._require(
            stripe_secret_key=self.settings.stripe_secret_key,
            stripe_webhook_secret=self.settings.stripe_webhook_secret,
        )

    @property
    def currency(self) -> str:
        return self.settings.stripe_currency.upper()

    def _stripe_client(self) -> stripe.StripeClient:
        """SDK client bounded by the same timeouts as the other providers"""
        if self._sdk_client is None:
            self._sdk_client = stripe.StripeClient(
                self.settings.stripe_secret_key,
                http_client=stripe.RequestsClient(
                    timeout=(self.settings.provider_connect_timeout_seconds, self.settings.provider_timeout_seconds)
                ),
                max_network_retries=self.settings.stripe_max_network_retries,
            )
        return self._sdk_client

    async def authenticate(self) -> str:
        # Stripe authenticates every request with the secret key itself
        return self.settings.stripe_secret_key

    def build_outbound_request(self, intent: DonationIntent) -> Dict[str, Any]:
        params = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": intent.currency.lower(),
                        "unit_amount": to_minor_units(intent.amount),
                        "product_data": {"name": intent.description},
                    },
                    "quantity": 1,
                }
            ],
            "success_url": intent.success_url,
            "cancel_url": intent.cancel_url,
            "client_reference_id": intent.order_ref,
            "metadata": {
                "order_ref": intent.order_ref,
                "category_id": intent.category_id,
            },
        }
        if intent.email:
            params["customer_email"] = intent.email
        return params

    async def create_order(self, intent: DonationIntent) -> OutboundOrder:
        await self.authenticate()
        params = self.build_outbound_request(intent)
        client = self._stripe_client()

        # The stripe SDK is blocking
        loop = asyncio.get_running_loop()
        try:
            session = await loop.run_in_executor(
                None,
                partial(client.checkout.sessions.create, params=params)
            )
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            provider_requests_total.labels(provider=self.name, operation="create_order", status="unreachable").inc()
            logger.error("Stripe unavailable", order_ref=intent.order_ref, error_type=type(e).__name__)
            raise ProviderUnavailableError(f"{self.name} is unavailable", provider=self.name)
        except stripe.StripeError as e:
            if (e.http_status or 0) >= 500:
                provider_requests_total.labels(provider=self.name, operation="create_order", status=str(e.http_status)).inc()
                logger.error("Stripe server error", order_ref=intent.order_ref, status_code=e.http_status)
                raise ProviderUnavailableError(f"{self.name} is unavailable", provider=self.name)

            provider_requests_total.labels(provider=self.name, operation="create_order", status="error").inc()
            logger.error("Stripe checkout session creation failed", order_ref=intent.order_ref, error=str(e))
            raise ProviderError(
                f"Stripe checkout failed: {e.user_message or 'request rejected'}",
                provider=self.name,
            )

        provider_requests_total.labels(provider=self.name, operation="create_order", status="200").inc()
        logger.info("Stripe checkout session created", order_ref=intent.order_ref, session_id=session.id)
        return OutboundOrder(redirect_url=session.url, provider_order_id=session.id)

    async def verify_inbound_signature(self, notification: InboundNotification) -> bool:
        signature = notification.header("stripe-signature")
        if not signature:
            return False
        try:
            stripe.Webhook.construct_event(notification.body, signature, self.settings.stripe_webhook_secret)
        except stripe.SignatureVerificationError:
            return False
        except ValueError:
            # Body is not valid JSON
            return False
        return True

    def decode_inbound_payload(self, notification: InboundNotification) -> InboundConfirmation:
        event = json.loads(notification.body.decode("utf-8"))
        event_type = str(event.get("type") or "")
        session = (event.get("data") or {}).get("object") or {}

        payment_status = session.get("payment_status", "")
        completed = event_type in COMPLETED_EVENTS and payment_status == "paid"

        amount = None
        if isinstance(session.get("amount_total"), int):
            amount = Decimal(session["amount_total"]) / 100

        return InboundConfirmation(
            order_ref=session.get("client_reference_id") or (session.get("metadata") or {}).get("order_ref"),
            status=f"{event_type}:{payment_status}" if payment_status else event_type,
            completed=completed,
            provider_order_id=session.get("id"),
            amount=amount,
            currency=session.get("currency"),
            raw=event,
        )
