"""
PayPal adapters: the REST orders/capture flow and Instant Payment Notifications
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl
import structlog

from donation_ledger.core.exceptions import ProviderError
from donation_ledger.providers.base import (
    ProviderAdapter,
    DonationIntent,
    OutboundOrder,
    InboundNotification,
    InboundConfirmation,
    format_major_units,
)

logger = structlog.get_logger(__name__)


def _parse_amount(value: str) -> Optional[Decimal]:
    try:
        return Decimal(value)
    except InvalidOperation:
        logger.warning("Unparseable PayPal amount", value=value)
        return None


def _error_message(response) -> str:
    """Best-effort human message from a PayPal error body"""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    return data.get("message") or data.get("error_description") or data.get("name") or "Unknown error"


class PayPalOrdersAdapter(ProviderAdapter):
    """Create-then-capture flow used by the PayPal JS SDK"""

    name = "paypal"
    ledger_provider = "paypal"

    def validate_settings(self):
        self._require(
            paypal_client_id=self.settings.paypal_client_id,
            paypal_client_secret=self.settings.paypal_client_secret,
        )

    @property
    def currency(self) -> str:
        return self.settings.paypal_currency

    @property
    def base_url(self) -> str:
        return self.settings.paypal_api_base

    async def authenticate(self) -> str:
        """Exchange client credentials for a short-lived access token"""
        response = await self._send(
            "authenticate",
            "POST",
            f"{self.base_url}/v1/oauth2/token",
            auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        if response.status_code != 200:
            logger.error("PayPal authentication failed", status_code=response.status_code)
            raise ProviderError(
                f"PayPal authentication failed: {_error_message(response)}",
                provider=self.name,
            )

        access_token = response.json().get("access_token")
        if not access_token:
            raise ProviderError("PayPal authentication returned no access token", provider=self.name)
        return access_token

    def build_outbound_request(self, intent: DonationIntent) -> Dict[str, Any]:
        return {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {
                        "currency_code": intent.currency,
                        "value": format_major_units(intent.amount),
                    },
                    "description": intent.description,
                    "custom_id": intent.order_ref,
                    "invoice_id": intent.order_ref,
                }
            ],
            "application_context": {
                "shipping_preference": "NO_SHIPPING",
            },
        }

    async def create_order(self, intent: DonationIntent) -> OutboundOrder:
        access_token = await self.authenticate()
        payload = self.build_outbound_request(intent)

        response = await self._send(
            "create_order",
            "POST",
            f"{self.base_url}/v2/checkout/orders",
            json=payload,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code not in (200, 201):
            logger.error(
                "PayPal order creation failed",
                order_ref=intent.order_ref,
                status_code=response.status_code
            )
            raise ProviderError(
                f"PayPal order creation failed: {_error_message(response)}",
                provider=self.name,
            )

        data = response.json()
        approve_url = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") in ("approve", "payer-action")),
            None
        )
        logger.info("PayPal order created", order_ref=intent.order_ref, provider_order_id=data.get("id"))
        return OutboundOrder(redirect_url=approve_url, provider_order_id=data.get("id"))

    async def capture_order(self, provider_order_id: str) -> InboundConfirmation:
        """Capture an order the donor approved"""
        access_token = await self.authenticate()

        response = await self._send(
            "capture_order",
            "POST",
            f"{self.base_url}/v2/checkout/orders/{provider_order_id}/capture",
            content=b"{}",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )
        if response.status_code not in (200, 201):
            logger.error(
                "PayPal capture failed",
                provider_order_id=provider_order_id,
                status_code=response.status_code
            )
            raise ProviderError(
                f"PayPal capture failed: {_error_message(response)}",
                provider=self.name,
            )

        data = response.json()
        status = data.get("status", "")
        order_ref = None
        amount: Optional[Decimal] = None
        currency = None
        units = data.get("purchase_units") or []
        if units:
            captures = (units[0].get("payments") or {}).get("captures") or []
            order_ref = units[0].get("custom_id") or (captures[0].get("custom_id") if captures else None)
            captured = (captures[0].get("amount") if captures else None) or {}
            if captured.get("value"):
                amount = _parse_amount(captured["value"])
                currency = captured.get("currency_code")

        return InboundConfirmation(
            order_ref=order_ref,
            status=status,
            completed=status == "COMPLETED",
            provider_order_id=provider_order_id,
            amount=amount,
            currency=currency,
            raw=data,
        )

    async def generate_client_token(self) -> str:
        """Client token for the PayPal JS SDK card fields"""
        access_token = await self.authenticate()

        response = await self._send(
            "generate_client_token",
            "POST",
            f"{self.base_url}/v1/identity/generate-token",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )
        if response.status_code != 200:
            raise ProviderError(
                f"PayPal client token request failed: {_error_message(response)}",
                provider=self.name,
            )

        client_token = response.json().get("client_token")
        if not client_token:
            raise ProviderError("PayPal returned no client token", provider=self.name)
        return client_token


class PayPalIPNAdapter(ProviderAdapter):
    """Inbound half of PayPal: Instant Payment Notifications"""

    name = "paypal_ipn"
    ledger_provider = "paypal"

    def validate_settings(self):
        self._require(paypal_receiver_email=self.settings.paypal_receiver_email)

    @property
    def currency(self) -> str:
        return self.settings.paypal_currency

    async def verify_inbound_signature(self, notification: InboundNotification) -> bool:
        """Post the message back to PayPal verbatim and expect VERIFIED"""
        response = await self._send(
            "verify_ipn",
            "POST",
            self.settings.paypal_ipn_url,
            content=b"cmd=_notify-validate&" + notification.body,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "User-Agent": "donation-ledger-ipn",
            },
        )
        return response.status_code == 200 and response.text.strip() == "VERIFIED"

    def decode_inbound_payload(self, notification: InboundNotification) -> InboundConfirmation:
        fields = dict(parse_qsl(notification.body.decode("utf-8", errors="replace"), keep_blank_values=True))
        status = fields.get("payment_status", "")

        amount = _parse_amount(fields["mc_gross"]) if fields.get("mc_gross") else None

        return InboundConfirmation(
            order_ref=fields.get("custom") or None,
            status=status,
            completed=status == "Completed",
            amount=amount,
            currency=fields.get("mc_currency") or None,
            recipient=fields.get("receiver_email") or fields.get("business") or None,
            raw=fields,
        )

    def accepts_recipient(self, confirmation: InboundConfirmation) -> bool:
        expected = self.settings.paypal_receiver_email.strip().lower()
        return bool(confirmation.recipient) and confirmation.recipient.strip().lower() == expected
