"""
Paysera redirect payments.

The outbound request is a urlencoded parameter set, base64-encoded with the
URL-safe substitutions Paysera expects, and signed with md5(data + password).
Callbacks carry the same encoding in `data` and the signature in `ss1`.
"""
import base64
import binascii
import hashlib
import hmac
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode, parse_qsl, quote
import structlog

from donation_ledger.providers.base import (
    ProviderAdapter,
    DonationIntent,
    OutboundOrder,
    InboundNotification,
    InboundConfirmation,
    to_minor_units,
)

logger = structlog.get_logger(__name__)

PAYSERA_PAY_URL = "https://www.paysera.com/pay/"
PAYSERA_API_VERSION = "1.6"


def encode_paysera_data(params: Dict[str, Any]) -> str:
    encoded = base64.b64encode(urlencode(params).encode("utf-8")).decode("ascii")
    return encoded.replace("+", "-").replace("/", "_")


def decode_paysera_data(data: str) -> Dict[str, str]:
    raw = data.replace("-", "+").replace("_", "/")
    # Paysera may strip padding
    raw += "=" * (-len(raw) % 4)
    decoded = base64.b64decode(raw, validate=True).decode("utf-8")
    return dict(parse_qsl(decoded, keep_blank_values=True))


class PayseraAdapter(ProviderAdapter):
    name = "paysera"
    ledger_provider = "paysera"
    requires_email = True
    requires_return_urls = True

    def validate_settings(self):
        self._require(
            paysera_project_id=self.settings.paysera_project_id,
            paysera_sign_password=self.settings.paysera_sign_password,
        )

    @property
    def currency(self) -> str:
        return self.settings.paysera_currency

    @property
    def callback_url(self) -> str:
        return f"{self.settings.public_base_url.rstrip('/')}/payments/paysera/callback"

    async def authenticate(self) -> str:
        # Paysera has no token exchange; requests are signed with the project password
        return self.settings.paysera_sign_password

    def build_outbound_request(self, intent: DonationIntent) -> Dict[str, Any]:
        params = {
            "projectid": self.settings.paysera_project_id,
            "orderid": intent.order_ref,
            "amount": str(to_minor_units(intent.amount)),
            "currency": intent.currency,
            "accepturl": intent.success_url,
            "cancelurl": intent.cancel_url,
            "callbackurl": self.callback_url,
            "test": "1" if self.settings.paysera_test else "0",
            "version": PAYSERA_API_VERSION,
        }
        if intent.email:
            params["p_email"] = intent.email[:255]
        return params

    def sign_outbound(self, payload: str, secret: str) -> Optional[str]:
        return hashlib.md5((payload + secret).encode("utf-8")).hexdigest()

    async def create_order(self, intent: DonationIntent) -> OutboundOrder:
        secret = await self.authenticate()
        data = encode_paysera_data(self.build_outbound_request(intent))
        sign = self.sign_outbound(data, secret)

        logger.info("Paysera payment request signed", order_ref=intent.order_ref, test=self.settings.paysera_test)
        return OutboundOrder(redirect_url=f"{PAYSERA_PAY_URL}?data={quote(data, safe='')}&sign={sign}")

    async def verify_inbound_signature(self, notification: InboundNotification) -> bool:
        data = notification.query_params.get("data")
        ss1 = notification.query_params.get("ss1")
        if not data or not ss1:
            return False

        expected = self.sign_outbound(data, self.settings.paysera_sign_password)
        return hmac.compare_digest(expected.encode("utf-8"), ss1.lower().encode("utf-8"))

    def decode_inbound_payload(self, notification: InboundNotification) -> InboundConfirmation:
        try:
            params = decode_paysera_data(notification.query_params.get("data", ""))
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueError(f"Undecodable Paysera data: {e}")

        amount = None
        if params.get("amount", "").isdigit():
            amount = Decimal(params["amount"]) / 100

        status = params.get("status", "")
        return InboundConfirmation(
            order_ref=params.get("orderid") or None,
            status=status,
            completed=status == "1",
            amount=amount,
            currency=params.get("currency") or None,
            raw=params,
        )
