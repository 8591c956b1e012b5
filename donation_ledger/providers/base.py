"""
Payment provider adapter interface.

Adapters shape outbound payment requests and validate inbound confirmations.
They never touch the ledger store.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
import httpx
import structlog

from donation_ledger.core.config import Settings
from donation_ledger.core.exceptions import ConfigurationError, ProviderUnavailableError
from donation_ledger.middleware.metrics import provider_requests_total

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount to integer cents"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_major_units(amount: Decimal) -> str:
    """Format a major-unit amount with exactly two decimals, e.g. "20.00" """
    return str(Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP))


@dataclass
class DonationIntent:
    """Everything a provider needs to create a payment for one donation"""
    order_ref: str
    category_id: str
    amount: Decimal
    currency: str
    donor_name: str
    email: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    description: str = "Donation"


@dataclass
class OutboundOrder:
    """Public artifact handed back to the caller"""
    redirect_url: Optional[str] = None
    provider_order_id: Optional[str] = None


@dataclass
class InboundNotification:
    """Raw inbound confirmation exactly as received over HTTP"""
    body: bytes = b""
    query_params: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


@dataclass
class InboundConfirmation:
    """Decoded provider notification"""
    order_ref: Optional[str]
    status: str
    completed: bool
    provider_order_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    # Account the payment was made to, where the provider reports it
    recipient: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class ProviderAdapter:
    """Base class for payment provider adapters"""

    name: str = ""
    # Provider recorded on pending rows and donations
    ledger_provider: str = ""
    requires_email: bool = False
    requires_return_urls: bool = False

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.timeout = httpx.Timeout(
            settings.provider_timeout_seconds,
            connect=settings.provider_connect_timeout_seconds
        )
        self._transport = transport
        self.validate_settings()

    @property
    def currency(self) -> str:
        return "EUR"

    def validate_settings(self):
        """Raise ConfigurationError when a required credential is missing"""
        pass

    def _require(self, **values: Any):
        missing = [name.upper() for name, value in values.items() if not value]
        if missing:
            logger.error("Payment provider is not configured", provider=self.name, missing=missing)
            raise ConfigurationError(f"{self.name} is not configured: missing {', '.join(missing)}")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _send(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send one request to the provider.

        Timeouts, transport failures and 5xx answers raise
        ProviderUnavailableError; any other response is returned for the
        adapter to interpret.
        """
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException:
            provider_requests_total.labels(provider=self.name, operation=operation, status="timeout").inc()
            logger.error("Timeout calling payment provider", provider=self.name, operation=operation)
            raise ProviderUnavailableError(f"{self.name} request timed out", status_code=504, provider=self.name)
        except httpx.HTTPError as e:
            provider_requests_total.labels(provider=self.name, operation=operation, status="unreachable").inc()
            logger.error("Payment provider unreachable",
                         provider=self.name,
                         operation=operation,
                         error_type=type(e).__name__)
            raise ProviderUnavailableError(f"{self.name} is unavailable", provider=self.name)

        provider_requests_total.labels(
            provider=self.name, operation=operation, status=str(response.status_code)
        ).inc()
        if response.status_code >= 500:
            logger.error("Payment provider error", provider=self.name, operation=operation, status_code=response.status_code)
            raise ProviderUnavailableError(f"{self.name} is unavailable", provider=self.name)
        return response

    async def authenticate(self) -> str:
        raise NotImplementedError

    def build_outbound_request(self, intent: DonationIntent) -> Dict[str, Any]:
        raise NotImplementedError

    def sign_outbound(self, payload: Any, secret: str) -> Optional[str]:
        """Sign an outbound payload; providers without request signing return None"""
        return None

    async def create_order(self, intent: DonationIntent) -> OutboundOrder:
        raise NotImplementedError

    async def verify_inbound_signature(self, notification: InboundNotification) -> bool:
        raise NotImplementedError

    def decode_inbound_payload(self, notification: InboundNotification) -> InboundConfirmation:
        raise NotImplementedError

    def accepts_recipient(self, confirmation: InboundConfirmation) -> bool:
        """Whether the payment was made to this merchant's account"""
        return True
