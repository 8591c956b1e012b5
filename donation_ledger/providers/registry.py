from functools import lru_cache
from typing import Dict, Optional, Type
import httpx
import structlog

from donation_ledger.core.config import Settings, get_settings
from donation_ledger.core.exceptions import ConfigurationError, DonationValidationError
from donation_ledger.providers.base import ProviderAdapter
from donation_ledger.providers.paypal import PayPalOrdersAdapter, PayPalIPNAdapter
from donation_ledger.providers.paysera import PayseraAdapter
from donation_ledger.providers.stripe_checkout import StripeCheckoutAdapter

logger = structlog.get_logger(__name__)

ADAPTERS: Dict[str, Type[ProviderAdapter]] = {
    PayPalOrdersAdapter.name: PayPalOrdersAdapter,
    PayPalIPNAdapter.name: PayPalIPNAdapter,
    PayseraAdapter.name: PayseraAdapter,
    StripeCheckoutAdapter.name: StripeCheckoutAdapter,
}


class ProviderRegistry:
    """Builds provider adapters from settings, once per provider"""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport
        self._adapters: Dict[str, ProviderAdapter] = {}

    def get(self, name: str) -> ProviderAdapter:
        """Return the adapter for name; raises ConfigurationError if credentials are missing"""
        adapter = self._adapters.get(name)
        if adapter is not None:
            return adapter

        adapter_cls = ADAPTERS.get(name)
        if adapter_cls is None:
            raise DonationValidationError(f"Unsupported payment provider: {name}")

        adapter = adapter_cls(self.settings, transport=self.transport)
        self._adapters[name] = adapter
        return adapter

    def configured_providers(self) -> Dict[str, bool]:
        """Which providers have complete credentials"""
        status = {}
        for name in ADAPTERS:
            try:
                self.get(name)
                status[name] = True
            except ConfigurationError:
                status[name] = False
        return status


@lru_cache()
def get_provider_registry() -> ProviderRegistry:
    return ProviderRegistry(get_settings())
