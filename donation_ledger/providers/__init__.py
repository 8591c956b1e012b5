from .base import (
    ProviderAdapter,
    DonationIntent,
    OutboundOrder,
    InboundNotification,
    InboundConfirmation,
    to_minor_units,
    format_major_units,
)
from .paypal import PayPalOrdersAdapter, PayPalIPNAdapter
from .paysera import PayseraAdapter
from .stripe_checkout import StripeCheckoutAdapter
from .registry import ProviderRegistry, get_provider_registry

__all__ = [
    "ProviderAdapter",
    "DonationIntent",
    "OutboundOrder",
    "InboundNotification",
    "InboundConfirmation",
    "to_minor_units",
    "format_major_units",
    "PayPalOrdersAdapter",
    "PayPalIPNAdapter",
    "PayseraAdapter",
    "StripeCheckoutAdapter",
    "ProviderRegistry",
    "get_provider_registry",
]
