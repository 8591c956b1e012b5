from typing import Optional
import uuid
from sqlalchemy.orm import Session
import structlog

from donation_ledger.core.circuit_breaker import get_provider_breaker, CircuitBreakerError
from donation_ledger.core.config import Settings, get_settings
from donation_ledger.core.exceptions import DonationValidationError, CategoryNotFoundError, ProviderUnavailableError
from donation_ledger.providers.base import ProviderAdapter, DonationIntent
from donation_ledger.providers.registry import ProviderRegistry
from donation_ledger.schemas.payment import InitiateDonationRequest, InitiateDonationResponse
from donation_ledger.services.ledger import LedgerService

logger = structlog.get_logger(__name__)


def clean_support_message(message: Optional[str], max_length: int) -> Optional[str]:
    if not message:
        return None
    message = message.strip()[:max_length].strip()
    return message or None


class OrderInitiator:
    """Stages a donation as pending and returns the provider launch artifact"""

    def __init__(self, db: Session, registry: ProviderRegistry, settings: Optional[Settings] = None):
        self.db = db
        self.registry = registry
        self.settings = settings or get_settings()

    def _validate(self, adapter: ProviderAdapter, request: InitiateDonationRequest):
        if request.amount is None or request.amount <= 0:
            raise DonationValidationError("Amount must be greater than zero")
        if not request.category_id or not request.category_id.strip():
            raise DonationValidationError("category_id is required")
        if not request.is_anonymous and not (request.donor_name or "").strip():
            raise DonationValidationError("donor_name is required unless the donation is anonymous")
        if adapter.requires_email and not request.email:
            raise DonationValidationError(f"email is required for {adapter.name} payments")
        if adapter.requires_return_urls and not (request.success_url and request.cancel_url):
            raise DonationValidationError(f"success_url and cancel_url are required for {adapter.name} payments")

    async def initiate(self, provider: str, request: InitiateDonationRequest) -> InitiateDonationResponse:
        adapter = self.registry.get(provider)
        self._validate(adapter, request)

        if LedgerService.get_category(self.db, request.category_id) is None:
            logger.warning("Donation for unknown category", category_id=request.category_id)
            raise CategoryNotFoundError(request.category_id)

        # Anonymous donors never reach the ledger under their real name
        donor_name = self.settings.anonymous_label if request.is_anonymous else request.donor_name.strip()
        email = str(request.email)[:self.settings.email_max_length] if request.email else None

        intent = DonationIntent(
            order_ref=str(uuid.uuid4()),
            category_id=request.category_id,
            amount=request.amount,
            currency=adapter.currency,
            donor_name=donor_name,
            email=email,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
        )

        # Provider rejections of a single request do not count as failures
        breaker = get_provider_breaker(adapter.name, expected_exceptions=(ProviderUnavailableError,))
        try:
            order = await breaker.call(adapter.create_order, intent)
        except CircuitBreakerError as e:
            logger.warning("Provider circuit open, refusing initiation", provider=adapter.name)
            raise ProviderUnavailableError(str(e), provider=adapter.name)

        LedgerService.create_pending(
            self.db,
            order_ref=intent.order_ref,
            provider=adapter.ledger_provider,
            provider_order_id=order.provider_order_id,
            category_id=intent.category_id,
            donor_name=donor_name,
            email=email,
            amount=intent.amount,
            currency=intent.currency,
            is_anonymous=request.is_anonymous,
            support_message=clean_support_message(request.support_message, self.settings.support_message_max_length),
        )

        logger.info("Donation initiated",
                    order_ref=intent.order_ref,
                    provider=adapter.name,
                    category_id=intent.category_id,
                    amount=str(intent.amount))

        return InitiateDonationResponse(
            order_ref=intent.order_ref,
            provider=adapter.name,
            redirect_url=order.redirect_url,
            provider_order_id=order.provider_order_id,
        )
