"""
Confirmation reconciler.

Turns a provider confirmation into a confirmed donation exactly once. Both
transports (asynchronous notifications and the synchronous PayPal capture)
go through `settle`, which relies on the ledger's atomic claim, so two
confirmations for one order can never credit a category twice.

`reconcile` never raises: the caller is an untrusted server-to-server
channel and always gets the provider's acknowledgement. Outcomes are only
logged and counted.
"""
from enum import Enum
from typing import Optional
from sqlalchemy.orm import Session
import structlog

from donation_ledger.cache.redis import RedisCache
from donation_ledger.core.exceptions import ConfigurationError, ProviderError, LedgerError, PaymentMismatchError
from donation_ledger.kafka.producer import KafkaProducer
from donation_ledger.middleware.metrics import reconciliation_outcomes_total
from donation_ledger.middleware.tracing import get_tracer
from donation_ledger.providers.base import InboundNotification, InboundConfirmation
from donation_ledger.providers.registry import ProviderRegistry
from donation_ledger.services.ledger import LedgerService

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


class ReconcileOutcome(str, Enum):
    CONFIRMED = "confirmed"
    DUPLICATE = "duplicate"  # already reconciled or never initiated
    IGNORED = "ignored"  # provider reported a non-completed status
    INVALID_SIGNATURE = "invalid_signature"
    WRONG_RECIPIENT = "wrong_recipient"  # paid to an account other than ours
    AMOUNT_MISMATCH = "amount_mismatch"  # paid amount or currency differs from the donation
    UNVERIFIED = "unverified"  # verification itself could not run
    MALFORMED = "malformed"
    FAILED = "failed"  # ledger write failed and was rolled back


class ConfirmationReconciler:
    def __init__(self,
                 db: Session,
                 registry: ProviderRegistry,
                 producer: Optional[KafkaProducer] = None,
                 cache: Optional[RedisCache] = None):
        self.db = db
        self.registry = registry
        self.producer = producer
        self.cache = cache

    def _record(self, provider: str, outcome: ReconcileOutcome) -> ReconcileOutcome:
        reconciliation_outcomes_total.labels(provider=provider, outcome=outcome.value).inc()
        return outcome

    async def reconcile(self, provider: str, notification: InboundNotification) -> ReconcileOutcome:
        """Verify, decode and settle one inbound provider notification"""
        with tracer.start_as_current_span("reconcile_notification") as span:
            span.set_attribute("payment.provider", provider)
            outcome = await self._reconcile(provider, notification)
            span.set_attribute("reconcile.outcome", outcome.value)
            return self._record(provider, outcome)

    async def _reconcile(self, provider: str, notification: InboundNotification) -> ReconcileOutcome:
        try:
            adapter = self.registry.get(provider)
        except ConfigurationError as e:
            logger.error("Cannot verify notification, provider not configured", provider=provider, error=e.message)
            return ReconcileOutcome.UNVERIFIED

        try:
            verified = await adapter.verify_inbound_signature(notification)
        except ProviderError as e:
            logger.error("Notification verification failed to run", provider=provider, error=e.message)
            return ReconcileOutcome.UNVERIFIED

        if not verified:
            logger.warning("Rejected notification with invalid signature", provider=provider, security_event=True)
            return ReconcileOutcome.INVALID_SIGNATURE

        try:
            confirmation = adapter.decode_inbound_payload(notification)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Undecodable notification", provider=provider, error=str(e))
            return ReconcileOutcome.MALFORMED

        if not confirmation.completed:
            logger.info("Notification is not a completed payment",
                        provider=provider,
                        order_ref=confirmation.order_ref,
                        status=confirmation.status)
            return ReconcileOutcome.IGNORED

        if not adapter.accepts_recipient(confirmation):
            logger.warning("Rejected notification for a payment to another account",
                           provider=provider,
                           order_ref=confirmation.order_ref,
                           recipient=confirmation.recipient,
                           security_event=True)
            return ReconcileOutcome.WRONG_RECIPIENT

        if not confirmation.order_ref and not confirmation.provider_order_id:
            logger.warning("Completed notification carries no order reference", provider=provider)
            return ReconcileOutcome.MALFORMED

        return await self.settle(adapter.ledger_provider, confirmation)

    async def settle(self,
                     provider: str,
                     confirmation: InboundConfirmation,
                     by_provider_order_id: bool = False) -> ReconcileOutcome:
        """Claim the pending donation for a completed payment and confirm it"""
        order_ref = None if by_provider_order_id else confirmation.order_ref
        provider_order_id = confirmation.provider_order_id if (by_provider_order_id or not order_ref) else None

        try:
            donation = LedgerService.confirm_pending(
                self.db,
                provider=provider,
                order_ref=order_ref,
                provider_order_id=provider_order_id,
                paid_amount=confirmation.amount,
                paid_currency=confirmation.currency,
            )
        except PaymentMismatchError as e:
            logger.warning("Rejected confirmation that does not match the donation",
                           provider=provider,
                           order_ref=order_ref,
                           provider_order_id=provider_order_id,
                           error=e.message,
                           security_event=True)
            return ReconcileOutcome.AMOUNT_MISMATCH
        except LedgerError as e:
            # Acknowledged anyway; recovery depends on provider redelivery
            logger.error("Reconciliation write failed",
                         provider=provider,
                         order_ref=order_ref,
                         provider_order_id=provider_order_id,
                         error=e.message)
            return ReconcileOutcome.FAILED

        if donation is None:
            logger.info("No pending donation to reconcile",
                        provider=provider,
                        order_ref=order_ref,
                        provider_order_id=provider_order_id)
            return ReconcileOutcome.DUPLICATE

        if self.cache:
            self.cache.invalidate_category_totals()

        if self.producer:
            await self.producer.publish_donation_confirmed({
                "id": donation.id,
                "category_id": donation.category_id,
                "donor_name": donation.donor_name,
                "amount": donation.amount,
                "is_anonymous": donation.is_anonymous,
                "provider": donation.provider,
                "created_at": donation.created_at.isoformat() if donation.created_at else None,
            })

        return ReconcileOutcome.CONFIRMED

    async def settle_capture(self, provider_order_id: str) -> ReconcileOutcome:
        """
        Capture an approved PayPal order and reconcile it.

        Capture errors propagate to the caller (the donor's browser is
        waiting on this call); reconciliation outcomes are only logged.
        """
        adapter = self.registry.get("paypal")
        confirmation = await adapter.capture_order(provider_order_id)

        if not confirmation.completed:
            logger.warning("PayPal capture did not complete",
                           provider_order_id=provider_order_id,
                           status=confirmation.status)
            raise ProviderError(f"PayPal capture not completed: {confirmation.status}", provider=adapter.name)

        outcome = await self.settle(adapter.ledger_provider, confirmation, by_provider_order_id=True)
        return self._record("paypal_capture", outcome)
