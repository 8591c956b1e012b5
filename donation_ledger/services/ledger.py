"""
Ledger store: the only code that writes categories, donations and pending
donations.
"""
from decimal import Decimal
from typing import Optional
from sqlalchemy import delete, update, func
from sqlalchemy.orm import Session
import structlog

from donation_ledger.core.exceptions import LedgerError, PaymentMismatchError
from donation_ledger.models.ledger import Category, Donation, PendingDonation

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")

pending_table = PendingDonation.__table__
category_table = Category.__table__


class LedgerService:
    """Writes to the donation ledger"""

    @staticmethod
    def get_category(db: Session, category_id: str) -> Optional[Category]:
        return db.query(Category).filter(Category.id == category_id).first()

    @staticmethod
    def create_pending(
        db: Session,
        *,
        order_ref: str,
        provider: str,
        category_id: str,
        donor_name: str,
        amount: Decimal,
        currency: str,
        is_anonymous: bool,
        email: Optional[str] = None,
        support_message: Optional[str] = None,
        provider_order_id: Optional[str] = None,
    ) -> PendingDonation:
        """Stage a donation until the provider confirms it"""
        try:
            pending = PendingDonation(
                order_ref=order_ref,
                provider=provider,
                provider_order_id=provider_order_id,
                category_id=category_id,
                donor_name=donor_name,
                email=email,
                amount=amount,
                currency=currency,
                is_anonymous=is_anonymous,
                support_message=support_message,
            )

            db.add(pending)
            db.commit()
            db.refresh(pending)

            logger.info("Pending donation created",
                        order_ref=order_ref,
                        provider=provider,
                        category_id=category_id,
                        amount=str(amount))
            return pending

        except Exception as e:
            db.rollback()
            logger.error("Failed to create pending donation", error=str(e), order_ref=order_ref, provider=provider)
            raise LedgerError(f"Failed to create pending donation: {str(e)}") from e

    @staticmethod
    def confirm_pending(
        db: Session,
        *,
        provider: str,
        order_ref: Optional[str] = None,
        provider_order_id: Optional[str] = None,
        paid_amount: Optional[Decimal] = None,
        paid_currency: Optional[str] = None,
    ) -> Optional[Donation]:
        """
        Claim a pending donation and turn it into a confirmed one.

        The pending row is deleted with DELETE ... RETURNING, so of two
        concurrent confirmations only one gets the row back. The delete, the
        donation insert and the category increment share one transaction; on
        any failure everything is rolled back and the pending row survives.

        When the provider reports what was paid, the amount and currency must
        match the pending row, otherwise PaymentMismatchError is raised and
        the pending row survives as well.

        Returns:
            The confirmed Donation, or None when no pending row matched
            (already reconciled or never initiated)
        """
        if order_ref:
            condition = pending_table.c.order_ref == order_ref
        elif provider_order_id:
            condition = pending_table.c.provider_order_id == provider_order_id
        else:
            raise ValueError("order_ref or provider_order_id is required")

        try:
            claimed = db.execute(
                delete(pending_table)
                .where(condition, pending_table.c.provider == provider)
                .returning(*pending_table.c)
            ).mappings().first()

            if claimed is None:
                db.rollback()
                return None

            if paid_amount is not None and (
                Decimal(paid_amount).quantize(CENT) != Decimal(claimed["amount"]).quantize(CENT)
            ):
                raise PaymentMismatchError(
                    f"Paid amount {paid_amount} does not match donation amount {claimed['amount']}"
                )
            if paid_currency and paid_currency.upper() != (claimed["currency"] or "").upper():
                raise PaymentMismatchError(
                    f"Paid currency {paid_currency} does not match donation currency {claimed['currency']}"
                )

            donation = Donation(
                category_id=claimed["category_id"],
                donor_name=claimed["donor_name"],
                amount=claimed["amount"],
                is_anonymous=claimed["is_anonymous"],
                support_message=claimed["support_message"],
                email=claimed["email"],
                provider=claimed["provider"],
                order_ref=claimed["order_ref"],
            )
            db.add(donation)
            db.flush()

            # Atomic increment, never read-modify-write
            result = db.execute(
                update(category_table)
                .where(category_table.c.id == claimed["category_id"])
                .values(
                    current_amount=category_table.c.current_amount + claimed["amount"],
                    updated_at=func.now(),
                )
            )
            if result.rowcount != 1:
                raise LedgerError(f"Category {claimed['category_id']} not found")

            db.commit()
            db.refresh(donation)

            logger.info("Donation confirmed",
                        donation_id=donation.id,
                        order_ref=donation.order_ref,
                        provider=provider,
                        category_id=donation.category_id,
                        amount=str(donation.amount))
            return donation

        except PaymentMismatchError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error("Failed to record donation",
                         error=str(e),
                         provider=provider,
                         order_ref=order_ref,
                         provider_order_id=provider_order_id)
            if isinstance(e, LedgerError):
                raise
            raise LedgerError(f"Failed to record donation: {str(e)}") from e
