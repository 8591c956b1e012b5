from datetime import timedelta
from enum import Enum
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import structlog

from donation_ledger.cache.redis import RedisCache
from donation_ledger.core.config import get_settings
from donation_ledger.models.ledger import Category, Donation
from donation_ledger.schemas.ledger import (
    CategoryResponse,
    DonationResponse,
    DonorTotalResponse,
    SupportMessageResponse,
)

logger = structlog.get_logger(__name__)


class DonationSort(str, Enum):
    DATE = "date"
    AMOUNT = "amount"


class DonationReadService:
    """Read-only queries over confirmed donations and category totals"""

    @staticmethod
    def list_donations(db: Session,
                       sort: DonationSort = DonationSort.DATE,
                       category_id: Optional[str] = None,
                       skip: int = 0,
                       limit: int = 100) -> List[DonationResponse]:
        query = db.query(Donation)
        if category_id:
            query = query.filter(Donation.category_id == category_id)

        if sort == DonationSort.AMOUNT:
            query = query.order_by(Donation.amount.desc(), Donation.created_at.desc())
        else:
            query = query.order_by(Donation.created_at.desc(), Donation.amount.desc())

        donations = [DonationResponse.model_validate(d) for d in query.offset(skip).limit(limit).all()]
        logger.debug("Donations retrieved", count=len(donations), sort=sort.value, category_id=category_id)
        return donations

    @staticmethod
    def get_category_totals(db: Session, cache: Optional[RedisCache] = None) -> List[CategoryResponse]:
        """All categories in display order, read through the cache"""
        if cache:
            cached = cache.get_category_totals()
            if cached is not None:
                return [CategoryResponse.model_validate(c) for c in cached]

        categories = [
            CategoryResponse.model_validate(c)
            for c in db.query(Category).order_by(Category.sort_order, Category.name).all()
        ]

        if cache:
            cache.set_category_totals(
                [c.model_dump(mode="json") for c in categories],
                ttl=timedelta(seconds=get_settings().category_cache_ttl_seconds)
            )
        return categories

    @staticmethod
    def get_category(db: Session, category_id: str) -> Optional[CategoryResponse]:
        category = db.query(Category).filter(Category.id == category_id).first()
        if not category:
            return None
        return CategoryResponse.model_validate(category)

    @staticmethod
    def get_leaderboard(db: Session, category_id: Optional[str] = None, limit: int = 100) -> List[DonorTotalResponse]:
        """
        Donor totals, largest first.

        Anonymous donations are stored under the anonymized label, so they
        group into a single row.
        """
        total = func.sum(Donation.amount).label("total_amount")
        query = db.query(
            Donation.donor_name,
            total,
            func.count(Donation.id).label("donation_count"),
        )
        if category_id:
            query = query.filter(Donation.category_id == category_id)

        rows = query.group_by(Donation.donor_name).order_by(total.desc(), Donation.donor_name).limit(limit).all()
        return [
            DonorTotalResponse(
                donor_name=row.donor_name,
                total_amount=float(row.total_amount or 0),
                donation_count=row.donation_count,
            )
            for row in rows
        ]

    @staticmethod
    def get_support_messages(db: Session, limit: int = 50) -> List[SupportMessageResponse]:
        """Words of support, newest first"""
        donations = (
            db.query(Donation)
            .filter(Donation.support_message.isnot(None), Donation.support_message != "")
            .order_by(Donation.created_at.desc())
            .limit(limit)
            .all()
        )
        return [
            SupportMessageResponse(
                donor_name=d.donor_name,
                support_message=d.support_message,
                category_id=d.category_id,
                created_at=d.created_at,
            )
            for d in donations
        ]
