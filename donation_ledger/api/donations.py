from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
import structlog

from donation_ledger.cache.redis import RedisCache, get_cache
from donation_ledger.core.exceptions import CategoryNotFoundError
from donation_ledger.database.database import get_db
from donation_ledger.schemas.ledger import (
    CategoryResponse,
    CategoryListResponse,
    DonationListResponse,
    LeaderboardResponse,
    SupportMessageListResponse,
)
from donation_ledger.services.read import DonationReadService, DonationSort

router = APIRouter(tags=["donations"])
logger = structlog.get_logger(__name__)


@router.get("/donations", response_model=DonationListResponse)
async def list_donations(
    sort: DonationSort = Query(DonationSort.DATE, description="Order by date (newest first) or amount (largest first)"),
    category_id: Optional[str] = Query(None, description="Only donations to this category"),
    skip: int = Query(0, ge=0, description="Number of donations to skip"),
    limit: int = Query(100, ge=1, le=500, description="Number of donations to return"),
    db: Session = Depends(get_db)
):
    """List confirmed donations"""
    donations = DonationReadService.list_donations(db=db, sort=sort, category_id=category_id, skip=skip, limit=limit)
    return DonationListResponse(donations=donations, total=len(donations))


@router.get("/donations/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    category_id: Optional[str] = Query(None, description="Restrict to one category; all donors when omitted"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """Donor totals, largest first"""
    donors = DonationReadService.get_leaderboard(db=db, category_id=category_id, limit=limit)
    return LeaderboardResponse(category_id=category_id, donors=donors, total=len(donors))


@router.get("/donations/support-messages", response_model=SupportMessageListResponse)
async def get_support_messages(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    """Words of support left with donations, newest first"""
    messages = DonationReadService.get_support_messages(db=db, limit=limit)
    return SupportMessageListResponse(messages=messages, total=len(messages))


@router.get("/categories", response_model=CategoryListResponse)
async def get_category_totals(
    db: Session = Depends(get_db),
    cache: RedisCache = Depends(get_cache)
):
    """All categories with their running totals"""
    categories = DonationReadService.get_category_totals(db=db, cache=cache)
    return CategoryListResponse(categories=categories, total=len(categories))


@router.get("/categories/{category_id}", response_model=CategoryResponse)
async def get_category(
    category_id: str,
    db: Session = Depends(get_db)
):
    """Get a category by ID"""
    category = DonationReadService.get_category(db=db, category_id=category_id)
    if not category:
        logger.warning("Category not found", category_id=category_id)
        raise CategoryNotFoundError(category_id, status_code=404)
    return category
