from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


class CategoryResponse(BaseModel):
    """Response schema for category totals"""
    id: str
    name: str
    description: Optional[str]
    target_amount: float
    current_amount: float
    sort_order: int
    has_progress_bar: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "0d0f3d2e-6a4c-4b8e-9d49-7d1f0c6f3f10",
                "name": "Roof repairs",
                "description": "New roof for the workshop",
                "target_amount": 5000.0,
                "current_amount": 1250.0,
                "sort_order": 1,
                "has_progress_bar": True,
                "created_at": "2025-05-01T10:00:00Z",
                "updated_at": "2025-05-01T10:00:00Z"
            }
        }
    )


class CategoryListResponse(BaseModel):
    categories: list[CategoryResponse]
    total: int


class DonationResponse(BaseModel):
    """Confirmed donation as shown publicly (email is never included)"""
    id: str
    category_id: str
    donor_name: str
    amount: float
    is_anonymous: bool
    support_message: Optional[str]
    provider: str
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "a3c1f1de-96d3-4a55-8a58-6bb9d8f0c2a7",
                "category_id": "0d0f3d2e-6a4c-4b8e-9d49-7d1f0c6f3f10",
                "donor_name": "Alice",
                "amount": 20.0,
                "is_anonymous": False,
                "support_message": "Keep up the good work!",
                "provider": "paysera",
                "created_at": "2025-05-01T10:00:00Z"
            }
        }
    )


class DonationListResponse(BaseModel):
    donations: list[DonationResponse]
    total: int


class DonorTotalResponse(BaseModel):
    """One leaderboard row"""
    donor_name: str
    total_amount: float
    donation_count: int


class LeaderboardResponse(BaseModel):
    category_id: Optional[str] = None
    donors: list[DonorTotalResponse]
    total: int


class SupportMessageResponse(BaseModel):
    donor_name: str
    support_message: str
    category_id: str
    created_at: datetime


class SupportMessageListResponse(BaseModel):
    messages: list[SupportMessageResponse]
    total: int
