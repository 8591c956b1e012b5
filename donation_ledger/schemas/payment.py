from pydantic import BaseModel, Field, EmailStr, ConfigDict
from decimal import Decimal
from enum import Enum
from typing import Optional


class PaymentProvider(str, Enum):
    """Providers a donation can be initiated with"""
    PAYPAL = "paypal"
    PAYSERA = "paysera"
    STRIPE = "stripe"


class InitiateDonationRequest(BaseModel):
    """Request schema for starting a donation payment"""
    category_id: str = Field(..., min_length=1, description="Category the donation is for")
    donor_name: Optional[str] = Field(None, max_length=255, description="Donor display name, required unless anonymous")
    email: Optional[EmailStr] = Field(None, description="Receipt address, required by some providers")
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, description="Amount in major units")
    is_anonymous: bool = Field(default=False, description="Hide donor identity")
    support_message: Optional[str] = Field(None, max_length=1000, description="Optional words of support")
    success_url: Optional[str] = Field(None, description="Where the provider sends the donor after paying")
    cancel_url: Optional[str] = Field(None, description="Where the provider sends the donor after cancelling")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "category_id": "0d0f3d2e-6a4c-4b8e-9d49-7d1f0c6f3f10",
                "donor_name": "Alice",
                "email": "alice@example.com",
                "amount": "20.00",
                "is_anonymous": False,
                "support_message": "Keep up the good work!",
                "success_url": "https://example.org/donate/success",
                "cancel_url": "https://example.org/donate/cancel"
            }
        }
    )


class InitiateDonationResponse(BaseModel):
    """Public launch artifact for the chosen provider"""
    order_ref: str
    provider: PaymentProvider
    redirect_url: Optional[str] = None
    provider_order_id: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "order_ref": "6f1c0a52-2b1e-4d0b-8f55-3f8d1c7d9a11",
                "provider": "paysera",
                "redirect_url": "https://www.paysera.com/pay/?data=...&sign=...",
                "provider_order_id": None
            }
        }
    )


class CaptureRequest(BaseModel):
    """Second step of the PayPal orders flow"""
    provider_order_id: str = Field(..., min_length=1, description="PayPal order id approved by the donor")


class CaptureResponse(BaseModel):
    success: bool


class ClientTokenResponse(BaseModel):
    client_token: str
