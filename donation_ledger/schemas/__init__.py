from .payment import (
    PaymentProvider,
    InitiateDonationRequest,
    InitiateDonationResponse,
    CaptureRequest,
    CaptureResponse,
    ClientTokenResponse,
)
from .ledger import (
    CategoryResponse,
    CategoryListResponse,
    DonationResponse,
    DonationListResponse,
    DonorTotalResponse,
    LeaderboardResponse,
    SupportMessageResponse,
    SupportMessageListResponse,
)

__all__ = [
    "PaymentProvider",
    "InitiateDonationRequest",
    "InitiateDonationResponse",
    "CaptureRequest",
    "CaptureResponse",
    "ClientTokenResponse",
    "CategoryResponse",
    "CategoryListResponse",
    "DonationResponse",
    "DonationListResponse",
    "DonorTotalResponse",
    "LeaderboardResponse",
    "SupportMessageResponse",
    "SupportMessageListResponse",
]
