from .ledger import Base, Category, Donation, PendingDonation

__all__ = [
    "Base",
    "Category",
    "Donation",
    "PendingDonation",
]
