"""
Error taxonomy for the donation ledger.

Every error raised towards an HTTP caller derives from DonationLedgerError and
carries the status code it is rendered with. Confirmation endpoints never let
these escape; they log and acknowledge instead.
"""
from typing import Optional


class DonationLedgerError(Exception):
    """Base error, rendered as {"error": message}"""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class DonationValidationError(DonationLedgerError):
    """Bad or missing input to an initiate request"""
    status_code = 400


class CategoryNotFoundError(DonationValidationError):
    """Category referenced by a donation does not exist"""

    def __init__(self, category_id: str, status_code: Optional[int] = None):
        super().__init__(f"Unknown category: {category_id}", status_code)
        self.category_id = category_id


class ConfigurationError(DonationLedgerError):
    """A provider is missing required credentials"""
    status_code = 500


class ProviderError(DonationLedgerError):
    """The payment provider rejected a request or could not be reached"""
    status_code = 502

    def __init__(self, message: str, status_code: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(message, status_code)
        self.provider = provider


class LedgerError(DonationLedgerError):
    """The ledger store failed to persist a change"""
    status_code = 500


class ProviderUnavailableError(ProviderError):
    """The provider timed out, could not be reached or failed on its side"""
    status_code = 503


class PaymentMismatchError(DonationLedgerError):
    """A confirmed payment does not match the donation it claims to pay for"""
    status_code = 400
