from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, JSONResponse
import structlog

from donation_ledger.api.dependencies import get_order_initiator, get_reconciler
from donation_ledger.core.exceptions import DonationLedgerError
from donation_ledger.providers.base import InboundNotification
from donation_ledger.providers.registry import ProviderRegistry, get_provider_registry
from donation_ledger.schemas.payment import (
    PaymentProvider,
    InitiateDonationRequest,
    InitiateDonationResponse,
    CaptureRequest,
    CaptureResponse,
    ClientTokenResponse,
)
from donation_ledger.services.initiator import OrderInitiator
from donation_ledger.services.reconciler import ConfirmationReconciler

router = APIRouter(prefix="/payments", tags=["payments"])
logger = structlog.get_logger(__name__)


async def _acknowledge(reconciler: ConfirmationReconciler, provider: str, notification: InboundNotification):
    """Run reconciliation; nothing about the outcome reaches the caller"""
    try:
        outcome = await reconciler.reconcile(provider, notification)
        logger.info("Notification handled", provider=provider, outcome=outcome.value)
    except Exception as e:
        logger.error("Unexpected error reconciling notification",
                     provider=provider,
                     error=str(e),
                     error_type=type(e).__name__,
                     exc_info=True)


@router.post("/{provider}/initiate", response_model=InitiateDonationResponse)
async def initiate_donation(
    provider: PaymentProvider,
    donation_data: InitiateDonationRequest,
    initiator: OrderInitiator = Depends(get_order_initiator)
):
    """
    Start a donation payment.

    Stores the donation as pending and returns the provider's redirect URL
    (Paysera, Stripe) or order id (PayPal JS SDK).
    """
    try:
        return await initiator.initiate(provider.value, donation_data)
    except DonationLedgerError as e:
        logger.warning("Donation initiation failed",
                       provider=provider.value,
                       error=e.message,
                       status_code=e.status_code)
        raise


@router.post("/paypal/capture", response_model=CaptureResponse)
async def capture_paypal_order(
    capture_data: CaptureRequest,
    reconciler: ConfirmationReconciler = Depends(get_reconciler)
):
    """Capture an approved PayPal order and record the donation"""
    try:
        outcome = await reconciler.settle_capture(capture_data.provider_order_id)
    except DonationLedgerError as e:
        logger.warning("PayPal capture failed",
                       provider_order_id=capture_data.provider_order_id,
                       error=e.message)
        raise

    logger.info("PayPal order captured", provider_order_id=capture_data.provider_order_id, outcome=outcome.value)
    return CaptureResponse(success=True)


@router.get("/paypal/client-token", response_model=ClientTokenResponse)
async def get_paypal_client_token(
    registry: ProviderRegistry = Depends(get_provider_registry)
):
    """Client token for the PayPal JS SDK"""
    client_token = await registry.get(PaymentProvider.PAYPAL.value).generate_client_token()
    return ClientTokenResponse(client_token=client_token)


@router.post("/paypal/ipn", response_class=PlainTextResponse)
async def paypal_ipn(
    request: Request,
    reconciler: ConfirmationReconciler = Depends(get_reconciler)
):
    """PayPal Instant Payment Notification listener"""
    notification = InboundNotification(
        body=await request.body(),
        headers={k.lower(): v for k, v in request.headers.items()},
    )
    await _acknowledge(reconciler, "paypal_ipn", notification)
    return PlainTextResponse("OK")


@router.get("/paysera/callback", response_class=PlainTextResponse)
async def paysera_callback(
    request: Request,
    reconciler: ConfirmationReconciler = Depends(get_reconciler)
):
    """Paysera server-to-server callback; Paysera expects a plain OK"""
    notification = InboundNotification(query_params=dict(request.query_params))
    await _acknowledge(reconciler, "paysera", notification)
    return PlainTextResponse("OK")


@router.post("/stripe/webhook")
async def stripe_webhook(
    request: Request,
    reconciler: ConfirmationReconciler = Depends(get_reconciler)
):
    """Stripe webhook endpoint"""
    notification = InboundNotification(
        body=await request.body(),
        headers={k.lower(): v for k, v in request.headers.items()},
    )
    await _acknowledge(reconciler, "stripe", notification)
    return JSONResponse({"received": True})
