"""
Token Wallet API Routes

Endpoints:
- POST /api/tokens/purchase - Start an M-Pesa token purchase
- GET /api/payment/status/{payment_id} - Poll a purchase
- GET /api/payments - Recent purchases
- POST /api/mpesa/callback - Daraja STK callback handler
- GET /api/analytics/sales - Daily completed sales
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Query

from database import get_db
from utils.auth import get_current_user
from token_wallet.purchase_service import PurchaseService
from token_wallet.payment_store import PaymentStore
from token_wallet.reconciler import CallbackReconciler
from token_wallet.config import CALLBACK_ACCEPTED
from token_wallet.models import (
    PurchaseRequest,
    PurchaseResponse,
    PaymentStatusResponse
)

logger = logging.getLogger(__name__)

token_wallet_router = APIRouter(tags=["Token Wallet"])


# ==================== PURCHASE ENDPOINTS ====================

@token_wallet_router.post("/tokens/purchase", response_model=PurchaseResponse)
async def purchase_tokens(
    body: PurchaseRequest,
    request: Request,
    user: dict = Depends(get_current_user),
    db=Depends(get_db)
):
    """
    Start a token purchase and send the STK push to the customer's phone.

    Flow:
    1. Create pending payment record
    2. Send STK push
    3. Return payment id for status polling

    Tokens are credited when Daraja calls back with the payment result.
    """
    settings = request.app.state.settings
    service = PurchaseService(db, request.app.state.gateway, settings.token_price)

    result = await service.initiate_purchase(user["id"], body.number_of_tokens, body.phone_number)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error_message)

    # The callback may have beaten us to storing the checkout id
    await CallbackReconciler(db).replay_orphaned(result.checkout_request_id)

    return PurchaseResponse(
        payment_id=result.payment_id,
        checkout_request_id=result.checkout_request_id
    )


@token_wallet_router.get("/payment/status/{payment_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    payment_id: str,
    request: Request,
    user: dict = Depends(get_current_user),
    db=Depends(get_db)
):
    """Get status of a token purchase (pending, completed or failed)."""
    settings = request.app.state.settings
    service = PurchaseService(db, request.app.state.gateway, settings.token_price)

    payment = await service.get_payment_status(user["id"], payment_id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")

    return PaymentStatusResponse(
        status=payment["status"],
        tokens_purchased=payment["tokens_purchased"]
    )


@token_wallet_router.get("/payments")
async def list_payments(
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db=Depends(get_db)
):
    """Get the caller's recent token purchases."""
    payments = await PaymentStore(db).list_for_user(user["id"], limit)
    return {"success": True, "payments": payments, "count": len(payments)}


# ==================== M-PESA CALLBACK ====================

@token_wallet_router.post("/mpesa/callback")
async def mpesa_callback(request: Request, db=Depends(get_db)):
    """
    Handle Daraja STK push result notifications.

    Always answers with the acknowledgement shape. ResultCode 1 is returned
    only when storage failed, so that Daraja delivers the notification again.
    """
    try:
        payload = await request.json()
    except (ValueError, UnicodeDecodeError):
        body = await request.body()
        logger.warning(f"M-Pesa callback with unparseable body ({len(body)} bytes)")
        return dict(CALLBACK_ACCEPTED)

    if not isinstance(payload, dict):
        logger.warning(f"M-Pesa callback with unexpected payload: {json.dumps(payload)[:200]}")
        return dict(CALLBACK_ACCEPTED)

    result = await CallbackReconciler(db).handle_payload(payload)
    return result.ack()


# ==================== ANALYTICS ====================

@token_wallet_router.get("/analytics/sales")
async def get_sales(
    days: int = Query(30, ge=1, le=365),
    user: dict = Depends(get_current_user),
    db=Depends(get_db)
):
    """Get daily totals of completed token sales."""
    sales = await PaymentStore(db).daily_sales(days)
    return {"success": True, "sales": sales}
