"""
Token Purchase Service

Starts a token purchase:
1. Validate the request and compute the charge
2. Persist a pending payment record (before any external call)
3. Send the STK push with a reference embedding account and payment ids
4. Attach the gateway correlation ids, or fail the record on rejection

The purchase never touches the account balance. Tokens are credited only by
the callback reconciler once the gateway reports the payment as paid.
"""

import logging
from typing import Optional, Dict, Any

from pymongo.errors import DuplicateKeyError

from .config import ERROR_CODES
from .models import PurchaseResult
from .mpesa_service import normalize_phone_number
from .payment_store import PaymentStore

logger = logging.getLogger(__name__)

DUPLICATE_CHECKOUT_REASON = "Duplicate CheckoutRequestID"


class PurchaseService:
    """Payment initiator for token purchases."""

    def __init__(self, db, gateway, token_price: int):
        self.db = db
        self.gateway = gateway
        self.token_price = token_price
        self.payments = PaymentStore(db)

    async def initiate_purchase(
        self,
        user_id: str,
        token_quantity: int,
        contact: str
    ) -> PurchaseResult:
        """
        Create a pending payment and request the STK push.

        Returns:
            PurchaseResult with payment_id and checkout_request_id on success,
            or an error code and reason on failure
        """
        if not isinstance(token_quantity, int) or token_quantity < 1:
            return PurchaseResult(
                success=False,
                error_code="INVALID_TOKEN_QUANTITY",
                error_message=ERROR_CODES["INVALID_TOKEN_QUANTITY"]
            )

        if not contact or not contact.strip():
            return PurchaseResult(
                success=False,
                error_code="PHONE_REQUIRED",
                error_message=ERROR_CODES["PHONE_REQUIRED"]
            )

        amount = token_quantity * self.token_price
        phone = normalize_phone_number(contact)

        record = await self.payments.create_pending(
            user_id=user_id,
            tokens=token_quantity,
            amount=amount,
            phone_number=phone
        )
        payment_id = record["payment_id"]

        push = await self.gateway.submit_push_payment(
            phone,
            amount,
            record["account_reference"]
        )

        if not push.success:
            reason = push.error or ERROR_CODES["PAYMENT_INITIATION_FAILED"]
            await self.payments.mark_failed(payment_id, reason)
            logger.warning(f"Purchase {payment_id} for user {user_id} failed at gateway: {reason}")
            return PurchaseResult(
                success=False,
                payment_id=payment_id,
                error_code="PAYMENT_INITIATION_FAILED",
                error_message=reason
            )

        try:
            attached = await self.payments.attach_correlation(
                payment_id,
                push.checkout_request_id,
                push.merchant_request_id
            )
        except DuplicateKeyError:
            attached = False
            logger.error(
                f"Checkout {push.checkout_request_id} is already bound to another payment; "
                f"failing purchase {payment_id}"
            )
            await self.payments.mark_failed(payment_id, DUPLICATE_CHECKOUT_REASON)

        if not attached:
            logger.error(f"Could not store checkout {push.checkout_request_id} on purchase {payment_id}")
            return PurchaseResult(
                success=False,
                payment_id=payment_id,
                error_code="PAYMENT_INITIATION_FAILED",
                error_message=ERROR_CODES["PAYMENT_INITIATION_FAILED"]
            )

        logger.info(
            f"Purchase {payment_id}: {token_quantity} tokens (KSh {amount}) for user {user_id}, "
            f"checkout {push.checkout_request_id}"
        )
        return PurchaseResult(
            success=True,
            payment_id=payment_id,
            checkout_request_id=push.checkout_request_id
        )

    async def get_payment_status(self, user_id: str, payment_id: str) -> Optional[Dict[str, Any]]:
        """
        Current state of one of the user's payments.

        A payment whose callback never arrives stays pending; that is reported
        as-is rather than treated as an error.
        """
        return await self.payments.find_for_user(payment_id, user_id)
