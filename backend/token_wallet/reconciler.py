"""
M-Pesa Callback Reconciler

Applies the asynchronous STK push outcome to the matching payment record.

Guarantees:
- A notification for an unknown checkout id changes nothing and is acknowledged
- A notification for a payment already completed/failed is a duplicate:
  acknowledged, no state change, no second credit
- Success completes the payment and credits the account in ONE transaction
- Storage failures are reported with a non-zero ack code so Daraja redelivers;
  the duplicate check above makes redelivery safe
"""

import logging
from typing import Optional, Dict, Any, List

from pymongo.errors import PyMongoError

from .config import (
    PAYMENT_PENDING,
    MPESA_SUCCESS_CODE,
    MPESA_RECEIPT_ITEM,
    MPESA_TRANSACTION_DATE_ITEM,
)
from .models import CallbackNotification, ReconcileResult
from .payment_store import PaymentStore
from .wallet_service import WalletService

logger = logging.getLogger(__name__)


class AccountMissingError(Exception):
    """Raised inside the completion transaction to roll it back."""


def get_metadata_value(items: List[Dict[str, Any]], name: str) -> Optional[Any]:
    """Value of a named CallbackMetadata item, None if absent."""
    for item in items or []:
        if isinstance(item, dict) and item.get("Name") == name:
            return item.get("Value")
    return None


class CallbackReconciler:
    """Matches gateway notifications to payment records and settles them."""

    def __init__(self, db):
        self.db = db
        self.payments = PaymentStore(db)
        self.wallet = WalletService(db)

    @staticmethod
    def parse_notification(payload: Dict[str, Any]) -> CallbackNotification:
        """
        Extract the stkCallback fields.

        Raises:
            ValueError if the payload is not a recognisable STK callback
        """
        try:
            callback = payload["Body"]["stkCallback"]
            checkout_request_id = callback["CheckoutRequestID"]
            result_code = int(callback["ResultCode"])
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed STK callback: {e!r}")

        if not checkout_request_id or not isinstance(checkout_request_id, str):
            raise ValueError("Malformed STK callback: empty CheckoutRequestID")

        metadata = callback.get("CallbackMetadata") or {}
        items = metadata.get("Item") if isinstance(metadata, dict) else None

        return CallbackNotification(
            checkout_request_id=checkout_request_id,
            merchant_request_id=callback.get("MerchantRequestID"),
            result_code=result_code,
            result_desc=str(callback.get("ResultDesc") or ""),
            metadata_items=items if isinstance(items, list) else []
        )

    async def handle_payload(self, payload: Dict[str, Any]) -> ReconcileResult:
        """Parse, reconcile and log one inbound notification."""
        try:
            notification = self.parse_notification(payload)
        except ValueError as e:
            logger.warning(f"Ignoring M-Pesa callback: {e}")
            return ReconcileResult(outcome="invalid", message=str(e))

        logger.info(
            f"M-Pesa callback: checkout={notification.checkout_request_id} "
            f"result_code={notification.result_code}"
        )

        result = await self.reconcile(
            notification.checkout_request_id,
            notification.result_code,
            notification.result_desc,
            notification.metadata_items
        )

        if result.outcome != "error":
            try:
                await self.payments.log_callback(
                    payload,
                    notification.checkout_request_id,
                    result.payment_id,
                    result.outcome
                )
            except PyMongoError as e:
                logger.error(f"Failed to log callback for {notification.checkout_request_id}: {e}")

        return result

    async def reconcile(
        self,
        checkout_request_id: str,
        result_code: int,
        result_desc: str,
        metadata_items: List[Dict[str, Any]]
    ) -> ReconcileResult:
        """Settle the payment identified by checkout_request_id exactly once."""
        payment_id = None
        try:
            payment = await self.payments.find_by_checkout_id(checkout_request_id)
            if not payment:
                logger.error(f"Payment not found for checkout: {checkout_request_id}")
                return ReconcileResult(outcome="unknown", message="Payment not found")

            payment_id = payment["payment_id"]

            if payment.get("status") != PAYMENT_PENDING:
                logger.info(
                    f"Duplicate callback for payment {payment_id} "
                    f"(already {payment.get('status')}), ignoring"
                )
                return ReconcileResult(
                    outcome="duplicate",
                    payment_id=payment_id,
                    message=f"Payment already {payment.get('status')}"
                )

            if result_code == MPESA_SUCCESS_CODE:
                return await self._complete(payment, result_desc, metadata_items)

            return await self._fail(payment, result_code, result_desc)

        except PyMongoError as e:
            logger.error(f"Callback processing failed for checkout {checkout_request_id}: {e}")
            return ReconcileResult(outcome="error", payment_id=payment_id, message=str(e))

    async def _complete(
        self,
        payment: Dict[str, Any],
        result_desc: str,
        metadata_items: List[Dict[str, Any]]
    ) -> ReconcileResult:
        payment_id = payment["payment_id"]
        user_id = payment["user_id"]
        tokens = payment["tokens_purchased"]

        receipt = get_metadata_value(metadata_items, MPESA_RECEIPT_ITEM)
        transaction_date = get_metadata_value(metadata_items, MPESA_TRANSACTION_DATE_ITEM)
        if receipt is None or transaction_date is None:
            logger.warning(f"Callback for payment {payment_id} is missing receipt metadata")

        try:
            async with await self.db.client.start_session() as session:
                async with session.start_transaction():
                    completed = await self.payments.mark_completed(
                        payment_id,
                        str(receipt) if receipt is not None else None,
                        str(transaction_date) if transaction_date is not None else None,
                        result_desc=result_desc,
                        session=session
                    )
                    if completed is None:
                        # Another delivery settled it first
                        return ReconcileResult(
                            outcome="duplicate",
                            payment_id=payment_id,
                            message="Payment already settled"
                        )

                    if not await self.wallet.credit_tokens(user_id, tokens, session=session):
                        raise AccountMissingError(user_id)
        except AccountMissingError:
            logger.critical(
                f"Payment {payment_id} paid but account {user_id} does not exist; left pending"
            )
            return ReconcileResult(
                outcome="invalid",
                payment_id=payment_id,
                message="Account not found"
            )

        logger.info(f"Payment successful. Added {tokens} tokens to user {user_id} (payment {payment_id})")
        return ReconcileResult(
            outcome="completed",
            payment_id=payment_id,
            tokens_credited=tokens
        )

    async def _fail(self, payment: Dict[str, Any], result_code: int, result_desc: str) -> ReconcileResult:
        payment_id = payment["payment_id"]

        if not await self.payments.mark_failed(payment_id, result_desc, result_code=result_code):
            return ReconcileResult(
                outcome="duplicate",
                payment_id=payment_id,
                message="Payment already settled"
            )

        logger.info(f"Payment {payment_id} failed: {result_desc}")
        return ReconcileResult(outcome="failed", payment_id=payment_id, message=result_desc)

    async def replay_orphaned(self, checkout_request_id: str) -> Optional[ReconcileResult]:
        """
        Re-apply a notification that arrived before its checkout id was stored.

        Called after the purchase attaches the correlation ids.
        """
        try:
            entry = await self.payments.find_orphaned_callback(checkout_request_id)
            if not entry:
                return None

            notification = self.parse_notification(entry["payload"])
            result = await self.reconcile(
                notification.checkout_request_id,
                notification.result_code,
                notification.result_desc,
                notification.metadata_items
            )
            if result.outcome not in ("unknown", "error"):
                await self.payments.mark_log_replayed(entry["log_id"], result.outcome)
                logger.info(f"Replayed early callback for checkout {checkout_request_id}: {result.outcome}")
            return result

        except (PyMongoError, ValueError) as e:
            logger.error(f"Replay of callback for checkout {checkout_request_id} failed: {e}")
            return None
