"""
Payment Record Store

Persistence for token purchase records and the gateway notification log.

Lifecycle: pending -> completed | failed. Every transition out of pending is a
conditional update on {"status": "pending"}, so at most one writer ever moves
a record into a terminal state and terminal records are never rewritten.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from pymongo import ReturnDocument

from .config import PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED, SALES_REPORT_DAYS

logger = logging.getLogger(__name__)


def build_account_reference(user_id: str, payment_id: str) -> str:
    """Reference sent with the push request; embeds account and payment ids."""
    return f"TOKENS-{user_id}-{payment_id}"


class PaymentStore:
    """Store for the payments and payment_logs collections."""

    def __init__(self, db):
        self.db = db

    async def create_pending(
        self,
        user_id: str,
        tokens: int,
        amount: int,
        phone_number: str
    ) -> Dict[str, Any]:
        """Insert a new pending payment record and return it."""
        now = datetime.now(timezone.utc)
        payment_id = str(uuid.uuid4())

        record = {
            "payment_id": payment_id,
            "user_id": user_id,
            "amount": amount,
            "tokens_purchased": tokens,
            "phone_number": phone_number,
            "account_reference": build_account_reference(user_id, payment_id),
            "status": PAYMENT_PENDING,
            "created_at": now.isoformat(),
        }

        await self.db.payments.insert_one(dict(record))
        return record

    async def attach_correlation(
        self,
        payment_id: str,
        checkout_request_id: str,
        merchant_request_id: Optional[str]
    ) -> bool:
        """Store the gateway ids on a record that is still pending."""
        result = await self.db.payments.update_one(
            {"payment_id": payment_id, "status": PAYMENT_PENDING},
            {
                "$set": {
                    "checkout_request_id": checkout_request_id,
                    "merchant_request_id": merchant_request_id
                }
            }
        )
        return result.modified_count > 0

    async def mark_failed(
        self,
        payment_id: str,
        result_desc: str,
        result_code: Optional[int] = None,
        session=None
    ) -> bool:
        """
        Transition pending -> failed.

        Returns:
            True if this call performed the transition
        """
        now = datetime.now(timezone.utc)

        result = await self.db.payments.update_one(
            {"payment_id": payment_id, "status": PAYMENT_PENDING},
            {
                "$set": {
                    "status": PAYMENT_FAILED,
                    "result_code": result_code,
                    "result_desc": result_desc,
                    "completed_at": now.isoformat()
                }
            },
            session=session
        )
        return result.modified_count > 0

    async def mark_completed(
        self,
        payment_id: str,
        mpesa_receipt: Optional[str],
        transaction_date: Optional[str],
        result_desc: Optional[str] = None,
        session=None
    ) -> Optional[Dict[str, Any]]:
        """
        Transition pending -> completed.

        Returns:
            The completed record, or None if it was no longer pending
        """
        now = datetime.now(timezone.utc)

        return await self.db.payments.find_one_and_update(
            {"payment_id": payment_id, "status": PAYMENT_PENDING},
            {
                "$set": {
                    "status": PAYMENT_COMPLETED,
                    "mpesa_receipt": mpesa_receipt,
                    "transaction_date": transaction_date,
                    "result_code": 0,
                    "result_desc": result_desc,
                    "completed_at": now.isoformat()
                }
            },
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
            session=session
        )

    async def get(self, payment_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.payments.find_one({"payment_id": payment_id}, {"_id": 0})

    async def find_by_checkout_id(self, checkout_request_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.payments.find_one(
            {"checkout_request_id": checkout_request_id},
            {"_id": 0}
        )

    async def find_for_user(self, payment_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.payments.find_one(
            {"payment_id": payment_id, "user_id": user_id},
            {"_id": 0}
        )

    async def list_for_user(self, user_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Get recent payments for a user, newest first."""
        cursor = self.db.payments.find(
            {"user_id": user_id},
            {"_id": 0}
        ).sort("created_at", -1).limit(limit)

        return await cursor.to_list(length=limit)

    async def daily_sales(self, days: int = SALES_REPORT_DAYS) -> List[Dict[str, Any]]:
        """
        Completed sales grouped per day (UTC), newest first.

        completed_at is an ISO string, so its first 10 characters are the date.
        """
        pipeline = [
            {"$match": {"status": PAYMENT_COMPLETED}},
            {
                "$group": {
                    "_id": {"$substrBytes": ["$completed_at", 0, 10]},
                    "total_transactions": {"$sum": 1},
                    "total_revenue": {"$sum": "$amount"},
                    "total_tokens_sold": {"$sum": "$tokens_purchased"}
                }
            },
            {"$sort": {"_id": -1}},
            {"$limit": days}
        ]

        rows = await self.db.payments.aggregate(pipeline).to_list(days)
        return [
            {
                "date": row["_id"],
                "total_transactions": row["total_transactions"],
                "total_revenue": row["total_revenue"],
                "total_tokens_sold": row["total_tokens_sold"]
            }
            for row in rows
        ]

    # ==================== NOTIFICATION LOG ====================

    async def log_callback(
        self,
        payload: Dict[str, Any],
        checkout_request_id: Optional[str],
        payment_id: Optional[str],
        outcome: str
    ) -> str:
        """Record a raw gateway notification for audit and later replay."""
        log_id = str(uuid.uuid4())
        await self.db.payment_logs.insert_one({
            "log_id": log_id,
            "checkout_request_id": checkout_request_id,
            "payment_id": payment_id,
            "outcome": outcome,
            "payload": payload,
            "created_at": datetime.now(timezone.utc).isoformat()
        })
        return log_id

    async def find_orphaned_callback(self, checkout_request_id: str) -> Optional[Dict[str, Any]]:
        """Latest notification for this checkout id that matched no payment."""
        cursor = self.db.payment_logs.find(
            {"checkout_request_id": checkout_request_id, "outcome": "unknown"},
            {"_id": 0}
        ).sort("created_at", -1).limit(1)

        entries = await cursor.to_list(length=1)
        return entries[0] if entries else None

    async def mark_log_replayed(self, log_id: str, outcome: str):
        await self.db.payment_logs.update_one(
            {"log_id": log_id},
            {
                "$set": {
                    "outcome": outcome,
                    "replayed_at": datetime.now(timezone.utc).isoformat()
                }
            }
        )
