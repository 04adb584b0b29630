"""
Token Wallet Service

Account balance operations:
- Balance queries
- Token credits (payment completion)
- Token debits (document unlock)

CRITICAL: Balances are only ever changed with $inc. Debits are conditional
updates filtered on the current balance, so negative balances are impossible
under any concurrency scenario.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from pymongo import ReturnDocument

logger = logging.getLogger(__name__)


class WalletService:
    """Service for reading and mutating user token balances."""

    def __init__(self, db):
        self.db = db

    async def get_account(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Get the account document without its password hash."""
        return await self.db.users.find_one(
            {"id": user_id},
            {"_id": 0, "password": 0}
        )

    async def get_balance(self, user_id: str) -> Optional[int]:
        """Current token balance, or None for an unknown account."""
        account = await self.db.users.find_one(
            {"id": user_id},
            {"_id": 0, "tokens": 1}
        )
        if not account:
            return None
        return account.get("tokens", 0)

    async def credit_tokens(self, user_id: str, tokens: int, session=None) -> bool:
        """
        Credit tokens to an account.

        Runs inside the caller's transaction when a session is given so the
        credit commits together with the payment completion.

        Returns:
            True if the account exists and was credited
        """
        now = datetime.now(timezone.utc)

        result = await self.db.users.update_one(
            {"id": user_id},
            {
                "$inc": {"tokens": tokens},
                "$set": {"updated_at": now.isoformat()}
            },
            session=session
        )

        if result.matched_count == 0:
            logger.error(f"Credit of {tokens} tokens failed: account {user_id} not found")
            return False

        logger.info(f"Credited {tokens} tokens to user {user_id}")
        return True

    async def debit_tokens(self, user_id: str, tokens: int, session=None) -> Optional[Dict[str, Any]]:
        """
        Atomically debit tokens if the balance covers them.

        The filter on the current balance makes the check and the decrement a
        single operation, so two concurrent debits cannot both pass.

        Returns:
            Updated account document, or None if the balance was insufficient
        """
        now = datetime.now(timezone.utc)

        return await self.db.users.find_one_and_update(
            {"id": user_id, "tokens": {"$gte": tokens}},
            {
                "$inc": {"tokens": -tokens},
                "$set": {"updated_at": now.isoformat()}
            },
            projection={"_id": 0, "password": 0},
            return_document=ReturnDocument.AFTER,
            session=session
        )
