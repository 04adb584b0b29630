"""
Entitlement Gate - token guard for document downloads

Enforces:
- Token balance check before a download link is issued
- Atomic debit + download grant (one transaction, no double spend)
- Single-use, one hour download links

IMPORTANT: This gate is the ONLY place where tokens are spent.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

import jwt
from pymongo.errors import PyMongoError

from .catalog import DocumentCatalog
from .config import ERROR_CODES, DOWNLOAD_TOKEN_TTL_SECONDS, DOWNLOAD_HISTORY_LIMIT, UNLOCK_MAX_ATTEMPTS
from .models import UnlockResult, CatalogDocument
from .wallet_service import WalletService
from utils.auth import create_download_token, decode_download_token

logger = logging.getLogger(__name__)


class DownloadDeniedError(Exception):
    """Download token invalid, expired, or already redeemed."""


class EntitlementGate:
    """
    Download guard that enforces token requirements.

    Usage:
        gate = EntitlementGate(db, catalog, settings)
        result = await gate.unlock(user_id, "agric-paper-1")
        if not result.allowed:
            raise HTTPException(status_code=403, detail=result.error_message)
    """

    def __init__(self, db, catalog: DocumentCatalog, settings):
        self.db = db
        self.catalog = catalog
        self.settings = settings
        self.wallet_service = WalletService(db)

    async def unlock(self, user_id: str, document_id: str) -> UnlockResult:
        """
        Debit the document's price and issue a download link.

        The debit and the grant record commit together; the debit itself is
        conditional on the balance, so concurrent unlocks cannot overspend.
        """
        document = self.catalog.get(document_id)
        if not document:
            return UnlockResult(
                allowed=False,
                error_code="DOCUMENT_NOT_FOUND",
                error_message=ERROR_CODES["DOCUMENT_NOT_FOUND"]
            )

        required = document.tokens_required
        download_id = str(uuid.uuid4())

        account = await self._debit_and_grant(user_id, document, download_id)

        if account is None:
            available = await self.wallet_service.get_balance(user_id)
            if available is None:
                return UnlockResult(
                    allowed=False,
                    error_code="ACCOUNT_NOT_FOUND",
                    error_message=ERROR_CODES["ACCOUNT_NOT_FOUND"],
                    tokens_required=required
                )
            return UnlockResult(
                allowed=False,
                error_code="INSUFFICIENT_TOKENS",
                error_message=ERROR_CODES["INSUFFICIENT_TOKENS"],
                tokens_required=required,
                tokens_remaining=available
            )

        token = create_download_token(
            user_id,
            document.file_id,
            document_id,
            download_id,
            self.settings.jwt_secret
        )

        logger.info(f"User {user_id} unlocked {document_id} for {required} tokens")
        return UnlockResult(
            allowed=True,
            download_id=download_id,
            download_url=f"{self.settings.base_url}/download/{token}",
            expires_in=DOWNLOAD_TOKEN_TTL_SECONDS,
            tokens_required=required,
            tokens_remaining=account.get("tokens", 0)
        )

    async def _debit_and_grant(
        self,
        user_id: str,
        document: CatalogDocument,
        download_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Debit and insert the grant record in one transaction.

        A concurrent writer on the same account aborts one of the transactions
        with a TransientTransactionError; the loser is re-run, and its debit
        then sees the reduced balance.

        Returns:
            Updated account document, or None if the balance was insufficient
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                async with await self.db.client.start_session() as session:
                    async with session.start_transaction():
                        account = await self.wallet_service.debit_tokens(
                            user_id, document.tokens_required, session=session
                        )
                        if account is not None:
                            await self.db.downloads.insert_one(
                                {
                                    "download_id": download_id,
                                    "user_id": user_id,
                                    "document_id": document.id,
                                    "file_id": document.file_id,
                                    "tokens_used": document.tokens_required,
                                    "created_at": datetime.now(timezone.utc).isoformat(),
                                    "downloaded_at": None
                                },
                                session=session
                            )
                return account
            except PyMongoError as e:
                if not e.has_error_label("TransientTransactionError") or attempt >= UNLOCK_MAX_ATTEMPTS:
                    raise
                logger.warning(
                    f"Unlock transaction for user {user_id} aborted ({e}), "
                    f"retrying (attempt {attempt + 1}/{UNLOCK_MAX_ATTEMPTS})"
                )

    async def redeem(self, token: str) -> CatalogDocument:
        """
        Redeem a download link once.

        Raises:
            DownloadDeniedError if the token is invalid, expired or already used
        """
        try:
            claims = decode_download_token(token, self.settings.jwt_secret)
        except jwt.InvalidTokenError as e:
            raise DownloadDeniedError(f"Invalid download token: {e}")

        document = self.catalog.get(claims["documentId"])
        if not document:
            raise DownloadDeniedError(f"Document not found: {claims['documentId']}")

        result = await self.db.downloads.update_one(
            {
                "download_id": claims["downloadId"],
                "user_id": claims["userId"],
                "downloaded_at": None
            },
            {"$set": {"downloaded_at": datetime.now(timezone.utc).isoformat()}}
        )
        if result.modified_count == 0:
            raise DownloadDeniedError(f"Download {claims['downloadId']} already redeemed or unknown")

        return document

    async def get_download_history(self, user_id: str, limit: int = DOWNLOAD_HISTORY_LIMIT) -> List[Dict[str, Any]]:
        """Get recent download grants for user."""
        cursor = self.db.downloads.find(
            {"user_id": user_id},
            {"_id": 0, "user_id": 0}
        ).sort("created_at", -1).limit(limit)

        return await cursor.to_list(length=limit)
