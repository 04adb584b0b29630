"""
Token Wallet Data Models

Pydantic models for token purchases, gateway callbacks and document unlocks.
Stored documents mirror these shapes in the MongoDB collections; wire models
use the camelCase names the web client already sends.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Literal, Any, Dict

from .config import CALLBACK_ACCEPTED, CALLBACK_REJECTED


PaymentStatus = Literal["pending", "completed", "failed"]


# ==================== PAYMENT MODELS ====================

class PaymentRecord(BaseModel):
    """Token purchase attempt and its lifecycle"""
    payment_id: str
    user_id: str
    amount: int
    tokens_purchased: int
    phone_number: str
    account_reference: str
    status: PaymentStatus
    created_at: str
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    mpesa_receipt: Optional[str] = None
    transaction_date: Optional[str] = None
    result_code: Optional[int] = None
    result_desc: Optional[str] = None
    completed_at: Optional[str] = None


class PurchaseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    number_of_tokens: int = Field(..., alias="numberOfTokens", ge=1)
    phone_number: str = Field(..., alias="phoneNumber", min_length=1)


class PurchaseResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "Payment request sent. Please check your phone."
    payment_id: str = Field(..., alias="paymentId")
    checkout_request_id: str = Field(..., alias="checkoutRequestId")


class PaymentStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    status: PaymentStatus
    tokens_purchased: int = Field(..., alias="tokensPurchased")


# ==================== GATEWAY RESULTS ====================

class PushResult(BaseModel):
    """Outcome of an STK push submission (request accepted or rejected)"""
    success: bool
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    response_code: Optional[str] = None
    response_description: Optional[str] = None
    error: Optional[str] = None


class PurchaseResult(BaseModel):
    """Outcome of a purchase initiation"""
    success: bool
    payment_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


# ==================== CALLBACK MODELS ====================

class CallbackNotification(BaseModel):
    """Fields of an stkCallback notification relevant to reconciliation"""
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    result_code: int
    result_desc: str = ""
    metadata_items: List[Dict[str, Any]] = Field(default_factory=list)


class ReconcileResult(BaseModel):
    """Outcome of reconciling one gateway notification"""
    outcome: Literal["completed", "failed", "duplicate", "unknown", "invalid", "error"]
    payment_id: Optional[str] = None
    tokens_credited: int = 0
    message: Optional[str] = None

    def ack(self) -> Dict[str, Any]:
        """Acknowledgement body returned to the gateway."""
        if self.outcome == "error":
            return dict(CALLBACK_REJECTED)
        return dict(CALLBACK_ACCEPTED)


# ==================== CATALOG / DOWNLOAD MODELS ====================

class CatalogDocument(BaseModel):
    """Purchasable document in the catalog"""
    id: str
    file_id: str
    name: str
    drive_url: str
    tokens_required: int = Field(1, ge=0)
    category: Optional[str] = None
    year: Optional[str] = None


class DownloadRecord(BaseModel):
    """Download grant recorded when tokens are debited"""
    download_id: str
    user_id: str
    document_id: str
    file_id: str
    tokens_used: int
    created_at: str
    downloaded_at: Optional[str] = None


class DownloadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(..., alias="documentId", min_length=1)


class UnlockResult(BaseModel):
    """Result from the entitlement gate"""
    allowed: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    download_id: Optional[str] = None
    download_url: Optional[str] = None
    expires_in: int = 0
    tokens_required: int = 0
    tokens_remaining: int = 0
