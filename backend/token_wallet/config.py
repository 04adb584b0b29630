"""
Token Wallet Configuration and Constants

Token pricing, gateway endpoints, catalog defaults and error codes are defined here.
All prices are whole Kenya shillings (KSh).
"""

# ==================== TOKEN PRICING ====================
# KSh per token
DEFAULT_TOKEN_PRICE = 1

# ==================== PAYMENT STATUS ====================
PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"

# ==================== M-PESA CONFIGURATION ====================
MPESA_CONFIG = {
    "sandbox": {
        "api_base": "https://sandbox.safaricom.co.ke"
    },
    "production": {
        "api_base": "https://api.safaricom.co.ke"
    }
}

MPESA_TOKEN_PATH = "/oauth/v1/generate?grant_type=client_credentials"
MPESA_STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
MPESA_TRANSACTION_TYPE = "CustomerPayBillOnline"
MPESA_COUNTRY_CODE = "254"

# Callback result code that means the customer paid
MPESA_SUCCESS_CODE = 0

# Metadata item names in a successful STK callback
MPESA_RECEIPT_ITEM = "MpesaReceiptNumber"
MPESA_TRANSACTION_DATE_ITEM = "TransactionDate"

# Refresh the cached access token this many seconds before it expires
MPESA_TOKEN_EXPIRY_MARGIN = 60

# ==================== CALLBACK ACKNOWLEDGEMENTS ====================
CALLBACK_ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}
CALLBACK_REJECTED = {"ResultCode": 1, "ResultDesc": "Error processing callback"}

# ==================== DOWNLOADS ====================
DOWNLOAD_TOKEN_TTL_SECONDS = 3600
DOWNLOAD_HISTORY_LIMIT = 50
# Unlock transactions aborted by a write conflict are re-run up to this many times
UNLOCK_MAX_ATTEMPTS = 5
SALES_REPORT_DAYS = 30

# ==================== DOCUMENT CATALOG ====================
DEFAULT_DOCUMENTS = {
    "agric-paper-1": {
        "file_id": "1Mky5kBJX84sssm9DAGrtMpPG6WpcClDN",
        "name": "AGRICULTURE PAPER 1.pdf",
        "drive_url": "https://drive.google.com/uc?id=1Mky5kBJX84sssm9DAGrtMpPG6WpcClDN&export=download",
        "tokens_required": 1,
        "category": "Agriculture",
        "year": "2024"
    }
}

# ==================== ERROR CODES ====================
ERROR_CODES = {
    "INVALID_TOKEN_QUANTITY": "Invalid number of tokens",
    "PHONE_REQUIRED": "Phone number required",
    "PAYMENT_INITIATION_FAILED": "Payment initiation failed",
    "INSUFFICIENT_TOKENS": "Insufficient tokens",
    "DOCUMENT_NOT_FOUND": "Document not found",
    "ACCOUNT_NOT_FOUND": "User not found",
    "DOWNLOAD_DENIED": "This download link has expired or is invalid."
}
