"""
Token Wallet Module
Token-based access to downloadable documents, paid via M-Pesa STK push

This module provides:
- Token balances per user account
- M-Pesa (Daraja) integration for token purchases
- Callback reconciliation with duplicate-notification protection
- Concurrency-safe atomic debits when unlocking documents

Collections used:
- users: Account documents carrying the token balance
- payments: Token purchase records and their lifecycle
- downloads: Download grants issued on token debit
- payment_logs: Raw gateway notifications (audit + orphan replay)
"""

__version__ = "1.0.0"
