"""
Shared fixtures for the document store backend tests.

The application is built with create_app() around an in-memory database
(fake_mongo.FakeDatabase) and a stub STK push gateway, so no MongoDB server
or Daraja sandbox is needed.
"""

import pytest
from fastapi.testclient import TestClient

from fake_mongo import FakeDatabase
from server import create_app
from token_wallet.catalog import DocumentCatalog
from token_wallet.models import PushResult
from utils.auth import create_token
from utils.environment import Settings

TEST_USER_ID = "user-1"
TEST_EMAIL = "student@example.com"

TEST_DOCUMENTS = {
    "agric-paper-1": {
        "file_id": "file-agric-1",
        "name": "AGRICULTURE PAPER 1.pdf",
        "drive_url": "https://drive.example.com/agric-paper-1.pdf",
        "tokens_required": 1,
        "category": "Agriculture",
        "year": "2024"
    },
    "biology-paper-2": {
        "file_id": "file-bio-2",
        "name": "BIOLOGY PAPER 2.pdf",
        "drive_url": "https://drive.example.com/biology-paper-2.pdf",
        "tokens_required": 3,
        "category": "Biology",
        "year": "2023"
    }
}


class StubGateway:
    """Records STK push submissions and answers with a fixed result."""

    def __init__(self, result=None):
        self.result = result or PushResult(
            success=True,
            checkout_request_id="ws_CO_000001",
            merchant_request_id="29115-34620561-1"
        )
        self.calls = []

    async def submit_push_payment(self, contact, amount, reference):
        self.calls.append({"contact": contact, "amount": amount, "reference": reference})
        return self.result


def seed_user(db, user_id=TEST_USER_ID, tokens=0, email=TEST_EMAIL):
    db.users.seed({
        "id": user_id,
        "email": email,
        "password": "not-a-real-hash",
        "full_name": "Test Student",
        "phone_number": "0712345678",
        "tokens": tokens,
        "created_at": "2024-01-01T00:00:00+00:00"
    })


def stk_callback(checkout_request_id, result_code=0, result_desc="The service request is processed successfully.", metadata=True):
    """Daraja stkCallback body as delivered to the callback URL."""
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc
    }
    if result_code == 0 and metadata:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 5},
                {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                {"Name": "TransactionDate", "Value": 20240101120000},
                {"Name": "PhoneNumber", "Value": 254712345678}
            ]
        }
    return {"Body": {"stkCallback": callback}}


@pytest.fixture
def settings():
    return Settings(
        mongo_url="mongodb://localhost:27017/?replicaSet=rs0",
        db_name="document_store_test",
        jwt_secret="test-secret",
        mpesa_consumer_key="consumer-key",
        mpesa_consumer_secret="consumer-secret",
        mpesa_shortcode="174379",
        mpesa_passkey="passkey",
        mpesa_callback_url="https://example.com/api/mpesa/callback",
        base_url="http://testserver"
    )


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def catalog():
    return DocumentCatalog(TEST_DOCUMENTS)


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def client(settings, db, gateway, catalog):
    app = create_app(settings, database=db, gateway=gateway, catalog=catalog)
    return TestClient(app)


@pytest.fixture
def auth_headers(settings):
    token = create_token(TEST_USER_ID, TEST_EMAIL, settings.jwt_secret)
    return {"Authorization": f"Bearer {token}"}
