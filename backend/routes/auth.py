"""
Authentication and profile routes
"""
from fastapi import APIRouter, HTTPException, Depends, Request
from datetime import datetime, timezone
import uuid
import logging

from pymongo.errors import DuplicateKeyError

from database import get_db
from models.schemas import UserCreate, UserLogin, UserResponse, TokenResponse, ProfileResponse
from utils.auth import hash_password, verify_password, create_token, get_current_user
from token_wallet.wallet_service import WalletService

logger = logging.getLogger(__name__)

auth_router = APIRouter(tags=["Authentication"])
user_router = APIRouter(tags=["User"])


def _user_response(user: dict) -> UserResponse:
    return UserResponse(
        id=user["id"],
        email=user["email"],
        full_name=user.get("full_name", ""),
        phone_number=user.get("phone_number"),
        tokens=user.get("tokens", 0),
        created_at=user.get("created_at")
    )


@auth_router.post("/register", response_model=TokenResponse)
async def register(user_data: UserCreate, request: Request, db=Depends(get_db)):
    """Register a new user with an empty token balance"""
    existing = await db.users.find_one({"email": user_data.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    now = datetime.now(timezone.utc).isoformat()
    user_id = str(uuid.uuid4())
    user = {
        "id": user_id,
        "email": user_data.email,
        "password": hash_password(user_data.password),
        "full_name": user_data.full_name,
        "phone_number": user_data.phone_number,
        "tokens": 0,
        "created_at": now,
        "updated_at": now
    }
    try:
        await db.users.insert_one(dict(user))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")

    logger.info(f"Registered user {user_id}")
    token = create_token(user_id, user_data.email, request.app.state.settings.jwt_secret)
    return TokenResponse(token=token, user=_user_response(user))


@auth_router.post("/login", response_model=TokenResponse)
async def login(credentials: UserLogin, request: Request, db=Depends(get_db)):
    """Login user and return token"""
    user = await db.users.find_one({"email": credentials.email}, {"_id": 0})
    if not user or not verify_password(credentials.password, user["password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_token(user["id"], user["email"], request.app.state.settings.jwt_secret)
    return TokenResponse(token=token, user=_user_response(user))


@user_router.get("/profile", response_model=ProfileResponse)
async def get_profile(user: dict = Depends(get_current_user), db=Depends(get_db)):
    """Get current user's profile and token balance"""
    account = await WalletService(db).get_account(user["id"])
    if not account:
        raise HTTPException(status_code=404, detail="User not found")

    return ProfileResponse(user=_user_response(account))
