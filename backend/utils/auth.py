"""
Authentication utilities

Access tokens: 7 day HS256 JWT asserting account id (sub) and email.
Download tokens: 1 hour HS256 JWT scoped to a single download grant.
The "typ" claim keeps the two from being used in place of each other.
"""
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
import bcrypt
from datetime import datetime, timezone, timedelta
from typing import Dict, Any, Optional

from token_wallet.config import DOWNLOAD_TOKEN_TTL_SECONDS

security = HTTPBearer(auto_error=False)
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TTL = timedelta(days=7)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))

def create_token(user_id: str, email: str, secret: str) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "typ": "access",
        "exp": datetime.now(timezone.utc) + ACCESS_TOKEN_TTL
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, secret: str) -> Dict[str, Any]:
    """Decode an access token. Raises jwt.InvalidTokenError on any problem."""
    payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    if payload.get("typ") != "access" or not payload.get("sub"):
        raise jwt.InvalidTokenError("Not an access token")
    return payload


def create_download_token(
    user_id: str,
    file_id: str,
    document_id: str,
    download_id: str,
    secret: str,
    ttl_seconds: int = DOWNLOAD_TOKEN_TTL_SECONDS
) -> str:
    payload = {
        "userId": user_id,
        "fileId": file_id,
        "documentId": document_id,
        "downloadId": download_id,
        "typ": "download",
        "exp": datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_download_token(token: str, secret: str) -> Dict[str, Any]:
    """Decode a download token. Raises jwt.InvalidTokenError on any problem."""
    payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    if payload.get("typ") != "download":
        raise jwt.InvalidTokenError("Not a download token")
    for claim in ("userId", "documentId", "downloadId"):
        if not payload.get(claim):
            raise jwt.InvalidTokenError(f"Missing {claim} claim")
    return payload


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Dict[str, str]:
    """Verify the bearer token and return the caller's id and email"""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Access token required")

    secret = request.app.state.settings.jwt_secret
    try:
        payload = decode_token(credentials.credentials, secret)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    return {"id": payload["sub"], "email": payload.get("email")}
