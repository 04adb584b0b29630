"""
Pydantic models/schemas for the application
"""
from pydantic import BaseModel, Field, ConfigDict, EmailStr
from typing import Optional


# ==================== AUTH MODELS ====================

class UserCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    password: str = Field(..., min_length=1)
    full_name: str = Field(..., alias="fullName", min_length=1)
    phone_number: str = Field(..., alias="phoneNumber", min_length=1)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: str
    full_name: str = Field(..., alias="fullName")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    tokens: int = 0
    created_at: Optional[str] = Field(None, alias="createdAt")

class TokenResponse(BaseModel):
    success: bool = True
    token: str
    user: UserResponse

class ProfileResponse(BaseModel):
    success: bool = True
    user: UserResponse
