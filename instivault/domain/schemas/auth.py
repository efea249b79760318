"""
Authentication schemas.
"""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, EmailStr, Field

from instivault.domain.enums import AccountRole


class UserSignup(BaseModel):
    """User signup data."""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)


class InstituteSignup(BaseModel):
    """Institute signup data; the admin email is the login email."""
    name: str = Field(..., min_length=1, max_length=255)
    admin_name: str = Field(..., min_length=1, max_length=255, alias="adminName")
    admin_email: EmailStr = Field(..., alias="adminEmail")
    password: str = Field(..., min_length=8, max_length=128)

    class Config:
        populate_by_name = True


class LoginRequest(BaseModel):
    """Login credentials."""
    email: EmailStr
    password: str


class AccountProfile(BaseModel):
    """Public account data."""
    id: UUID
    role: AccountRole
    name: str = Field(validation_alias=AliasChoices("display_name", "name"))
    email: str
    admin_name: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    """Authentication response."""
    token: str
    token_type: str = "bearer"
    role: AccountRole
    account: AccountProfile
