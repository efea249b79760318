"""
Authentication endpoints.
"""
from typing import Any

from fastapi import APIRouter, Depends

from instivault.core.dependencies import get_identity_service, get_principal
from instivault.domain.enums import AccountRole
from instivault.domain.principals import Principal
from instivault.domain.schemas.auth import (
    AccountProfile,
    AuthResponse,
    InstituteSignup,
    LoginRequest,
    UserSignup,
)
from instivault.services.identity import IdentityService

router = APIRouter()


@router.post("/user/signup", response_model=AuthResponse)
async def signup_user(
    data: UserSignup,
    identity: IdentityService = Depends(get_identity_service),
) -> Any:
    """
    Register a user account.

    Returns a token for the new account; an email already registered as a
    user is rejected with 400.
    """
    return await identity.signup_user(data)


@router.post("/institute/signup", response_model=AuthResponse)
async def signup_institute(
    data: InstituteSignup,
    identity: IdentityService = Depends(get_identity_service),
) -> Any:
    """
    Register an institute. The admin email and password are the
    institute's login credentials.
    """
    return await identity.signup_institute(data)


@router.post("/{role}/login", response_model=AuthResponse)
async def login(
    role: AccountRole,
    credentials: LoginRequest,
    identity: IdentityService = Depends(get_identity_service),
) -> Any:
    return await identity.login(role, credentials)


@router.get("/me", response_model=AccountProfile)
async def read_me(
    principal: Principal = Depends(get_principal),
    identity: IdentityService = Depends(get_identity_service),
) -> Any:
    """Get the calling account."""
    return await identity.get_profile(principal)
