"""
User dashboard endpoints.
"""
from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends

from instivault.core.dependencies import get_current_user, get_membership_engine
from instivault.domain.principals import UserPrincipal
from instivault.domain.schemas.membership import (
    LinkedInstitute,
    MembershipActionResponse,
    MembershipRequestView,
    MessageResponse,
)
from instivault.services.membership import MembershipEngine

router = APIRouter()


@router.get("/institutes", response_model=List[LinkedInstitute])
async def list_institutes(
    user: UserPrincipal = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    """Institutes the caller is an approved member of."""
    return await engine.list_user_institutes(user)


@router.get("/requests", response_model=List[MembershipRequestView])
async def list_requests(
    user: UserPrincipal = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    return await engine.list_user_requests(user)


@router.post("/join/{institute_id}", response_model=MembershipActionResponse)
async def join_institute(
    institute_id: UUID,
    user: UserPrincipal = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    """
    Request to join an institute.

    Fails with 400 while any request for the institute is on record,
    including a rejected one that has not been unblocked.
    """
    request = await engine.join(user, institute_id)
    return MembershipActionResponse(msg="Request sent", request=request)


@router.post("/leave/{institute_id}", response_model=MessageResponse)
async def leave_institute(
    institute_id: UUID,
    user: UserPrincipal = Depends(get_current_user),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    await engine.leave(user, institute_id)
    return MessageResponse(msg="Left institute")
