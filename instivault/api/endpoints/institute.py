"""
Institute dashboard endpoints.
"""
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends

from instivault.core.dependencies import (
    get_current_institute,
    get_group_registry,
    get_membership_engine,
)
from instivault.domain.enums import Decision, MembershipState
from instivault.domain.principals import InstitutePrincipal
from instivault.domain.schemas.membership import (
    GroupCreate,
    GroupRef,
    GroupView,
    LinkedUser,
    MembershipActionResponse,
    MembershipRequestView,
    MessageResponse,
)
from instivault.services.groups import GroupRegistry
from instivault.services.membership import MembershipEngine

router = APIRouter()


@router.get("/pending", response_model=List[MembershipRequestView])
async def list_pending(
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    """Pending requests, oldest first."""
    return await engine.list_requests(institute, MembershipState.PENDING)


@router.get("/rejected", response_model=List[MembershipRequestView])
async def list_rejected(
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    return await engine.list_requests(institute, MembershipState.REJECTED)


@router.get("/linked-users", response_model=List[LinkedUser])
async def list_linked_users(
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    return await engine.list_linked_users(institute)


@router.put("/approve/{user_id}", response_model=MembershipActionResponse)
async def approve_request(
    user_id: UUID,
    group: Optional[GroupRef] = Body(default=None),
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    """
    Approve a pending request.

    The body names the group the new member joins: either an existing
    ``groupId`` or a ``newGroupName`` that is created if absent.
    """
    request = await engine.decide(institute, user_id, Decision.APPROVE, group)
    return MembershipActionResponse(msg="Request approved", request=request)


@router.put("/reject/{user_id}", response_model=MembershipActionResponse)
async def reject_request(
    user_id: UUID,
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    request = await engine.decide(institute, user_id, Decision.REJECT)
    return MembershipActionResponse(msg="Request rejected", request=request)


@router.delete("/rejected/{user_id}", response_model=MessageResponse)
async def unblock_user(
    user_id: UUID,
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    """Remove a rejected request so the user can apply again."""
    await engine.unblock(institute, user_id)
    return MessageResponse(msg="User unblocked")


@router.get("/groups", response_model=List[GroupView])
async def list_groups(
    institute: InstitutePrincipal = Depends(get_current_institute),
    groups: GroupRegistry = Depends(get_group_registry),
) -> Any:
    return await groups.list_groups(institute.institute_id)


@router.post("/groups", response_model=GroupView)
async def create_group(
    data: GroupCreate,
    institute: InstitutePrincipal = Depends(get_current_institute),
    groups: GroupRegistry = Depends(get_group_registry),
) -> Any:
    """Create a group, or return the existing one with the same name."""
    return await groups.create_or_get(institute.institute_id, data.name)


@router.get("/groups/{group_id}", response_model=GroupView)
async def get_group(
    group_id: UUID,
    institute: InstitutePrincipal = Depends(get_current_institute),
    groups: GroupRegistry = Depends(get_group_registry),
) -> Any:
    return await groups.get_group(group_id, institute_id=institute.institute_id)


@router.put("/groups/{group_id}/members/{user_id}", response_model=GroupView)
async def assign_member(
    group_id: UUID,
    user_id: UUID,
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    """Add an approved member to the group."""
    return await engine.assign_member(institute, group_id, user_id)


@router.delete("/groups/{group_id}/members/{user_id}", response_model=GroupView)
async def unassign_member(
    group_id: UUID,
    user_id: UUID,
    institute: InstitutePrincipal = Depends(get_current_institute),
    engine: MembershipEngine = Depends(get_membership_engine),
) -> Any:
    return await engine.unassign_member(institute, group_id, user_id)
