"""
Schemas for membership requests and groups.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from instivault.domain.enums import MembershipState


class AccountSummary(BaseModel):
    """Account as shown in dashboard lists."""
    id: UUID
    name: str = Field(validation_alias=AliasChoices("display_name", "name"))
    email: str

    class Config:
        from_attributes = True


class GroupSummary(BaseModel):
    id: UUID
    name: str

    class Config:
        from_attributes = True


class GroupView(BaseModel):
    """Group with its current members."""
    id: UUID
    institute_id: UUID
    name: str
    created_at: datetime
    members: List[AccountSummary] = Field(default_factory=list)

    class Config:
        from_attributes = True


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)


class GroupRef(BaseModel):
    """
    Group assignment supplied with an approval.

    Exactly one of ``group_id`` and ``new_group_name`` must be set; the
    engine enforces it.
    """
    group_id: Optional[UUID] = Field(None, alias="groupId")
    new_group_name: Optional[str] = Field(None, alias="newGroupName", max_length=120)

    class Config:
        populate_by_name = True


class MembershipRequestView(BaseModel):
    """Membership request with both parties resolved."""
    id: UUID
    user: AccountSummary
    institute: AccountSummary
    state: MembershipState
    requested_at: datetime
    decided_at: Optional[datetime] = None
    group: Optional[GroupSummary] = None

    class Config:
        from_attributes = True


class LinkedUser(BaseModel):
    """Approved member of an institute."""
    id: UUID
    name: str
    email: str
    approved_at: Optional[datetime] = None
    group: Optional[GroupSummary] = None


class LinkedInstitute(BaseModel):
    """Institute a user is an approved member of."""
    id: UUID
    name: str
    admin_name: Optional[str] = None
    email: str
    joined_at: Optional[datetime] = None


class MessageResponse(BaseModel):
    msg: str


class MembershipActionResponse(MessageResponse):
    request: MembershipRequestView
