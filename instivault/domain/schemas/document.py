"""
Schemas for document distribution and access.
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from instivault.domain.schemas.membership import GroupSummary


class DocumentPolicy(BaseModel):
    """
    Distribution policy.

    Bounds are checked by the distribution engine so that violations
    surface as InvalidArgument rather than schema errors.
    """
    expiry_days: int = 7
    view_once: bool = False
    watermark: bool = True


class DocumentView(BaseModel):
    """Document as seen by its institute."""
    id: UUID
    institute_id: UUID
    filename: str
    content_type: str
    size_bytes: int
    created_at: datetime
    policy: DocumentPolicy
    target_groups: List[GroupSummary] = Field(default_factory=list)
    recipient_count: int = 0


class GrantView(BaseModel):
    """Access grant with its computed validity."""
    id: UUID
    document_id: UUID
    user_id: UUID
    expires_at: datetime
    view_once: bool
    consumed_at: Optional[datetime] = None
    is_valid: bool

    class Config:
        from_attributes = True


class InboxItem(BaseModel):
    """A document shared with the current user."""
    grant: GrantView
    document_id: UUID
    institute_id: UUID
    filename: str
    content_type: str
    watermark: bool
    shared_at: datetime


class DistributionResponse(BaseModel):
    msg: str
    document: DocumentView
