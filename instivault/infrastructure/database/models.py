"""
Database models for InstiVault.
"""
import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from instivault.domain.enums import AccountRole, MembershipState
from instivault.infrastructure.database.base import Base, UTCDateTime, utcnow


def _enum(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


class Account(Base):
    """User or institute account. Institutes administer themselves."""
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    role = Column(_enum(AccountRole, "account_role"), nullable=False)
    display_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    admin_name = Column(String(255))  # institutes only
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("role", "email", name="uq_account_role_email"),
    )


class MembershipRequest(Base):
    """
    A user's request to join an institute and its disposition.

    One row per (user, institute) pair; rejected rows stay until unblocked.
    """
    __tablename__ = "membership_request"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("account.id", ondelete="CASCADE"), nullable=False)
    institute_id = Column(Uuid, ForeignKey("account.id", ondelete="CASCADE"), nullable=False)
    state = Column(_enum(MembershipState, "membership_state"), nullable=False, default=MembershipState.PENDING)
    version = Column(Integer, nullable=False, default=1)
    requested_at = Column(UTCDateTime, default=utcnow, nullable=False)
    decided_at = Column(UTCDateTime)
    group_id = Column(Uuid, ForeignKey("member_group.id", ondelete="SET NULL"))

    user = relationship("Account", foreign_keys=[user_id], lazy="joined")
    institute = relationship("Account", foreign_keys=[institute_id], lazy="joined")
    group = relationship("Group", lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_id", "institute_id", name="uq_membership_request_pair"),
        Index("idx_membership_institute_state", "institute_id", "state", "requested_at"),
    )


class GroupMember(Base):
    __tablename__ = "group_member"

    group_id = Column(Uuid, ForeignKey("member_group.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Uuid, ForeignKey("account.id", ondelete="CASCADE"), primary_key=True)
    added_at = Column(UTCDateTime, default=utcnow, nullable=False)


class Group(Base):
    """Named, institute-scoped collection of approved members."""
    __tablename__ = "member_group"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    institute_id = Column(Uuid, ForeignKey("account.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(120), nullable=False)
    name_key = Column(String(120), nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    members = relationship(
        "Account",
        secondary="group_member",
        lazy="selectin",
        order_by="Account.display_name",
        viewonly=True,
    )

    __table_args__ = (
        UniqueConstraint("institute_id", "name_key", name="uq_member_group_institute_name"),
    )


class DocumentTarget(Base):
    __tablename__ = "document_target"

    document_id = Column(Uuid, ForeignKey("document.id", ondelete="CASCADE"), primary_key=True)
    group_id = Column(Uuid, ForeignKey("member_group.id", ondelete="CASCADE"), primary_key=True)


class Document(Base):
    """Uploaded document and its distribution policy."""
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    institute_id = Column(Uuid, ForeignKey("account.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_admin_id = Column(Uuid, ForeignKey("account.id", ondelete="CASCADE"), nullable=False)
    storage_ref = Column(String(500), nullable=False)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(255), nullable=False, default="application/octet-stream")
    size_bytes = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Policy
    expiry_days = Column(Integer, nullable=False)
    view_once = Column(Boolean, nullable=False, default=False)
    watermark = Column(Boolean, nullable=False, default=True)

    target_groups = relationship("Group", secondary="document_target", lazy="raise", viewonly=True)

    __table_args__ = (
        CheckConstraint("expiry_days >= 1", name="expiry_days_positive"),
    )


class AccessGrant(Base):
    """Per-recipient permission materialized at distribution time."""
    __tablename__ = "access_grant"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id = Column(Uuid, ForeignKey("document.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, ForeignKey("account.id", ondelete="CASCADE"), nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    view_once = Column(Boolean, nullable=False, default=False)
    consumed_at = Column(UTCDateTime)

    document = relationship("Document", lazy="joined")

    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_access_grant_document_user"),
        Index("idx_access_grant_user", "user_id"),
        Index("idx_access_grant_expires", "expires_at"),
    )
