"""
Enumerations shared by the persistence and API layers.
"""
from enum import Enum


class AccountRole(str, Enum):
    USER = "user"
    INSTITUTE = "institute"


class MembershipState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
