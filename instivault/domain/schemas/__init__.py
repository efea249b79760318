"""
Domain schemas for InstiVault.
"""

from .auth import *
from .document import *
from .membership import *

__all__ = [
    # Auth schemas
    "UserSignup",
    "InstituteSignup",
    "LoginRequest",
    "AccountProfile",
    "AuthResponse",

    # Membership schemas
    "AccountSummary",
    "GroupSummary",
    "GroupView",
    "GroupCreate",
    "GroupRef",
    "MembershipRequestView",
    "LinkedUser",
    "LinkedInstitute",
    "MessageResponse",
    "MembershipActionResponse",

    # Document schemas
    "DocumentPolicy",
    "DocumentView",
    "GrantView",
    "InboxItem",
    "DistributionResponse",
]
