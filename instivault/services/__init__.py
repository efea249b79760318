"""
Domain engines.
"""
from instivault.services.documents import DocumentDistributionEngine
from instivault.services.groups import GroupRegistry
from instivault.services.identity import IdentityService
from instivault.services.membership import MembershipEngine

__all__ = [
    "DocumentDistributionEngine",
    "GroupRegistry",
    "IdentityService",
    "MembershipEngine",
]
