"""
Request-scoped identities.

A bearer credential resolves to exactly one of two principal variants; the
engines accept only the variant an operation belongs to.
"""
from dataclasses import dataclass
from typing import ClassVar, Union
from uuid import UUID

from instivault.core.exceptions import ForbiddenError
from instivault.domain.enums import AccountRole


@dataclass(frozen=True)
class UserPrincipal:
    account_id: UUID
    display_name: str
    email: str

    role: ClassVar[AccountRole] = AccountRole.USER


@dataclass(frozen=True)
class InstitutePrincipal:
    account_id: UUID
    display_name: str
    email: str
    admin_name: str = ""

    role: ClassVar[AccountRole] = AccountRole.INSTITUTE

    @property
    def institute_id(self) -> UUID:
        # an institute account administers itself
        return self.account_id


Principal = Union[UserPrincipal, InstitutePrincipal]


def require_user(principal: Principal) -> UserPrincipal:
    """Narrow a principal to the user variant or raise Forbidden."""
    if not isinstance(principal, UserPrincipal):
        raise ForbiddenError()
    return principal


def require_institute(principal: Principal) -> InstitutePrincipal:
    """Narrow a principal to the institute variant or raise Forbidden."""
    if not isinstance(principal, InstitutePrincipal):
        raise ForbiddenError()
    return principal
